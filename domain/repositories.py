from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Protocol, Tuple

from .models import Token, TokenAmount, User


class UserRepository(Protocol):
    """
    Abstraction over user persistence.

    Implementations are responsible for:
    - Assigning a stable, sequential integer `id` on the first save.
    - Being safe to call from concurrent asyncio tasks.
    """

    async def exists_by_telegram_id(self, telegram_id: int) -> bool:
        ...

    async def save(self, user: User) -> User:
        """Insert the user (assigning its `id`) or update it, and return it."""

        ...

    async def remove(self, user: User) -> None:
        ...

    async def count(self) -> int:
        ...

    async def find(self, skip: int, take: int) -> List[User]:
        """Return at most `take` users ordered by id, skipping the first `skip`."""

        ...

    async def get_by_telegram_id(self, telegram_id: int) -> Optional[User]:
        ...

    async def get_by_telegram_username(self, username: str) -> Optional[User]:
        ...


class TokenRepository(Protocol):
    """
    Registry of the tokens the bot knows about.

    Lookups of unknown tokens raise `UnknownTokenError`.
    """

    async def get_by_symbol(self, symbol: str) -> Token:
        """Case-insensitive lookup by symbol."""

        ...

    async def get_token_amount(self, token_id: str, amount: int) -> TokenAmount:
        ...

    async def list_tokens(self) -> List[Token]:
        ...


@dataclass
class Destination:
    """One output of a transfer transaction."""

    address: str
    atto_alph_amount: int
    tokens: List[Tuple[str, int]] = field(default_factory=list)


@dataclass
class AddressBalance:
    """Raw balance of an address as reported by the full node."""

    balance: int
    locked_balance: int = 0
    token_balances: List[Tuple[str, int]] = field(default_factory=list)
    utxo_num: int = 0


class Wallet(Protocol):
    address: str
    public_key: str
    group: int

    def sign(self, tx_id: str) -> str:
        ...


class NodeGateway(Protocol):
    """
    Calls to the remote full node.

    Implementations raise whatever the transport raises: translating
    failures into domain errors is the job of the error classifier.
    """

    async def get_address_balance(self, address: str, mempool: Optional[bool] = None) -> AddressBalance:
        ...

    async def sign_and_submit_transfer(self, wallet: Wallet, destinations: List[Destination]) -> str:
        """Build, sign and submit a transfer; return its transaction id."""

        ...

    async def sign_and_submit_sweep(self, wallet: Wallet, to_address: str) -> List[str]:
        """Sweep every UTXO of `wallet` to `to_address`; return the transaction ids."""

        ...

    async def wait_for_confirmation(self, tx_id: str, confirmations: int, interval: float = 1.0) -> None:
        ...
