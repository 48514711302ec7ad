import asyncio
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Tuple

from domain.errors import UnknownTokenError
from domain.models import ALPH_TOKEN, Token, TokenAmount, User
from domain.repositories import AddressBalance, Destination, TokenRepository, UserRepository

USDT = Token(id="ab" * 32, symbol="USDT", decimals=6, name="Tether USD")
AYIN = Token(id="cd" * 32, symbol="AYIN", decimals=18, name="Ayin")


class InMemoryUserRepository(UserRepository):
    """Yields to the event loop on every call, like a real database would."""

    def __init__(self):
        self.users: Dict[int, User] = {}
        self._next_id = 1
        self.find_calls: List[Tuple[int, int]] = []

    async def exists_by_telegram_id(self, telegram_id: int) -> bool:
        await asyncio.sleep(0)
        return any(u.telegram_id == telegram_id for u in self.users.values())

    async def save(self, user: User) -> User:
        await asyncio.sleep(0)
        if user.id is None:
            user = replace(user, id=self._next_id)
            self._next_id += 1
        self.users[user.id] = replace(user)
        return replace(user)

    async def remove(self, user: User) -> None:
        await asyncio.sleep(0)
        self.users.pop(user.id, None)

    async def count(self) -> int:
        return len(self.users)

    async def find(self, skip: int, take: int) -> List[User]:
        self.find_calls.append((skip, take))
        ordered = sorted(self.users.values(), key=lambda u: u.id)
        return [replace(u) for u in ordered[skip : skip + take]]

    async def get_by_telegram_id(self, telegram_id: int) -> Optional[User]:
        for user in self.users.values():
            if user.telegram_id == telegram_id:
                return replace(user)
        return None

    async def get_by_telegram_username(self, username: str) -> Optional[User]:
        for user in self.users.values():
            if user.telegram_username.lower() == username.lstrip("@").lower():
                return replace(user)
        return None


class InMemoryTokenRepository(TokenRepository):
    def __init__(self, tokens=(ALPH_TOKEN, USDT, AYIN)):
        self.tokens = {t.id: t for t in tokens}

    async def get_by_symbol(self, symbol: str) -> Token:
        for token in self.tokens.values():
            if token.symbol.lower() == symbol.lstrip("$").lower():
                return token
        raise UnknownTokenError(symbol)

    async def get_token_amount(self, token_id: str, amount: int) -> TokenAmount:
        if token_id not in self.tokens:
            raise UnknownTokenError(token_id)
        return TokenAmount(amount, self.tokens[token_id])

    async def list_tokens(self) -> List[Token]:
        return list(self.tokens.values())


@dataclass(frozen=True)
class FakeWallet:
    address: str
    public_key: str
    group: int

    def sign(self, tx_id: str) -> str:
        return f"signed-{tx_id}"


def fake_derive_wallet(mnemonic: str, index: int) -> FakeWallet:
    return FakeWallet(address=f"wallet-{index}", public_key=f"pk-{index}", group=index % 4)


class FakeNodeGateway:
    """Records every call; balances and failures are set by the tests."""

    def __init__(self):
        self.balances: Dict[str, AddressBalance] = {}
        self.calls: List[str] = []
        self.transfers: List[Tuple[FakeWallet, List[Destination]]] = []
        self.sweeps: List[Tuple[FakeWallet, str]] = []
        self.waits: List[Tuple[str, int]] = []
        self.balance_requests: List[Tuple[str, Optional[bool]]] = []
        self.sweep_tx_ids: List[str] = ["sweep-tx-1"]
        self.transfer_error: Optional[BaseException] = None
        self.sweep_error: Optional[BaseException] = None
        self.balance_error: Optional[BaseException] = None
        self._tx_counter = 0

    async def get_address_balance(self, address: str, mempool: Optional[bool] = None) -> AddressBalance:
        self.calls.append("get_address_balance")
        self.balance_requests.append((address, mempool))
        if self.balance_error is not None:
            raise self.balance_error
        return self.balances.get(address, AddressBalance(balance=0))

    async def sign_and_submit_transfer(self, wallet, destinations: List[Destination]) -> str:
        self.calls.append("sign_and_submit_transfer")
        if self.transfer_error is not None:
            raise self.transfer_error
        self.transfers.append((wallet, destinations))
        self._tx_counter += 1
        return f"tx-{self._tx_counter}"

    async def sign_and_submit_sweep(self, wallet, to_address: str) -> List[str]:
        self.calls.append("sign_and_submit_sweep")
        if self.sweep_error is not None:
            raise self.sweep_error
        self.sweeps.append((wallet, to_address))
        return list(self.sweep_tx_ids)

    async def wait_for_confirmation(self, tx_id: str, confirmations: int, interval: float = 1.0) -> None:
        self.calls.append("wait_for_confirmation")
        self.waits.append((tx_id, confirmations))

TEST_MNEMONIC = (
    "abandon abandon abandon abandon abandon abandon abandon abandon abandon abandon abandon about"
)
