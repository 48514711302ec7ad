from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from fractions import Fraction
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Set, Union

logger = logging.getLogger(__name__)

# Pending display edits. The event loop only keeps weak references to tasks.
_display_tasks: Set["asyncio.Future[None]"] = set()

ALPH_TOKEN_ID = "0" * 64
ALPH_SYMBOL = "ALPH"
ALPH_DECIMALS = 18


@dataclass
class User:
    """
    A chat user owning a custodial wallet.

    `id` is assigned by the repository on first save and is used as the
    derivation index of the wallet. `address` is filled in exactly once,
    right after registration.
    """

    telegram_id: int
    telegram_username: str
    id: Optional[int] = None
    address: Optional[str] = None

    def __str__(self) -> str:
        return f"User(id={self.id}, telegram_id={self.telegram_id}, username={self.telegram_username})"


@dataclass(frozen=True)
class Token:
    """A fungible asset known to the bot. ALPH is the native asset."""

    id: str
    symbol: str
    decimals: int
    name: str = ""

    def is_alph(self) -> bool:
        return self.id == ALPH_TOKEN_ID

    def to_smallest_unit(self, value: Union[Decimal, str, int]) -> int:
        """
        Convert a human amount (e.g. `Decimal("1.5")`) to the smallest unit.

        Raises `ValueError` if the value has more decimals than the token
        supports or is not a number.
        """

        try:
            quantity = Decimal(value)
        except InvalidOperation as exc:
            raise ValueError(f"Invalid amount: {value!r}") from exc
        if not quantity.is_finite():
            raise ValueError(f"Invalid amount: {value!r}")

        # Exact arithmetic: Decimal operations round to the context precision.
        scaled = Fraction(quantity) * 10**self.decimals
        if scaled.denominator != 1:
            raise ValueError(f"{value} has more than {self.decimals} decimals")
        return int(scaled)

    def from_smallest_unit(self, amount: int) -> Decimal:
        """Exact decimal value of `amount`, without trailing zeros."""

        if amount == 0:
            return Decimal(0)
        digits = tuple(int(d) for d in str(abs(amount)))
        exponent = -self.decimals
        while exponent < 0 and digits[-1] == 0:
            digits = digits[:-1]
            exponent += 1
        return Decimal((1 if amount < 0 else 0, digits, exponent))


ALPH_TOKEN = Token(id=ALPH_TOKEN_ID, symbol=ALPH_SYMBOL, decimals=ALPH_DECIMALS, name="Alephium")


@dataclass
class TokenAmount:
    """An integer amount of a token, expressed in its smallest unit."""

    amount: int
    token: Token

    def __post_init__(self) -> None:
        if self.amount < 0:
            raise ValueError("Token amounts cannot be negative.")

    @classmethod
    def from_display(cls, text: str, token: Token) -> "TokenAmount":
        """Parse a user-provided amount such as "1.5" or "1,5"."""

        return cls(token.to_smallest_unit(text.strip().replace(",", ".")), token)

    def amount_as_decimal(self) -> Decimal:
        return self.token.from_smallest_unit(self.amount)

    def substract_and_get_percentage(self, percentage: Union[Decimal, str, int]) -> "TokenAmount":
        """
        Take `percentage` percent out of this amount and return it.

        The taken part is floored, so `fee + remaining == original` always
        holds and the remainder never goes negative.
        """

        rate = Fraction(str(percentage))
        if rate < 0 or rate > 100:
            raise ValueError(f"Percentage must be within [0, 100], got {percentage}")

        fee = (self.amount * rate.numerator) // (rate.denominator * 100)
        self.amount -= fee
        return TokenAmount(fee, self.token)

    def __str__(self) -> str:
        return f"{self.amount_as_decimal():f} ${self.token.symbol}"


UserBalance = List[TokenAmount]


def sum_user_balance(balances: Iterable[UserBalance]) -> UserBalance:
    """
    Merge several balances into one entry per token, amounts added.

    Order of the result is not significant, but ALPH is kept first when
    present so that callers can rely on it for display.
    """

    totals: Dict[str, TokenAmount] = {}
    for balance in balances:
        for token_amount in balance:
            current = totals.get(token_amount.token.id)
            if current is None:
                totals[token_amount.token.id] = TokenAmount(token_amount.amount, token_amount.token)
            else:
                current.amount += token_amount.amount

    return sorted(totals.values(), key=lambda t: (not t.token.is_alph(), t.token.symbol))


class SweepStep(Enum):
    """Steps of the withdraw-everything protocol."""

    TAKE_FEES = "Take operator fees"
    SEND_FUNDS = "Send your funds"


DisplayCallback = Callable[[str], Union[None, Awaitable[None]]]


@dataclass
class TransactionStatus:
    """
    Progress tracker shown to the user while a transaction is processed.

    Every change is pushed through `display_update()` to a callback set by
    the interface layer (usually "edit the last message"). Displaying is
    best effort: callback errors never reach the operation.
    """

    header: str
    details: Union[str, Sequence[str]] = ""
    explorer_url: Optional[str] = None
    current_step: int = 0
    confirmed: bool = False
    failed: bool = False
    transaction_id: Optional[str] = None
    _display: Optional[DisplayCallback] = field(default=None, repr=False)

    @property
    def steps(self) -> List[str]:
        if isinstance(self.details, str):
            return []
        return list(self.details)

    def set_display_update(self, callback: DisplayCallback) -> "TransactionStatus":
        self._display = callback
        return self

    def set_transaction_id(self, tx_id: str) -> "TransactionStatus":
        self.transaction_id = tx_id
        return self

    def set_confirmed(self) -> "TransactionStatus":
        self.confirmed = True
        return self

    def set_failed(self) -> "TransactionStatus":
        self.failed = True
        return self

    def next_step(self) -> "TransactionStatus":
        if self.current_step + 1 < len(self.steps):
            self.current_step += 1
            self.confirmed = False
            self.transaction_id = None
        return self

    def _state_icon(self) -> str:
        if self.failed:
            return "❌"
        if self.confirmed:
            return "✅"
        return "⏳"

    def _tx_line(self) -> str:
        if self.transaction_id is None:
            return ""
        if self.explorer_url:
            return f'\nTx: <a href="{self.explorer_url}/transactions/{self.transaction_id}">{self.transaction_id[:12]}…</a>'
        return f"\nTx: <code>{self.transaction_id}</code>"

    def __str__(self) -> str:
        steps = self.steps
        if not steps:
            return f"{self.header}\n{self.details} {self._state_icon()}{self._tx_line()}"

        lines = [self.header]
        for index, label in enumerate(steps):
            if index < self.current_step:
                icon = "✅"
            elif index == self.current_step:
                icon = self._state_icon()
            else:
                icon = "▫️"
            lines.append(f"{index + 1}/{len(steps)} {label} {icon}")
        return "\n".join(lines) + self._tx_line()

    def display_update(self) -> None:
        if self._display is None:
            return

        try:
            result = self._display(str(self))
        except Exception:
            logger.debug("Transaction status display failed", exc_info=True)
            return

        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            _display_tasks.add(task)
            task.add_done_callback(_display_tasks.discard)
            task.add_done_callback(_log_display_failure)


def _log_display_failure(task: "asyncio.Future[None]") -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.debug("Transaction status display failed", exc_info=task.exception())
