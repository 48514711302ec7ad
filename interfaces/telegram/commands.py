from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

_TIP_RE = re.compile(
    r"^/tip(?:@\w+)?\s+(?P<amount>\d+(?:[.,]\d+)?)"
    r"(?:\s+\$(?P<symbol>[a-zA-Z]{2,}))?"
    r"(?:\s+@(?P<username>\w+))?"
    r"(?:\s+(?P<reason>.+))?$",
    re.DOTALL,
)

_WITHDRAW_RE = re.compile(
    r"^/withdraw(?:@\w+)?\s+(?:(?P<amount>\d+(?:[.,]\d+)?)|all)"
    r"(?:\s+\$(?P<symbol>[a-zA-Z]{2,}))?"
    r"\s+(?P<destination>[a-zA-Z0-9]+)$"
)


@dataclass
class TipCommand:
    """
    Parsed `/tip` command.

    Formats:
      /tip <amount> [$TOKEN] [reason]           (as a reply)
      /tip <amount> [$TOKEN] @username [reason]
    """

    amount: str
    symbol: Optional[str] = None
    username: Optional[str] = None
    reason: Optional[str] = None


@dataclass
class WithdrawCommand:
    """
    Parsed `/withdraw` command. `amount` is None for `/withdraw all ...`.

    Formats:
      /withdraw <amount> [$TOKEN] <address>
      /withdraw all [$TOKEN] <address>
    """

    destination: str
    amount: Optional[str] = None
    symbol: Optional[str] = None

    @property
    def is_sweep_all(self) -> bool:
        return self.amount is None and self.symbol is None


def parse_tip_command(text: str) -> Optional[TipCommand]:
    match = _TIP_RE.match(text.strip())
    if match is None:
        return None
    return TipCommand(
        amount=match.group("amount"),
        symbol=match.group("symbol"),
        username=match.group("username"),
        reason=match.group("reason"),
    )


def parse_withdraw_command(text: str) -> Optional[WithdrawCommand]:
    match = _WITHDRAW_RE.match(text.strip())
    if match is None:
        return None
    return WithdrawCommand(
        destination=match.group("destination"),
        amount=match.group("amount"),
        symbol=match.group("symbol"),
    )
