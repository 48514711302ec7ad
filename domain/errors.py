from __future__ import annotations

from typing import Any, Dict, Optional

from .models import TokenAmount


class TipBotError(Exception):
    """
    Base class of every error raised by the bot.

    `context` carries structured details that are logged alongside the
    message. `__cause__` holds the raw error when one was translated.
    """

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.context = context or {}


class AlreadyRegisteredError(TipBotError):
    def __init__(self, telegram_id: int) -> None:
        super().__init__("user already registered", {"telegram_id": telegram_id})
        self.telegram_id = telegram_id


class InvalidAddressError(TipBotError):
    def __init__(self, address: str) -> None:
        super().__init__(f"invalid address: {address}", {"address": address})
        self.invalid_address = address


class TooSmallWithdrawalError(TipBotError):
    def __init__(self, token_amount: TokenAmount) -> None:
        super().__init__(f"withdrawal of {token_amount} is too small", {"amount": str(token_amount)})
        self.token_amount = token_amount


class NetworkError(TipBotError):
    def __init__(self) -> None:
        super().__init__("network error")


class AlphApiError(TipBotError):
    """The full node answered but rejected the request."""


class AlphApiIOError(AlphApiError):
    def __init__(self) -> None:
        super().__init__("full node I/O failure")


class AlphAmountOverflowError(AlphApiError):
    def __init__(self) -> None:
        super().__init__("amount overflow")


class NotEnoughFundsError(AlphApiError):
    def __init__(self, actual_funds: int, required_funds: int) -> None:
        super().__init__(
            "not enough funds",
            {"actual_funds": actual_funds, "required_funds": required_funds},
        )
        self.actual_funds = actual_funds
        self.required_funds = required_funds


class NotEnoughBalanceForFeeError(AlphApiError):
    def __init__(self) -> None:
        super().__init__("not enough balance for fee")


class NotEnoughApprovedBalanceError(AlphApiError):
    def __init__(self, address: str, token_id: str, expected: int, got: int) -> None:
        super().__init__(
            "not enough approved balance",
            {"address": address, "token_id": token_id, "expected": expected, "got": got},
        )
        self.address = address
        self.token_id = token_id
        self.expected = expected
        self.got = got


class NotEnoughALPHForTransactionOutputError(AlphApiError):
    def __init__(self) -> None:
        super().__init__("not enough ALPH for transaction output")


class NotEnoughALPHForALPHAndTokenChangeOutputError(AlphApiError):
    def __init__(self) -> None:
        super().__init__("not enough ALPH for ALPH and token change output")


class NotEnoughALPHForTokenChangeOutputError(AlphApiError):
    def __init__(self) -> None:
        super().__init__("not enough ALPH for token change output")


class UnknownTokenError(TipBotError, LookupError):
    def __init__(self, token_ref: str) -> None:
        super().__init__(f"unknown token: {token_ref}", {"token": token_ref})
        self.token_ref = token_ref


class NodeNotReadyError(TipBotError):
    """The full node is unreachable, not ready or not synced at startup."""


class ConfigError(TipBotError):
    """Startup configuration is missing or malformed."""
