"""
Translation of raw full node failures into domain errors.

The node reports most conditions as generic API errors whose only
distinguishing feature is their message. Every message pattern the bot
depends on lives in `_PATTERNS` below so that wording changes on the
node side only need to be followed here.

Patterns are tried in order and the first match wins: several messages
overlap (e.g. "Not enough balance: got ..." and "Not enough balance for
fee"), so the order is part of the behaviour.
"""

from __future__ import annotations

import logging
import re
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterator, List, Optional, Pattern, Tuple

import httpx

from domain.errors import (
    AlphAmountOverflowError,
    AlphApiError,
    AlphApiIOError,
    NetworkError,
    NotEnoughALPHForALPHAndTokenChangeOutputError,
    NotEnoughALPHForTokenChangeOutputError,
    NotEnoughALPHForTransactionOutputError,
    NotEnoughApprovedBalanceError,
    NotEnoughBalanceForFeeError,
    NotEnoughFundsError,
    TipBotError,
)

logger = logging.getLogger(__name__)


class FailureKind(Enum):
    NETWORK = "network"
    IO_FAILURE = "io_failure"
    AMOUNT_OVERFLOW = "amount_overflow"
    NOT_ENOUGH_FUNDS = "not_enough_funds"
    NOT_ENOUGH_BALANCE_FOR_FEE = "not_enough_balance_for_fee"
    NOT_ENOUGH_APPROVED_BALANCE = "not_enough_approved_balance"
    NOT_ENOUGH_ALPH_FOR_OUTPUT = "not_enough_alph_for_output"
    NOT_ENOUGH_ALPH_FOR_ALPH_AND_TOKEN_CHANGE = "not_enough_alph_for_alph_and_token_change"
    NOT_ENOUGH_ALPH_FOR_TOKEN_CHANGE = "not_enough_alph_for_token_change"


@dataclass(frozen=True)
class TaggedFailure:
    """A recognised raw failure together with the fields parsed from it."""

    kind: FailureKind
    fields: Tuple[str, ...] = ()


_API = r"^\[API Error\] - "

_PATTERNS: List[Tuple[FailureKind, Pattern[str]]] = [
    (FailureKind.NETWORK, re.compile(r"^fetch failed$")),
    (FailureKind.IO_FAILURE, re.compile(_API + r".*(?:Failed in IO|I/O failure|IOError)")),
    (FailureKind.AMOUNT_OVERFLOW, re.compile(_API + r".*[Aa]mount overflow")),
    (FailureKind.NOT_ENOUGH_FUNDS, re.compile(_API + r"Not enough balance: got (\d+), expected (\d+)$")),
    (FailureKind.NOT_ENOUGH_BALANCE_FOR_FEE, re.compile(_API + r"Not enough balance for fee")),
    (
        FailureKind.NOT_ENOUGH_APPROVED_BALANCE,
        re.compile(
            _API
            + r"Not enough approved balance for address (\w+), tokenId: (\w+), expected: (\d+), got: (\d+)"
        ),
    ),
    (FailureKind.NOT_ENOUGH_ALPH_FOR_OUTPUT, re.compile(_API + r"Not enough ALPH for transaction output")),
    (
        FailureKind.NOT_ENOUGH_ALPH_FOR_ALPH_AND_TOKEN_CHANGE,
        re.compile(_API + r"Not enough ALPH for ALPH and token change output"),
    ),
    (
        FailureKind.NOT_ENOUGH_ALPH_FOR_TOKEN_CHANGE,
        re.compile(_API + r"Not enough ALPH for token change output"),
    ),
]

_ERROR_FACTORIES: Dict[FailureKind, Callable[[Tuple[str, ...]], TipBotError]] = {
    FailureKind.NETWORK: lambda f: NetworkError(),
    FailureKind.IO_FAILURE: lambda f: AlphApiIOError(),
    FailureKind.AMOUNT_OVERFLOW: lambda f: AlphAmountOverflowError(),
    FailureKind.NOT_ENOUGH_FUNDS: lambda f: NotEnoughFundsError(int(f[0]), int(f[1])),
    FailureKind.NOT_ENOUGH_BALANCE_FOR_FEE: lambda f: NotEnoughBalanceForFeeError(),
    FailureKind.NOT_ENOUGH_APPROVED_BALANCE: lambda f: NotEnoughApprovedBalanceError(f[0], f[1], int(f[2]), int(f[3])),
    FailureKind.NOT_ENOUGH_ALPH_FOR_OUTPUT: lambda f: NotEnoughALPHForTransactionOutputError(),
    FailureKind.NOT_ENOUGH_ALPH_FOR_ALPH_AND_TOKEN_CHANGE: lambda f: NotEnoughALPHForALPHAndTokenChangeOutputError(),
    FailureKind.NOT_ENOUGH_ALPH_FOR_TOKEN_CHANGE: lambda f: NotEnoughALPHForTokenChangeOutputError(),
}


def tag_failure(raw: BaseException) -> Optional[TaggedFailure]:
    """Recognise `raw`, returning `None` when no known shape matches."""

    if isinstance(raw, httpx.TransportError):
        return TaggedFailure(FailureKind.NETWORK)

    message = str(raw)
    for kind, pattern in _PATTERNS:
        match = pattern.search(message)
        if match:
            return TaggedFailure(kind, match.groups())
    return None


def classify(raw: BaseException) -> BaseException:
    """
    Map a raw failure to its domain error.

    Unrecognised failures are returned unchanged. Recognised ones are new
    domain errors chained to `raw` through `__cause__`.
    """

    tagged = tag_failure(raw)
    if tagged is None:
        return raw

    error = _ERROR_FACTORIES[tagged.kind](tagged.fields)
    error.__cause__ = raw
    return error


@contextmanager
def classified_errors() -> Iterator[None]:
    """
    Re-raise any failure of the enclosed block as its domain error.

    Unrecognised failures propagate unchanged after being logged.
    """

    try:
        yield
    except Exception as exc:
        error = classify(exc)
        if error is exc:
            if not isinstance(exc, TipBotError) or isinstance(exc, AlphApiError):
                logger.warning("Unclassified full node failure: %r", exc)
            raise
        raise error from exc
