from __future__ import annotations

from typing import List, Optional

from domain.errors import (
    AlphAmountOverflowError,
    AlphApiIOError,
    InvalidAddressError,
    NetworkError,
    NotEnoughALPHForALPHAndTokenChangeOutputError,
    NotEnoughALPHForTokenChangeOutputError,
    NotEnoughALPHForTransactionOutputError,
    NotEnoughApprovedBalanceError,
    NotEnoughBalanceForFeeError,
    NotEnoughFundsError,
    TooSmallWithdrawalError,
)
from domain.models import Token, TokenAmount, UserBalance

UNINITIALIZED_WALLET = "It seems that you haven't initialized your wallet yet. Send /start to do it!"


def error_while(action: str) -> str:
    return f"An error occured while {action}. Please try again later."


def format_balance(balance: UserBalance) -> str:
    if len(balance) == 1 and balance[0].token.is_alph():
        return f"Your account currently holds: {balance[0]}"
    lines: List[str] = ["Your account currently holds:"]
    lines.extend(f" &#8226; {t}" for t in balance)
    return "\n".join(lines)


def format_token_list(balance: UserBalance) -> str:
    return "\n".join(f" &#8226; {t}" for t in balance)


def describe_error(err: BaseException, action: str, token: Optional[Token] = None) -> str:
    """Message shown to the user when `action` ("tip", "withdraw") failed with `err`."""

    if isinstance(err, (NetworkError, AlphApiIOError)):
        return "Oops. It seems that someone twisted a cable somewhere. You should try again, it might work now."
    if isinstance(err, InvalidAddressError):
        return f"The provided address ({err.invalid_address}) seems invalid."
    if isinstance(err, NotEnoughFundsError):
        if token is None:
            return f"You do not have enough funds to {action} this amount."
        required = TokenAmount(err.required_funds, token)
        actual = TokenAmount(err.actual_funds, token)
        return f"You cannot {action} {required}, since you only have {actual}"
    if isinstance(err, NotEnoughBalanceForFeeError):
        return "You do not have enough balance to handle the gas fees. You can maybe try again with a lower amount"
    if isinstance(err, TooSmallWithdrawalError):
        return f"The amount ({err.token_amount}) is too small to be withdrawn."
    if isinstance(err, AlphAmountOverflowError):
        return f"It seems that you are trying to {action} too large amounts. Try with smaller one!"
    if isinstance(err, NotEnoughALPHForTransactionOutputError):
        return "You cannot send less than 0.001 $ALPH"
    if isinstance(err, NotEnoughALPHForALPHAndTokenChangeOutputError):
        return "You do not have enough $ALPH to transfer this token"
    if isinstance(err, (NotEnoughALPHForTokenChangeOutputError, NotEnoughApprovedBalanceError)):
        return "You need to keep some $ALPH to be able to take out your tokens later"
    return error_while(f"processing your {action}")
