from __future__ import annotations

import asyncio
import logging
import math
from typing import List, Optional

from application.error_classifier import classified_errors
from domain.errors import UnknownTokenError
from domain.models import ALPH_SYMBOL, Token, TokenAmount, User, UserBalance, sum_user_balance
from domain.repositories import AddressBalance, NodeGateway, TokenRepository, UserRepository

logger = logging.getLogger(__name__)


class BalanceAggregator:
    """
    Reads balances from the full node and converts them to `TokenAmount`s.

    Reporting is authoritative for registered tokens only: assets the
    token registry does not know are dropped (and logged).
    """

    def __init__(
        self,
        node: NodeGateway,
        user_repo: UserRepository,
        token_repo: TokenRepository,
        consider_mempool: bool = False,
    ) -> None:
        self._node = node
        self._user_repo = user_repo
        self._token_repo = token_repo
        self._consider_mempool = consider_mempool

    async def _convert(self, balance: AddressBalance) -> UserBalance:
        alph = await self._token_repo.get_by_symbol(ALPH_SYMBOL)
        user_balance: UserBalance = [TokenAmount(balance.balance, alph)]
        if not balance.token_balances:
            return user_balance

        results = await asyncio.gather(
            *(self._token_repo.get_token_amount(token_id, amount) for token_id, amount in balance.token_balances),
            return_exceptions=True,
        )
        unknown = []
        for result in results:
            if isinstance(result, UnknownTokenError):
                unknown.append(result.token_ref)
            elif isinstance(result, BaseException):
                raise result
            else:
                user_balance.append(result)

        if unknown:
            logger.info("Ignoring un-recognised tokens: %s", ", ".join(unknown))
        return user_balance

    async def _fetch(self, address: str, mempool: Optional[bool] = None) -> UserBalance:
        with classified_errors():
            balance = await self._node.get_address_balance(address, mempool)
        return await self._convert(balance)

    async def get_user_balance(self, user: User, token: Optional[Token] = None) -> UserBalance:
        """Return the balance of `user`, restricted to `token` when given."""

        balance = await self._fetch(user.address)
        if token is None:
            return balance
        return [t for t in balance if t.token.id == token.id]

    async def get_total_token_amount(self) -> UserBalance:
        """Sum the balances of every registered user, a batch of users at a time."""

        total_users = await self._user_repo.count()
        batch_size = max(1, math.ceil(total_users / 10))

        total: UserBalance = []
        for skip in range(0, total_users, batch_size):
            users = await self._user_repo.find(skip=skip, take=batch_size)
            balances = await asyncio.gather(*(self.get_user_balance(u) for u in users if u.address))
            total = sum_user_balance([total, *balances])
        return total

    async def get_total_token_amount_from_addresses(self, addresses: List[str]) -> UserBalance:
        balances = await asyncio.gather(*(self._fetch(a, self._consider_mempool) for a in addresses))
        return sum_user_balance(balances)
