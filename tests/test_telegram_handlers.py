import unittest
from types import SimpleNamespace
from unittest.mock import AsyncMock

import httpx

from application.balances import BalanceAggregator
from application.custody import CustodialWalletService
from domain.models import User
from infrastructure.alephium.wallet import derive_wallet, is_valid_address
from infrastructure.config import AppConfig, BotConfig, FullNodeConfig, OperatorConfig, TelegramConfig
from interfaces.telegram.handlers import create_telegram_bot
from interfaces.telegram.messages import error_while
from tests.fakes import (
    TEST_MNEMONIC,
    FakeNodeGateway,
    InMemoryTokenRepository,
    InMemoryUserRepository,
    fake_derive_wallet,
)


def _handler(bot, name: str):
    for handler in bot.message_handlers:
        if handler["function"].__name__ == name:
            return handler["function"]
    raise LookupError(name)


def _message(telegram_id: int, text: str):
    return SimpleNamespace(
        text=text,
        from_user=SimpleNamespace(id=telegram_id, username="alice", first_name="Alice"),
        chat=SimpleNamespace(id=telegram_id),
        reply_to_message=None,
    )


class WithdrawHandlerTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.node = FakeNodeGateway()
        self.user_repo = InMemoryUserRepository()
        token_repo = InMemoryTokenRepository()
        config = AppConfig(
            telegram=TelegramConfig(bot_token="123:abc"),
            fullnode=FullNodeConfig(url="http://node.test"),
            operator=OperatorConfig(),
            bot=BotConfig(),
            mnemonic_reader=lambda: TEST_MNEMONIC,
        )
        balances = BalanceAggregator(self.node, self.user_repo, token_repo)
        custody = CustodialWalletService(
            node=self.node,
            user_repo=self.user_repo,
            balances=balances,
            mnemonic_reader=config.mnemonic_reader,
            derive_wallet=fake_derive_wallet,
            is_valid_address=is_valid_address,
            operator_config=config.operator,
            bot_config=config.bot,
        )
        self.bot = create_telegram_bot(config, custody, balances, self.user_repo, token_repo)
        self.bot.reply_to = AsyncMock()
        self.bot.send_message = AsyncMock()
        await custody.register_user(User(telegram_id=111, telegram_username="alice"))
        self.destination = derive_wallet(TEST_MNEMONIC, 1000).address

    async def test_withdraw_all_of_a_token_reports_balance_failure(self):
        self.node.balance_error = httpx.ConnectError("node down")
        handle_withdraw = _handler(self.bot, "handle_withdraw")

        with self.assertLogs("interfaces.telegram.handlers", level="ERROR"):
            await handle_withdraw(_message(111, f"/withdraw all $USDT {self.destination}"))

        self.bot.reply_to.assert_awaited_once()
        self.assertEqual(self.bot.reply_to.await_args.args[1], error_while("retrieving your account balance"))
        self.assertEqual(self.node.transfers, [])

    async def test_withdraw_all_of_a_missing_token(self):
        handle_withdraw = _handler(self.bot, "handle_withdraw")

        await handle_withdraw(_message(111, f"/withdraw all $USDT {self.destination}"))

        self.assertEqual(self.bot.reply_to.await_args.args[1], "You do not have any $USDT")


if __name__ == "__main__":
    unittest.main()
