import asyncio
import json
import logging
import os

from dotenv import load_dotenv

from application.balances import BalanceAggregator
from application.custody import CustodialWalletService
from domain.models import Token, User
from infrastructure.alephium.node_gateway import HttpNodeGateway
from infrastructure.alephium.wallet import derive_wallet, is_valid_address, validate_mnemonic
from infrastructure.config import AppConfig, load_config
from infrastructure.db.token_repository_sqlite import SqliteTokenRepository
from infrastructure.db.user_repository_sqlite import SqliteUserRepository
from interfaces.telegram.handlers import create_telegram_bot

logger = logging.getLogger("tipbot")


def load_tokens(token_repo: SqliteTokenRepository, tokens_file: str) -> None:
    """Register the tokens listed in a JSON file: `[{"id", "symbol", "decimals", "name"}]`."""

    with open(tokens_file, encoding="utf-8") as f:
        for entry in json.load(f):
            token_repo.add_token(
                Token(
                    id=entry["id"],
                    symbol=entry["symbol"],
                    decimals=int(entry["decimals"]),
                    name=entry.get("name", ""),
                )
            )


async def run(config: AppConfig) -> None:
    validate_mnemonic(config.mnemonic_reader())

    user_repo = SqliteUserRepository(config.db_path)
    token_repo = SqliteTokenRepository(config.db_path)
    if config.tokens_file:
        load_tokens(token_repo, config.tokens_file)

    logger.info(
        "Using %s as full node%s",
        config.fullnode.url,
        " with API key!" if config.fullnode.api_key else "",
    )
    node = HttpNodeGateway(config.fullnode.url, config.fullnode.api_key)
    await node.check_ready()

    balances = BalanceAggregator(node, user_repo, token_repo, config.bot.consider_mempool)
    custody = CustodialWalletService(
        node=node,
        user_repo=user_repo,
        balances=balances,
        mnemonic_reader=config.mnemonic_reader,
        derive_wallet=derive_wallet,
        is_valid_address=is_valid_address,
        operator_config=config.operator,
        bot_config=config.bot,
    )

    bot = create_telegram_bot(config, custody, balances, user_repo, token_repo)

    # The bot owns the first wallet so that it can be tipped too.
    if await user_repo.count() == 0:
        me = await bot.get_me()
        await custody.register_user(User(telegram_id=me.id, telegram_username=me.username))

    try:
        await bot.infinity_polling(allowed_updates=["message", "callback_query"])
    finally:
        logger.info("Stopping Telegram bot")
        await custody.drain_background_tasks()
        await bot.close_session()
        await node.aclose()


def main() -> None:
    load_dotenv()
    config = load_config(os.environ)

    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    asyncio.run(run(config))


if __name__ == "__main__":
    main()
