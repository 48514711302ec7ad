import os
import sqlite3
import tempfile
import unittest

from domain.errors import UnknownTokenError
from domain.models import ALPH_TOKEN, Token, User
from infrastructure.db.token_repository_sqlite import SqliteTokenRepository
from infrastructure.db.user_repository_sqlite import SqliteUserRepository
from tests.fakes import USDT


class SqliteTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.db_path = os.path.join(self.tmp.name, "tipbot.db")


class SqliteUserRepositoryTests(SqliteTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.repo = SqliteUserRepository(self.db_path)

    async def test_save_assigns_id_then_updates(self):
        user = await self.repo.save(User(telegram_id=111, telegram_username="Alice"))
        self.assertIsNotNone(user.id)
        self.assertIsNone(user.address)

        user.address = "1address"
        await self.repo.save(user)

        stored = await self.repo.get_by_telegram_id(111)
        self.assertEqual(stored, User(telegram_id=111, telegram_username="Alice", id=user.id, address="1address"))
        self.assertTrue(await self.repo.exists_by_telegram_id(111))
        self.assertFalse(await self.repo.exists_by_telegram_id(222))

    async def test_telegram_id_is_unique(self):
        await self.repo.save(User(telegram_id=111, telegram_username="alice"))

        with self.assertRaises(sqlite3.IntegrityError):
            await self.repo.save(User(telegram_id=111, telegram_username="alice2"))

    async def test_lookup_by_username_ignores_case_and_at_sign(self):
        user = await self.repo.save(User(telegram_id=111, telegram_username="Alice"))

        self.assertEqual((await self.repo.get_by_telegram_username("@alice")).id, user.id)
        self.assertIsNone(await self.repo.get_by_telegram_username("bob"))

    async def test_count_find_remove(self):
        users = [await self.repo.save(User(telegram_id=i, telegram_username=f"u{i}")) for i in range(5)]

        self.assertEqual(await self.repo.count(), 5)
        page = await self.repo.find(skip=2, take=2)
        self.assertEqual([u.telegram_id for u in page], [2, 3])

        await self.repo.remove(users[0])
        self.assertEqual(await self.repo.count(), 4)
        self.assertIsNone(await self.repo.get_by_telegram_id(0))

    async def test_data_survives_a_new_repository(self):
        await self.repo.save(User(telegram_id=111, telegram_username="alice"))

        self.assertEqual(await SqliteUserRepository(self.db_path).count(), 1)


class SqliteTokenRepositoryTests(SqliteTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.repo = SqliteTokenRepository(self.db_path)

    async def test_alph_is_always_known(self):
        self.assertEqual(await self.repo.get_by_symbol("ALPH"), ALPH_TOKEN)
        self.assertEqual(await self.repo.list_tokens(), [ALPH_TOKEN])

    async def test_symbol_lookup(self):
        self.repo.add_token(USDT)

        self.assertEqual(await self.repo.get_by_symbol("$usdt"), USDT)
        with self.assertRaises(UnknownTokenError):
            await self.repo.get_by_symbol("DOGE")

    async def test_add_token_updates_existing(self):
        self.repo.add_token(USDT)
        renamed = Token(id=USDT.id, symbol="USDTe", decimals=6, name="Bridged Tether USD")
        self.repo.add_token(renamed)

        self.assertEqual(await self.repo.get_by_symbol("USDTe"), renamed)
        self.assertEqual(len(await self.repo.list_tokens()), 2)

    async def test_token_amount(self):
        self.repo.add_token(USDT)

        amount = await self.repo.get_token_amount(USDT.id, 1_500_000)
        self.assertEqual(str(amount), "1.5 $USDT")

        with self.assertRaises(UnknownTokenError):
            await self.repo.get_token_amount("ef" * 32, 1)


if __name__ == "__main__":
    unittest.main()
