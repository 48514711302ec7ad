from __future__ import annotations

import asyncio
import sqlite3
from typing import List, Optional

from domain.models import User
from domain.repositories import UserRepository

_COLUMNS = "id, telegram_id, telegram_username, address"


class SqliteUserRepository(UserRepository):
    """
    SQLite-backed implementation of `UserRepository`.

    This repository owns the `users` table and maps rows to the `User`
    domain model. It is self-initialising: the table is created if needed.
    Queries run in a worker thread so the event loop is never blocked.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        self._ensure_table()

    def _get_connection(self) -> sqlite3.Connection:
        return sqlite3.connect(self._db_path)

    def _ensure_table(self) -> None:
        with self._get_connection() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    telegram_id INTEGER NOT NULL UNIQUE,
                    telegram_username TEXT NOT NULL,
                    address TEXT UNIQUE
                )
                """
            )
            conn.commit()

    @staticmethod
    def _to_domain(row: sqlite3.Row) -> User:
        return User(
            id=int(row[0]),
            telegram_id=int(row[1]),
            telegram_username=row[2],
            address=row[3],
        )

    def _fetch_one(self, query: str, params: tuple) -> Optional[User]:
        with self._get_connection() as conn:
            cur = conn.cursor()
            cur.execute(query, params)
            row = cur.fetchone()
            if not row:
                return None
            return self._to_domain(row)

    def _save(self, user: User) -> User:
        with self._get_connection() as conn:
            cur = conn.cursor()
            if user.id is None:
                cur.execute(
                    """
                    INSERT INTO users (telegram_id, telegram_username, address)
                    VALUES (?, ?, ?)
                    """,
                    (user.telegram_id, user.telegram_username, user.address),
                )
                user_id = cur.lastrowid
            else:
                cur.execute(
                    """
                    UPDATE users
                    SET telegram_username = ?, address = ?
                    WHERE id = ?
                    """,
                    (user.telegram_username, user.address, user.id),
                )
                user_id = user.id
            conn.commit()
        return User(
            id=user_id,
            telegram_id=user.telegram_id,
            telegram_username=user.telegram_username,
            address=user.address,
        )

    def _remove(self, user: User) -> None:
        with self._get_connection() as conn:
            cur = conn.cursor()
            cur.execute("DELETE FROM users WHERE id = ?", (user.id,))
            conn.commit()

    def _count(self) -> int:
        with self._get_connection() as conn:
            cur = conn.cursor()
            cur.execute("SELECT COUNT(*) FROM users")
            return int(cur.fetchone()[0])

    def _find(self, skip: int, take: int) -> List[User]:
        with self._get_connection() as conn:
            cur = conn.cursor()
            cur.execute(f"SELECT {_COLUMNS} FROM users ORDER BY id LIMIT ? OFFSET ?", (take, skip))
            return [self._to_domain(row) for row in cur.fetchall()]

    async def exists_by_telegram_id(self, telegram_id: int) -> bool:
        return await self.get_by_telegram_id(telegram_id) is not None

    async def save(self, user: User) -> User:
        return await asyncio.to_thread(self._save, user)

    async def remove(self, user: User) -> None:
        await asyncio.to_thread(self._remove, user)

    async def count(self) -> int:
        return await asyncio.to_thread(self._count)

    async def find(self, skip: int, take: int) -> List[User]:
        return await asyncio.to_thread(self._find, skip, take)

    async def get_by_telegram_id(self, telegram_id: int) -> Optional[User]:
        return await asyncio.to_thread(
            self._fetch_one,
            f"SELECT {_COLUMNS} FROM users WHERE telegram_id = ?",
            (telegram_id,),
        )

    async def get_by_telegram_username(self, username: str) -> Optional[User]:
        return await asyncio.to_thread(
            self._fetch_one,
            f"SELECT {_COLUMNS} FROM users WHERE telegram_username = ? COLLATE NOCASE",
            (username.lstrip("@"),),
        )
