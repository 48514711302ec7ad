from __future__ import annotations

import asyncio
import sqlite3
from typing import List

from domain.errors import UnknownTokenError
from domain.models import ALPH_TOKEN, Token, TokenAmount
from domain.repositories import TokenRepository


class SqliteTokenRepository(TokenRepository):
    """
    SQLite-backed implementation of `TokenRepository`.

    Manages the `tokens` table. ALPH is always present: it is inserted
    when the table is created.
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
                CREATE TABLE IF NOT EXISTS tokens (
                    id TEXT PRIMARY KEY,
                    symbol TEXT NOT NULL UNIQUE,
                    decimals INTEGER NOT NULL,
                    name TEXT NOT NULL DEFAULT ''
                )
                """
            )
            cur.execute(
                "INSERT OR IGNORE INTO tokens (id, symbol, decimals, name) VALUES (?, ?, ?, ?)",
                (ALPH_TOKEN.id, ALPH_TOKEN.symbol, ALPH_TOKEN.decimals, ALPH_TOKEN.name),
            )
            conn.commit()

    @staticmethod
    def _to_domain(row: sqlite3.Row) -> Token:
        return Token(
            id=row[0],
            symbol=row[1],
            decimals=int(row[2]),
            name=row[3],
        )

    def _select(self, where: str, params: tuple) -> List[Token]:
        with self._get_connection() as conn:
            cur = conn.cursor()
            cur.execute(f"SELECT id, symbol, decimals, name FROM tokens {where}", params)
            return [self._to_domain(row) for row in cur.fetchall()]

    def add_token(self, token: Token) -> None:
        with self._get_connection() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO tokens (id, symbol, decimals, name)
                VALUES (?, ?, ?, ?)
                ON CONFLICT (id)
                DO UPDATE SET symbol = excluded.symbol, decimals = excluded.decimals, name = excluded.name
                """,
                (token.id, token.symbol, token.decimals, token.name),
            )
            conn.commit()

    async def get_by_symbol(self, symbol: str) -> Token:
        symbol = symbol.lstrip("$")
        tokens = await asyncio.to_thread(self._select, "WHERE symbol = ? COLLATE NOCASE", (symbol,))
        if not tokens:
            raise UnknownTokenError(symbol)
        return tokens[0]

    async def get_token_amount(self, token_id: str, amount: int) -> TokenAmount:
        tokens = await asyncio.to_thread(self._select, "WHERE id = ?", (token_id,))
        if not tokens:
            raise UnknownTokenError(token_id)
        return TokenAmount(amount, tokens[0])

    async def list_tokens(self) -> List[Token]:
        return await asyncio.to_thread(self._select, "ORDER BY symbol", ())
