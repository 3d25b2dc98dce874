"""Whole-document persistence for backtest runs."""
from __future__ import annotations

import json
import logging

import aiosqlite

logger = logging.getLogger(__name__)


class BacktestStore:
    """One JSON document per backtest, keyed by id.

    Indexed columns mirror the fields used for lookups and listings; the
    document column holds the full snapshot.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        self._db: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        self._db = await aiosqlite.connect(self._db_path)
        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS backtests (
                id TEXT PRIMARY KEY,
                user_id TEXT,
                portfolio_id TEXT,
                name TEXT NOT NULL,
                status TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                document TEXT NOT NULL
            )
        """)
        await self._db.execute(
            "CREATE INDEX IF NOT EXISTS idx_backtests_portfolio ON backtests (portfolio_id, user_id, created_at)"
        )
        await self._db.commit()

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    async def save(self, document: dict) -> str:
        assert self._db is not None
        await self._db.execute(
            """
            INSERT INTO backtests (id, user_id, portfolio_id, name, status, created_at, updated_at, document)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                user_id = excluded.user_id,
                portfolio_id = excluded.portfolio_id,
                name = excluded.name,
                status = excluded.status,
                updated_at = excluded.updated_at,
                document = excluded.document
            """,
            (
                document["id"],
                document.get("user_id"),
                document.get("ledger", {}).get("portfolio_id"),
                document.get("name", ""),
                document["status"],
                document["created_at"],
                document["updated_at"],
                json.dumps(document),
            ),
        )
        await self._db.commit()
        logger.debug("Saved backtest %s (%s)", document["id"], document["status"])
        return document["id"]

    async def find_one(self, backtest_id: str, user_id: str | None = None) -> dict | None:
        assert self._db is not None
        if user_id is None:
            cursor = await self._db.execute("SELECT document FROM backtests WHERE id = ?", (backtest_id,))
        else:
            cursor = await self._db.execute(
                "SELECT document FROM backtests WHERE id = ? AND user_id = ?", (backtest_id, user_id),
            )
        row = await cursor.fetchone()
        return json.loads(row[0]) if row else None

    async def find_summaries(
        self,
        portfolio_id: str | None = None,
        user_id: str | None = None,
        limit: int = 50,
    ) -> list[dict]:
        """Newest-first listing without histories or action logs."""
        assert self._db is not None
        clauses: list[str] = []
        params: list = []
        if portfolio_id is not None:
            clauses.append("portfolio_id = ?")
            params.append(portfolio_id)
        if user_id is not None:
            clauses.append("user_id = ?")
            params.append(user_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        cursor = await self._db.execute(
            f"SELECT document FROM backtests {where} ORDER BY created_at DESC LIMIT ?",
            (*params, limit),
        )
        summaries = []
        for (raw,) in await cursor.fetchall():
            doc = json.loads(raw)
            summaries.append({
                "id": doc["id"],
                "name": doc.get("name", ""),
                "status": doc["status"],
                "error": doc.get("error"),
                "start_date": doc["start_date"],
                "end_date": doc["end_date"],
                "statistics": doc.get("statistics", {}),
                "created_at": doc["created_at"],
                "updated_at": doc["updated_at"],
            })
        return summaries
