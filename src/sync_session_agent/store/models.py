"""Persistent store pair - general object store and crypto key store."""

from __future__ import annotations

import json
import sqlite3
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, cast

import aiosqlite
import structlog

from sync_session_agent import config
from sync_session_agent.errors import store_open_error

logger = structlog.get_logger()

GENERAL_SCHEMA = """
CREATE TABLE IF NOT EXISTS kv (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS rooms (
    room_id TEXT PRIMARY KEY,
    name TEXT,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS account_data (
    event_type TEXT PRIMARY KEY,
    content TEXT NOT NULL DEFAULT '{}'
);
"""

CRYPTO_SCHEMA = """
CREATE TABLE IF NOT EXISTS keys (
    key_id TEXT PRIMARY KEY,
    material BLOB NOT NULL,
    created_at TEXT NOT NULL
);
"""


class SqliteStore:
    """Async SQLite store with a fixed schema."""

    name = "sqlite"
    schema = ""
    tables: tuple[str, ...] = ()

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self._connection: aiosqlite.Connection | None = None

    @property
    def is_open(self) -> bool:
        return self._connection is not None

    async def connect(self) -> None:
        """Open the database and initialize its schema.

        Raises:
            StoreOpenError: If the file cannot be created, opened or read.
        """
        if self._connection:
            return
        connection: aiosqlite.Connection | None = None
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            connection = await aiosqlite.connect(self.db_path)
            await connection.executescript(self.schema)
            await connection.commit()
        except (OSError, sqlite3.Error) as exc:
            if connection is not None:
                await connection.close()
            raise store_open_error(self.name, str(self.db_path), str(exc)) from None
        self._connection = connection
        logger.info("store_opened", store=self.name, path=str(self.db_path))

    async def close(self) -> None:
        """Close database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None
            logger.info("store_closed", store=self.name)

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[aiosqlite.Connection, None]:
        """Context manager for database transactions."""
        if not self._connection:
            raise RuntimeError(f"{self.name} store not open")
        try:
            yield self._connection
            await self._connection.commit()
        except Exception:
            await self._connection.rollback()
            raise

    async def clear(self) -> None:
        """Delete every row; a closed store is opened just for the wipe."""
        opened_here = not self.is_open
        if opened_here:
            await self.connect()
        try:
            async with self.transaction() as conn:
                for table in self.tables:
                    await conn.execute(f"DELETE FROM {table}")
        finally:
            if opened_here:
                await self.close()
        logger.info("store_cleared", store=self.name)

    async def count_rows(self) -> int:
        """Total row count across all tables."""
        if not self._connection:
            return 0
        total = 0
        for table in self.tables:
            cursor = await self._connection.execute(f"SELECT COUNT(*) FROM {table}")
            row = await cursor.fetchone()
            total += row[0] if row else 0
        return total


class GeneralStore(SqliteStore):
    """Derived local projection: sync token, rooms and account data."""

    name = "general"
    schema = GENERAL_SCHEMA
    tables = ("kv", "rooms", "account_data")

    # Key/value operations

    async def get_value(self, key: str) -> str | None:
        if not self._connection:
            return None
        cursor = await self._connection.execute("SELECT value FROM kv WHERE key = ?", (key,))
        row = await cursor.fetchone()
        return cast(str, row[0]) if row else None

    async def set_value(self, key: str, value: str) -> None:
        async with self.transaction() as conn:
            await conn.execute(
                """
                INSERT INTO kv (key, value) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value
                """,
                (key, value),
            )

    # Room operations

    async def save_rooms(self, rooms: dict[str, str | None]) -> None:
        """Upsert room IDs with their display names."""
        now = datetime.now().isoformat()
        async with self.transaction() as conn:
            await conn.executemany(
                """
                INSERT INTO rooms (room_id, name, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(room_id) DO UPDATE SET
                    name = COALESCE(excluded.name, rooms.name),
                    updated_at = excluded.updated_at
                """,
                [(room_id, name, now) for room_id, name in rooms.items()],
            )

    async def list_rooms(self) -> dict[str, str | None]:
        if not self._connection:
            return {}
        cursor = await self._connection.execute("SELECT room_id, name FROM rooms ORDER BY room_id")
        rows = await cursor.fetchall()
        return {row[0]: row[1] for row in rows}

    # Account data operations

    async def save_account_data(self, event_type: str, content: dict[str, Any]) -> None:
        async with self.transaction() as conn:
            await conn.execute(
                """
                INSERT INTO account_data (event_type, content) VALUES (?, ?)
                ON CONFLICT(event_type) DO UPDATE SET content = excluded.content
                """,
                (event_type, json.dumps(content)),
            )

    async def list_account_data(self) -> dict[str, dict[str, Any]]:
        if not self._connection:
            return {}
        cursor = await self._connection.execute("SELECT event_type, content FROM account_data")
        rows = await cursor.fetchall()
        return {row[0]: cast(dict[str, Any], json.loads(row[1])) for row in rows}


class CryptoStore(SqliteStore):
    """Device key material. Only wiped by a full logout."""

    name = "crypto"
    schema = CRYPTO_SCHEMA
    tables = ("keys",)

    async def get_key(self, key_id: str) -> bytes | None:
        if not self._connection:
            return None
        cursor = await self._connection.execute(
            "SELECT material FROM keys WHERE key_id = ?", (key_id,)
        )
        row = await cursor.fetchone()
        return bytes(row[0]) if row else None

    async def save_key(self, key_id: str, material: bytes) -> None:
        now = datetime.now().isoformat()
        async with self.transaction() as conn:
            await conn.execute(
                """
                INSERT INTO keys (key_id, material, created_at) VALUES (?, ?, ?)
                ON CONFLICT(key_id) DO UPDATE SET material = excluded.material
                """,
                (key_id, material, now),
            )


class StorePair:
    """Opens, clears and closes the general and crypto stores together."""

    def __init__(
        self,
        general_path: Path | None = None,
        crypto_path: Path | None = None,
    ) -> None:
        self.general = GeneralStore(general_path or config.GENERAL_STORE_PATH)
        self.crypto = CryptoStore(crypto_path or config.CRYPTO_STORE_PATH)

    async def open_general_store(self) -> GeneralStore:
        await self.general.connect()
        return self.general

    async def open_crypto_store(self) -> CryptoStore:
        await self.crypto.connect()
        return self.crypto

    async def clear_all(self, handle: SqliteStore) -> None:
        """Delete all data held by ``handle``."""
        await handle.clear()

    async def close(self) -> None:
        await self.general.close()
        await self.crypto.close()
