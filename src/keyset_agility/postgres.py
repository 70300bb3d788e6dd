"""
PostgreSQL storage backend for encrypted keysets.

Schema (created by ``create_schema``)::

    CREATE TABLE keysets (
        name              TEXT        NOT NULL,
        version           INTEGER     NOT NULL,
        encrypted_keyset  BYTEA       NOT NULL,
        created_at        TIMESTAMPTZ NOT NULL DEFAULT now(),
        PRIMARY KEY (name, version)
    )

Only encrypted keysets are written; the master key never reaches the
database.
"""

from __future__ import annotations

from typing import List, Optional

import asyncpg

from .errors import StorageError
from .storage import KeysetStorage, StoredKeyset

SCHEMA = """
    CREATE TABLE IF NOT EXISTS keysets (
        name              TEXT        NOT NULL,
        version           INTEGER     NOT NULL,
        encrypted_keyset  BYTEA       NOT NULL,
        created_at        TIMESTAMPTZ NOT NULL DEFAULT now(),
        PRIMARY KEY (name, version)
    )
"""


class PostgresKeysetStorage(KeysetStorage):
    """PostgreSQL storage backend for encrypted keysets."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        """
        Initialize PostgreSQL storage.

        Args:
            pool: asyncpg connection pool
        """
        self._pool = pool

    @property
    def pool(self) -> asyncpg.Pool:
        """Get the connection pool."""
        return self._pool

    async def create_schema(self) -> None:
        """Create the keysets table if it does not exist."""
        try:
            await self._pool.execute(SCHEMA)
        except Exception as e:
            raise StorageError(f"Failed to create schema: {e}")

    async def store(self, name: str, encrypted_keyset: bytes) -> StoredKeyset:
        """
        Store a new version of a keyset.

        The version is allocated inside the INSERT; two concurrent writers of
        the same name collide on the primary key and one gets StorageError.
        """
        query = """
            INSERT INTO keysets (name, version, encrypted_keyset)
            SELECT $1::text, COALESCE(MAX(version), 0) + 1, $2::bytea
            FROM keysets WHERE name = $1
            RETURNING name, version, encrypted_keyset, created_at
        """
        try:
            row = await self._pool.fetchrow(query, name, encrypted_keyset)
        except Exception as e:
            raise StorageError(f"Failed to store keyset: {e}")
        if row is None:
            raise StorageError("Failed to store keyset: no row returned")
        return self._row_to_stored_keyset(row)

    async def get_latest(self, name: str) -> Optional[StoredKeyset]:
        query = """
            SELECT name, version, encrypted_keyset, created_at
            FROM keysets WHERE name = $1
            ORDER BY version DESC LIMIT 1
        """
        try:
            row = await self._pool.fetchrow(query, name)
        except Exception as e:
            raise StorageError(f"Failed to get keyset: {e}")
        return self._row_to_stored_keyset(row) if row else None

    async def get_version(self, name: str, version: int) -> Optional[StoredKeyset]:
        query = """
            SELECT name, version, encrypted_keyset, created_at
            FROM keysets WHERE name = $1 AND version = $2
        """
        try:
            row = await self._pool.fetchrow(query, name, version)
        except Exception as e:
            raise StorageError(f"Failed to get keyset version: {e}")
        return self._row_to_stored_keyset(row) if row else None

    async def list_names(self) -> List[str]:
        try:
            rows = await self._pool.fetch("SELECT DISTINCT name FROM keysets ORDER BY name")
        except Exception as e:
            raise StorageError(f"Failed to list keysets: {e}")
        return [row["name"] for row in rows]

    async def delete(self, name: str) -> int:
        try:
            rows = await self._pool.fetch(
                "DELETE FROM keysets WHERE name = $1 RETURNING version", name
            )
        except Exception as e:
            raise StorageError(f"Failed to delete keyset: {e}")
        return len(rows)

    @staticmethod
    def _row_to_stored_keyset(row: asyncpg.Record) -> StoredKeyset:
        """Convert database row to StoredKeyset."""
        return StoredKeyset(
            name=row["name"],
            version=row["version"],
            encrypted_keyset=bytes(row["encrypted_keyset"]),
            created_at=row["created_at"],
        )
