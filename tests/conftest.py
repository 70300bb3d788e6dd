"""
Pytest configuration and fixtures for keyset tests.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import AsyncGenerator, Iterator

import asyncpg
import pytest
from dotenv import load_dotenv

from keyset_agility import (
    InMemoryKeysetStorage,
    KeyRegistry,
    LocalKmsClient,
    PostgresKeysetStorage,
    SecureKey,
    register_all,
    register_kms_client,
    reset_kms_clients,
)

LOCAL_KMS_URI = "local-kms://tests"


@pytest.fixture
def registry() -> KeyRegistry:
    """A fresh registry with every built-in key type."""
    return register_all(KeyRegistry())


@pytest.fixture
def kms_client() -> Iterator[LocalKmsClient]:
    """A local KMS client registered for LOCAL_KMS_URI."""
    client = LocalKmsClient(LOCAL_KMS_URI, SecureKey.generate())
    register_kms_client(client)
    yield client
    reset_kms_clients()


@pytest.fixture
def master_aead(kms_client: LocalKmsClient):
    return kms_client.get_aead(LOCAL_KMS_URI)


@pytest.fixture
def memory_storage() -> InMemoryKeysetStorage:
    """Create an in-memory storage instance for testing."""
    return InMemoryKeysetStorage()


@pytest.fixture
async def pg_pool() -> AsyncGenerator[asyncpg.Pool, None]:
    """Create a PostgreSQL connection pool for testing."""
    # Load environment from project root
    env_path = Path(__file__).parent.parent / ".env"
    load_dotenv(env_path)

    database_url = os.environ.get("DATABASE_URL")
    if not database_url:
        pytest.skip("DATABASE_URL not set, skipping PostgreSQL tests")

    pool = await asyncpg.create_pool(database_url)
    if pool is None:
        pytest.skip("Failed to create PostgreSQL connection pool")

    await PostgresKeysetStorage(pool).create_schema()
    await pool.execute("TRUNCATE TABLE keysets")

    yield pool

    await pool.close()


@pytest.fixture
async def postgres_storage(pg_pool: asyncpg.Pool) -> PostgresKeysetStorage:
    """Create a PostgreSQL storage instance for testing."""
    return PostgresKeysetStorage(pg_pool)
