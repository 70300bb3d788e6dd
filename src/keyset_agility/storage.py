"""
Storage abstractions for encrypted keysets.

This module provides:
- StoredKeyset: one version of a named, encrypted keyset
- KeysetStorage: Abstract protocol for keyset storage backends
- InMemoryKeysetStorage: asyncio-safe in-memory implementation for testing

Blobs are stored exactly as produced by
EnvelopeKeysetCodec.serialize_encrypted; storage never sees plaintext keys.
Versions start at 1 and only grow.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional


@dataclass
class StoredKeyset:
    """Stored keyset version."""

    name: str
    version: int
    encrypted_keyset: bytes
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class KeysetStorage(ABC):
    """
    Abstract storage interface for encrypted keysets.

    All methods are async to support both in-memory and database backends.
    """

    @abstractmethod
    async def store(self, name: str, encrypted_keyset: bytes) -> StoredKeyset:
        """Store a new version of ``name`` and return it."""
        ...

    @abstractmethod
    async def get_latest(self, name: str) -> Optional[StoredKeyset]:
        """Get the highest version of ``name``."""
        ...

    @abstractmethod
    async def get_version(self, name: str, version: int) -> Optional[StoredKeyset]:
        """Get a specific version of ``name``."""
        ...

    @abstractmethod
    async def list_names(self) -> List[str]:
        """List all keyset names."""
        ...

    @abstractmethod
    async def delete(self, name: str) -> int:
        """Delete every version of ``name``; returns how many were removed."""
        ...


class InMemoryKeysetStorage(KeysetStorage):
    """
    In-memory storage implementation for testing.

    Uses asyncio.Lock for safe concurrent access.
    """

    def __init__(self) -> None:
        self._keysets: Dict[str, List[StoredKeyset]] = {}
        self._lock = asyncio.Lock()

    async def store(self, name: str, encrypted_keyset: bytes) -> StoredKeyset:
        async with self._lock:
            versions = self._keysets.setdefault(name, [])
            stored = StoredKeyset(
                name=name,
                version=len(versions) + 1,
                encrypted_keyset=bytes(encrypted_keyset),
            )
            versions.append(stored)
            return stored

    async def get_latest(self, name: str) -> Optional[StoredKeyset]:
        async with self._lock:
            versions = self._keysets.get(name)
            return versions[-1] if versions else None

    async def get_version(self, name: str, version: int) -> Optional[StoredKeyset]:
        async with self._lock:
            for stored in self._keysets.get(name, []):
                if stored.version == version:
                    return stored
            return None

    async def list_names(self) -> List[str]:
        async with self._lock:
            return sorted(self._keysets)

    async def delete(self, name: str) -> int:
        async with self._lock:
            return len(self._keysets.pop(name, []))
