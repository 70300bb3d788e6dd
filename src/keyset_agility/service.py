"""
Keyset service: named, versioned, encrypted keysets on top of KeysetStorage.

Every save writes a new version encrypted under the service's master Aead,
with the keyset name bound as associated data so a blob cannot be replayed
under another name. Old versions stay readable for audit and rollback.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

import asyncpg

from .codec import EnvelopeKeysetCodec
from .config import Settings
from .errors import KeysetNotFoundError, StorageError
from .handle import KeysetHandle
from .keyset import KeysetInfo
from .kms import LocalKmsClient, register_kms_client
from .log import get_logger
from .postgres import PostgresKeysetStorage
from .primitives import Aead
from .storage import InMemoryKeysetStorage, KeysetStorage, StoredKeyset
from .templates import KeyTemplate

logger = logging.getLogger(__name__)


@dataclass
class LoadedKeyset:
    """A decrypted keyset and the stored version it came from."""

    name: str
    version: int
    handle: KeysetHandle


@dataclass
class KeysetRotationResult:
    """Keyset rotation result."""

    name: str
    old_primary_id: Optional[int]
    new_primary_id: int
    old_version: int
    new_version: int

    def __str__(self) -> str:
        return (
            f"{self.name}: v{self.old_version} -> v{self.new_version}, "
            f"primary {self.old_primary_id} -> {self.new_primary_id}"
        )


class KeysetService:
    """
    Create, load, rotate and retire keys in named keysets.

    The master Aead is usually obtained from a KMS client; its failures
    propagate as BackendFailureError and are not retried here.
    """

    def __init__(
        self,
        storage: KeysetStorage,
        master_aead: Aead,
        codec: Optional[EnvelopeKeysetCodec] = None,
    ) -> None:
        """
        Initialize KeysetService.

        Args:
            storage: KeysetStorage backend
            master_aead: Aead encrypting every stored keyset
            codec: Codec to use; a default one on the process registry otherwise
        """
        self._storage = storage
        self._master_aead = master_aead
        self._codec = codec or EnvelopeKeysetCodec()

    @classmethod
    async def from_settings(
        cls, settings: Settings, storage: Optional[KeysetStorage] = None
    ) -> KeysetService:
        """
        Build a service from runtime settings.

        Applies ``settings.log_level`` to the package logger, registers a
        LocalKmsClient for the configured master key and, unless ``storage``
        is given, stores keysets in PostgreSQL when DATABASE_URL is set and
        in memory otherwise.

        Raises:
            ConfigError: If no local KMS master key is configured
            StorageError: If the database cannot be reached
        """
        get_logger(level=settings.log_level)
        client = LocalKmsClient.from_settings(settings)
        register_kms_client(client)

        if storage is None:
            if settings.database_url:
                try:
                    pool = await asyncpg.create_pool(settings.database_url)
                except (OSError, asyncpg.PostgresError) as e:
                    raise StorageError(f"Failed to connect to keyset database: {e}")
                storage = PostgresKeysetStorage(pool)
                await storage.create_schema()
            else:
                storage = InMemoryKeysetStorage()

        logger.info(
            "Keyset service ready (storage=%s, master key %s)",
            type(storage).__name__,
            client.key_uri,
        )
        return cls(storage, client.get_aead(client.key_uri))

    @property
    def storage(self) -> KeysetStorage:
        return self._storage

    @staticmethod
    def _associated_data(name: str) -> bytes:
        return name.encode("utf-8")

    async def create(self, name: str, template: KeyTemplate) -> LoadedKeyset:
        """
        Create a keyset with one primary key from ``template``.

        Raises:
            StorageError: If a keyset with this name already exists
        """
        if await self._storage.get_latest(name) is not None:
            raise StorageError(f"Keyset {name} already exists")
        handle = KeysetHandle.generate_new(template, self._codec.registry)
        stored = await self.save(name, handle)
        logger.info("Created keyset %s", name)
        return LoadedKeyset(name=name, version=stored.version, handle=handle)

    async def load(self, name: str, version: Optional[int] = None) -> LoadedKeyset:
        """
        Load and decrypt a keyset version (the latest by default).

        Raises:
            KeysetNotFoundError: If the keyset or version does not exist
            DecryptionFailedError: If the master key rejects the blob
        """
        if version is None:
            stored = await self._storage.get_latest(name)
        else:
            stored = await self._storage.get_version(name, version)
        if stored is None:
            raise KeysetNotFoundError(f"Keyset {name}" + (f" v{version}" if version else ""))
        handle = self._codec.parse_encrypted(
            stored.encrypted_keyset, self._master_aead, self._associated_data(name)
        )
        return LoadedKeyset(name=name, version=stored.version, handle=handle)

    async def save(self, name: str, handle: KeysetHandle) -> StoredKeyset:
        """Encrypt ``handle`` and store it as a new version of ``name``."""
        blob = self._codec.serialize_encrypted(
            handle, self._master_aead, self._associated_data(name)
        )
        return await self._storage.store(name, blob)

    async def rotate(self, name: str, template: KeyTemplate) -> KeysetRotationResult:
        """
        Add a key from ``template``, promote it to primary and save.

        Older keys stay ENABLED so existing ciphertexts keep decrypting.
        """
        loaded = await self.load(name)
        old_primary = loaded.handle.keyset_info().primary_key_id
        new_primary = loaded.handle.rotate(template)
        stored = await self.save(name, loaded.handle)
        result = KeysetRotationResult(
            name=name,
            old_primary_id=old_primary,
            new_primary_id=new_primary,
            old_version=loaded.version,
            new_version=stored.version,
        )
        logger.info("Rotated keyset %s", result)
        return result

    async def disable_key(self, name: str, key_id: int) -> LoadedKeyset:
        loaded = await self.load(name)
        loaded.handle.disable(key_id)
        stored = await self.save(name, loaded.handle)
        return LoadedKeyset(name=name, version=stored.version, handle=loaded.handle)

    async def destroy_key(self, name: str, key_id: int) -> LoadedKeyset:
        """Destroy a key's material in a new version; older versions keep it."""
        loaded = await self.load(name)
        loaded.handle.destroy(key_id)
        stored = await self.save(name, loaded.handle)
        return LoadedKeyset(name=name, version=stored.version, handle=loaded.handle)

    async def keyset_info(self, name: str) -> KeysetInfo:
        """Metadata of the latest version, read without decrypting."""
        stored = await self._storage.get_latest(name)
        if stored is None:
            raise KeysetNotFoundError(f"Keyset {name}")
        return self._codec.read_keyset_info(stored.encrypted_keyset)

    async def list_keysets(self) -> List[str]:
        return await self._storage.list_names()
