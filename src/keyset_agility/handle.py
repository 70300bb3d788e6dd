"""
Keyset handle: the access-controlled owner of a keyset.

This module provides:
- InsecureSecretKeyAccess: the token required to reach raw key material
- KeysetHandle: generation, copy-on-write mutation and primitive building
- build_primitive(): wrapped primitive of one capability from a handle

Mutations build a new validated Keyset and then swap the handle's
reference, so concurrent readers see either the old or the new keyset and
never a partial update. Writers are serialized by a lock; readers never lock.
"""

from __future__ import annotations

import logging
import threading
from typing import Optional, Type, TypeVar

from .errors import InvalidKeyError, NoPrimaryKeyError, SecretKeyAccessDeniedError
from .key_types import KeyMaterial
from .keyset import KeyEntry, Keyset, KeysetInfo, KeyStatus, OutputPrefixKind
from .registry import KeyRegistry, PrivateKeyHandler, resolve
from .templates import KeyTemplate
from .wrappers import PrimitiveSet

logger = logging.getLogger(__name__)

P = TypeVar("P")

_TOKEN_GUARD = object()


class InsecureSecretKeyAccess:
    """
    Marker proving a call site deliberately asked for secret key material.

    Only ``InsecureSecretKeyAccess.get()`` hands one out, so every exposure
    of raw key material is a visible, greppable call.
    """

    __slots__ = ()
    _instance: InsecureSecretKeyAccess

    def __new__(cls, guard: object = None) -> InsecureSecretKeyAccess:
        if guard is not _TOKEN_GUARD:
            raise TypeError("Use InsecureSecretKeyAccess.get()")
        return super().__new__(cls)

    @classmethod
    def get(cls) -> InsecureSecretKeyAccess:
        return cls._instance

    def __repr__(self) -> str:
        return "InsecureSecretKeyAccess()"


InsecureSecretKeyAccess._instance = InsecureSecretKeyAccess(_TOKEN_GUARD)


def require_secret_access(access: Optional[InsecureSecretKeyAccess]) -> None:
    """
    Raises:
        SecretKeyAccessDeniedError: If ``access`` is not the real token
    """
    if access is None or access is not InsecureSecretKeyAccess.get():
        raise SecretKeyAccessDeniedError("Access to secret key material requires InsecureSecretKeyAccess")


class KeysetHandle:
    """Owns exactly one keyset and is the only way to build primitives from it."""

    def __init__(self, keyset: Keyset, registry: Optional[KeyRegistry] = None) -> None:
        self._keyset = keyset
        self._registry = registry
        self._write_lock = threading.Lock()

    @classmethod
    def generate_new(
        cls, template: KeyTemplate, registry: Optional[KeyRegistry] = None
    ) -> KeysetHandle:
        """
        Create a handle with one fresh, ENABLED, primary key.

        Raises:
            UnknownKeyTypeError: If the template's key type is not registered
            InvalidKeyError: If the template parameters are invalid
        """
        handle = cls(Keyset(), registry)
        handle.rotate(template)
        return handle

    @classmethod
    def from_keyset(cls, keyset: Keyset, registry: Optional[KeyRegistry] = None) -> KeysetHandle:
        """
        Raises:
            InvalidKeysetError: If ``keyset`` fails validation
        """
        keyset.validate()
        return cls(keyset, registry)

    @property
    def registry(self) -> KeyRegistry:
        return resolve(self._registry)

    def __len__(self) -> int:
        return len(self._keyset)

    def __repr__(self) -> str:
        info = self._keyset.info()
        return f"KeysetHandle(primary={info.primary_key_id}, keys={len(info.key_info)})"

    # -------------------------------------------------------------------------
    # Read access
    # -------------------------------------------------------------------------

    def keyset_info(self) -> KeysetInfo:
        return self._keyset.info()

    def primary(self) -> KeyEntry:
        """
        Raises:
            NoPrimaryKeyError: If no key is primary
        """
        primary = self._keyset.primary
        if primary is None:
            raise NoPrimaryKeyError("Keyset has no primary key")
        return primary

    def keyset(self, access: Optional[InsecureSecretKeyAccess] = None) -> Keyset:
        """
        Return the current keyset, including raw material.

        Keysets holding only public or remote material are returned freely.

        Raises:
            SecretKeyAccessDeniedError: If the keyset holds secret material
                and ``access`` is not the InsecureSecretKeyAccess token
        """
        keyset = self._keyset
        if any(entry.has_secret for entry in keyset):
            require_secret_access(access)
        return keyset

    def has_secret(self) -> bool:
        return any(entry.has_secret for entry in self._keyset)

    # -------------------------------------------------------------------------
    # Mutation (copy-on-write)
    # -------------------------------------------------------------------------

    def add_key(
        self,
        template: KeyTemplate,
        key_id: Optional[int] = None,
        status: KeyStatus = KeyStatus.ENABLED,
    ) -> int:
        """
        Generate a key from ``template`` and append it.

        Returns:
            The new key's id

        Raises:
            InvalidKeyError: If the id is taken or the template is invalid
            UnknownKeyTypeError: If the key type is not registered
        """
        material = self.registry.lookup(template.type_url).new_key(template.parameters)
        return self._append(material, template.type_url, template.output_prefix_kind, status, key_id)

    def add_key_material(
        self,
        key_material: KeyMaterial,
        output_prefix_kind: OutputPrefixKind,
        status: KeyStatus = KeyStatus.ENABLED,
        key_id: Optional[int] = None,
        access: Optional[InsecureSecretKeyAccess] = None,
        type_url: Optional[str] = None,
    ) -> int:
        """
        Import existing key material.

        Secret material can only be imported with the InsecureSecretKeyAccess
        token. The material is validated by the handler registered under
        ``type_url`` (the material's own type url by default) and the entry
        is recorded under that type.

        Returns:
            The new key's id
        """
        if key_material.has_secret:
            require_secret_access(access)
        type_url = type_url or key_material.type_url
        self.registry.lookup(type_url).validate_key(key_material)
        return self._append(key_material, type_url, output_prefix_kind, status, key_id)

    def _append(
        self,
        material: KeyMaterial,
        type_url: str,
        kind: OutputPrefixKind,
        status: KeyStatus,
        key_id: Optional[int],
    ) -> int:
        with self._write_lock:
            updated = self._keyset.with_key(material, kind, status, key_id, type_url)
            self._keyset = updated
        new_id = updated.entries[-1].key_id
        logger.info("Added key %d (%s, %s)", new_id, type_url, kind)
        return new_id

    def set_primary(self, key_id: int) -> None:
        """
        Raises:
            InvalidKeyError: If the key is absent or not ENABLED
        """
        with self._write_lock:
            self._keyset = self._keyset.with_primary(key_id)
        logger.info("Key %d is now primary", key_id)

    def set_status(self, key_id: int, status: KeyStatus) -> None:
        """
        Raises:
            InvalidKeyError: If the key is absent or already DESTROYED
        """
        with self._write_lock:
            self._keyset = self._keyset.with_status(key_id, status)
        logger.info("Key %d is now %s", key_id, status)

    def enable(self, key_id: int) -> None:
        self.set_status(key_id, KeyStatus.ENABLED)

    def disable(self, key_id: int) -> None:
        self.set_status(key_id, KeyStatus.DISABLED)

    def destroy(self, key_id: int) -> None:
        self.set_status(key_id, KeyStatus.DESTROYED)

    def rotate(self, template: KeyTemplate) -> int:
        """Add a key from ``template`` and make it primary in one swap."""
        material = self.registry.lookup(template.type_url).new_key(template.parameters)
        with self._write_lock:
            added = self._keyset.with_key(
                material, template.output_prefix_kind, type_url=template.type_url
            )
            new_id = added.entries[-1].key_id
            self._keyset = added.with_primary(new_id)
        logger.info("Rotated keyset to new primary key %d", new_id)
        return new_id

    # -------------------------------------------------------------------------
    # Derived handles and primitives
    # -------------------------------------------------------------------------

    def public_keyset_handle(self) -> KeysetHandle:
        """
        Handle with every private key replaced by its public key.

        Ids, statuses, prefixes and the primary are preserved.

        Raises:
            InvalidKeyError: If a key is not an asymmetric private key
        """
        registry = self.registry
        entries = []
        for entry in self._keyset:
            handler = registry.lookup(entry.type_url)
            if not isinstance(handler, PrivateKeyHandler):
                raise InvalidKeyError(f"Key {entry.key_id} ({entry.type_url}) is not a private key")
            public = (
                handler.public_key(entry.key_material)
                if entry.key_material is not None
                else None
            )
            entries.append(KeyEntry(
                key_id=entry.key_id,
                type_url=handler.public_type_url,
                status=entry.status,
                output_prefix_kind=entry.output_prefix_kind,
                key_material=public,
                is_primary=entry.is_primary,
            ))
        return KeysetHandle.from_keyset(Keyset(entries=tuple(entries)), self._registry)

    def primitive(self, primitive_class: Type[P]) -> P:
        """
        Build the wrapped primitive of ``primitive_class`` over this keyset.

        Raises:
            InvalidKeysetError: If the keyset fails validation
            UnsupportedPrimitiveError: If any ENABLED key cannot produce it
            UnknownKeyTypeError: If any ENABLED key's type is not registered
        """
        registry = self.registry
        wrapper = registry.wrapper(primitive_class)
        primitive_set = PrimitiveSet.build(self._keyset, primitive_class, registry)
        return wrapper.wrap(primitive_set)


def build_primitive(handle: KeysetHandle, primitive_class: Type[P]) -> P:
    """Wrapped primitive of ``primitive_class`` built from ``handle``."""
    return handle.primitive(primitive_class)
