"""
Keyset data model.

This module provides:
- KeyStatus / OutputPrefixKind: key lifecycle and output framing enums
- KeyEntry: one key version plus its metadata
- Keyset: immutable ordered collection of entries with its invariants
- KeyInfo / KeysetInfo: metadata views that never carry key material
- output_prefix(): framing bytes for an entry's outputs

Keysets are values. Every mutation returns a new, validated Keyset and
leaves the original untouched; the handle swaps the reference.
"""

from __future__ import annotations

import secrets
import struct
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple

from .errors import InvalidKeyError, InvalidKeysetError
from .key_types import KeyMaterial

MAX_KEY_ID: int = 0xFFFFFFFF

PREFIX_SIZE: int = 5
TINK_START_BYTE: bytes = b"\x01"
LEGACY_START_BYTE: bytes = b"\x00"  # shared by LEGACY and CRUNCHY
RAW_PREFIX: bytes = b""
LEGACY_FORMAT_MARKER: bytes = b"\x00"


class KeyStatus(Enum):
    """Key lifecycle status."""

    ENABLED = "ENABLED"  # usable for producing (if primary) and consuming
    DISABLED = "DISABLED"  # kept, but not loaded into primitives
    DESTROYED = "DESTROYED"  # terminal, material discarded

    def __str__(self) -> str:
        return self.value

    @classmethod
    def from_str(cls, s: str) -> KeyStatus:
        try:
            return cls(s.upper())
        except (ValueError, AttributeError):
            raise InvalidKeyError(f"Invalid key status: {s}")


class OutputPrefixKind(Enum):
    """How outputs of a key are framed."""

    TINK = "TINK"  # 0x01 || id
    LEGACY = "LEGACY"  # 0x00 || id, plus a format marker mixed into MAC/signature input
    CRUNCHY = "CRUNCHY"  # 0x00 || id
    RAW = "RAW"  # no prefix

    def __str__(self) -> str:
        return self.value

    @classmethod
    def from_str(cls, s: str) -> OutputPrefixKind:
        try:
            return cls(s.upper())
        except (ValueError, AttributeError):
            raise InvalidKeyError(f"Invalid output prefix kind: {s}")


def output_prefix(key_id: int, kind: OutputPrefixKind) -> bytes:
    """
    Compute the output prefix for a key.

    Args:
        key_id: 32-bit unsigned key id
        kind: Output prefix kind of the key

    Returns:
        5 prefix bytes, or the empty prefix for RAW keys
    """
    if kind is OutputPrefixKind.RAW:
        return RAW_PREFIX
    if kind is OutputPrefixKind.TINK:
        return TINK_START_BYTE + struct.pack(">I", key_id)
    return LEGACY_START_BYTE + struct.pack(">I", key_id)


def new_key_id(taken: "set[int] | frozenset[int]") -> int:
    """Draw an unpredictable 32-bit key id not in ``taken``."""
    while True:
        key_id = secrets.randbits(32)
        if key_id not in taken:
            return key_id


@dataclass(frozen=True)
class KeyEntry:
    """
    One key version inside a keyset.

    ``key_material`` is None exactly when the entry is DESTROYED; the type
    url is kept so destroyed entries still describe what they were.
    """

    key_id: int
    type_url: str
    status: KeyStatus
    output_prefix_kind: OutputPrefixKind
    key_material: Optional[KeyMaterial]
    is_primary: bool = False

    @property
    def output_prefix(self) -> bytes:
        return output_prefix(self.key_id, self.output_prefix_kind)

    @property
    def has_secret(self) -> bool:
        return self.key_material is not None and self.key_material.has_secret

    def info(self) -> KeyInfo:
        return KeyInfo(
            key_id=self.key_id,
            type_url=self.type_url,
            status=self.status,
            output_prefix_kind=self.output_prefix_kind,
        )


@dataclass(frozen=True)
class KeyInfo:
    """Key metadata without material."""

    key_id: int
    type_url: str
    status: KeyStatus
    output_prefix_kind: OutputPrefixKind

    def to_dict(self) -> Dict[str, Any]:
        return {
            "keyId": self.key_id,
            "typeUrl": self.type_url,
            "status": self.status.value,
            "outputPrefixType": self.output_prefix_kind.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> KeyInfo:
        try:
            return cls(
                key_id=int(data["keyId"]),
                type_url=str(data["typeUrl"]),
                status=KeyStatus.from_str(data["status"]),
                output_prefix_kind=OutputPrefixKind.from_str(data["outputPrefixType"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidKeysetError(f"Invalid key info: {e}")


@dataclass(frozen=True)
class KeysetInfo:
    """Keyset metadata without material."""

    primary_key_id: Optional[int]
    key_info: Tuple[KeyInfo, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "primaryKeyId": self.primary_key_id,
            "keyInfo": [k.to_dict() for k in self.key_info],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> KeysetInfo:
        try:
            primary = data.get("primaryKeyId")
            return cls(
                primary_key_id=None if primary is None else int(primary),
                key_info=tuple(KeyInfo.from_dict(k) for k in data["keyInfo"]),
            )
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise InvalidKeysetError(f"Invalid keyset info: {e}")


@dataclass(frozen=True)
class Keyset:
    """Ordered, immutable collection of key entries."""

    entries: Tuple[KeyEntry, ...] = ()

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[KeyEntry]:
        return iter(self.entries)

    @property
    def key_ids(self) -> frozenset:
        return frozenset(e.key_id for e in self.entries)

    @property
    def primary(self) -> Optional[KeyEntry]:
        for entry in self.entries:
            if entry.is_primary:
                return entry
        return None

    def find(self, key_id: int) -> Optional[KeyEntry]:
        for entry in self.entries:
            if entry.key_id == key_id:
                return entry
        return None

    def info(self) -> KeysetInfo:
        primary = self.primary
        return KeysetInfo(
            primary_key_id=primary.key_id if primary else None,
            key_info=tuple(e.info() for e in self.entries),
        )

    def validate(self) -> None:
        """
        Check cross-entry invariants.

        Raises:
            InvalidKeysetError: If the keyset is empty, has duplicate or
                out-of-range ids, more than one primary, a primary that is
                not ENABLED, or material inconsistent with an entry's status
        """
        if not self.entries:
            raise InvalidKeysetError("Keyset has no keys")

        seen: set = set()
        primaries: List[KeyEntry] = []
        for entry in self.entries:
            if not 0 <= entry.key_id <= MAX_KEY_ID:
                raise InvalidKeysetError(f"Key id {entry.key_id} is not a 32-bit unsigned value")
            if entry.key_id in seen:
                raise InvalidKeysetError(f"Duplicate key id {entry.key_id}")
            seen.add(entry.key_id)

            if entry.status is KeyStatus.DESTROYED:
                if entry.key_material is not None:
                    raise InvalidKeysetError(f"Destroyed key {entry.key_id} still has material")
            elif entry.key_material is None:
                raise InvalidKeysetError(f"Key {entry.key_id} has no material")

            if entry.is_primary:
                primaries.append(entry)

        if len(primaries) > 1:
            raise InvalidKeysetError("Keyset has more than one primary key")
        if primaries and primaries[0].status is not KeyStatus.ENABLED:
            raise InvalidKeysetError(
                f"Primary key {primaries[0].key_id} is not ENABLED"
            )

    # -------------------------------------------------------------------------
    # Copy-on-write mutations; each returns a new validated Keyset.
    # -------------------------------------------------------------------------

    def with_key(
        self,
        key_material: KeyMaterial,
        output_prefix_kind: OutputPrefixKind,
        status: KeyStatus = KeyStatus.ENABLED,
        key_id: Optional[int] = None,
        type_url: Optional[str] = None,
    ) -> Keyset:
        """
        Append a new key.

        Args:
            key_material: Material of the new key
            output_prefix_kind: Framing for the key's outputs
            status: Initial status (DESTROYED is not allowed)
            key_id: Explicit id; a random unused id is drawn when omitted
            type_url: Key type the entry is resolved under; defaults to the
                material's own type url

        Raises:
            InvalidKeyError: If the id is taken or out of range, or the
                status is DESTROYED
        """
        if status is KeyStatus.DESTROYED:
            raise InvalidKeyError("Cannot add a key in DESTROYED state")
        taken = self.key_ids
        if key_id is None:
            key_id = new_key_id(taken)
        elif not 0 <= key_id <= MAX_KEY_ID:
            raise InvalidKeyError(f"Key id {key_id} is not a 32-bit unsigned value")
        elif key_id in taken:
            raise InvalidKeyError(f"Key id {key_id} is already in use")

        entry = KeyEntry(
            key_id=key_id,
            type_url=type_url or key_material.type_url,
            status=status,
            output_prefix_kind=output_prefix_kind,
            key_material=key_material,
        )
        return self._validated(self.entries + (entry,))

    def with_primary(self, key_id: int) -> Keyset:
        """
        Raises:
            InvalidKeyError: If the key is absent or not ENABLED
        """
        target = self._require(key_id)
        if target.status is not KeyStatus.ENABLED:
            raise InvalidKeyError(f"Key {key_id} is {target.status}, only ENABLED keys can be primary")
        return self._validated(
            tuple(replace(e, is_primary=(e.key_id == key_id)) for e in self.entries)
        )

    def with_status(self, key_id: int, status: KeyStatus) -> Keyset:
        """
        Change a key's status.

        DESTROYED is terminal and drops the material. Moving the primary key
        away from ENABLED clears the primary.

        Raises:
            InvalidKeyError: If the key is absent or already DESTROYED
        """
        target = self._require(key_id)
        if target.status is KeyStatus.DESTROYED:
            if status is KeyStatus.DESTROYED:
                return self
            raise InvalidKeyError(f"Key {key_id} is DESTROYED")

        updated = replace(
            target,
            status=status,
            key_material=None if status is KeyStatus.DESTROYED else target.key_material,
            is_primary=target.is_primary and status is KeyStatus.ENABLED,
        )
        return self._validated(
            tuple(updated if e.key_id == key_id else e for e in self.entries)
        )

    def _require(self, key_id: int) -> KeyEntry:
        entry = self.find(key_id)
        if entry is None:
            raise InvalidKeyError(f"Key {key_id} not found in keyset")
        return entry

    @staticmethod
    def _validated(entries: Tuple[KeyEntry, ...]) -> Keyset:
        keyset = Keyset(entries=entries)
        keyset.validate()
        return keyset
