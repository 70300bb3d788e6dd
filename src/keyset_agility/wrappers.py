"""
Primitive sets and the output-prefix dispatch protocol.

A PrimitiveSet holds one instantiated primitive per ENABLED key of a keyset,
bucketed by output prefix, plus the primary entry. Wrappers turn a set into
a single Aead / Mac / PublicKeySign / ... value:

- producing operations use the primary and prepend its prefix;
- consuming operations try the keys whose prefix matches the first five
  bytes (on the remaining bytes), then every RAW key (on the whole input),
  in keyset order, and fail with one generic error if nothing accepts.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Callable, Dict, Generic, Iterator, List, Mapping, Optional, Tuple, TypeVar

from .errors import (
    CryptoError,
    DecryptionFailedError,
    InvalidKeysetError,
    NoPrimaryKeyError,
    VerificationFailedError,
)
from .keyset import (
    LEGACY_FORMAT_MARKER,
    PREFIX_SIZE,
    RAW_PREFIX,
    KeyStatus,
    Keyset,
    OutputPrefixKind,
)
from .primitives import (
    Aead,
    HybridDecrypt,
    HybridEncrypt,
    Mac,
    PublicKeySign,
    PublicKeyVerify,
)
from .registry import KeyRegistry, PrimitiveWrapper

logger = logging.getLogger(__name__)

P = TypeVar("P")
R = TypeVar("R")


@dataclass(frozen=True)
class Entry(Generic[P]):
    """One instantiated primitive and the metadata of the key behind it."""

    primitive: P
    identifier: bytes
    key_id: int
    status: KeyStatus
    output_prefix_kind: OutputPrefixKind
    is_primary: bool = False


class PrimitiveSet(Generic[P]):
    """Immutable prefix -> entries index built from one keyset."""

    def __init__(
        self,
        primitive_class: type,
        entries: Mapping[bytes, Tuple[Entry[P], ...]],
        primary: Optional[Entry[P]],
    ) -> None:
        self._primitive_class = primitive_class
        self._entries = MappingProxyType(dict(entries))
        self._primary = primary

    @classmethod
    def build(cls, keyset: Keyset, primitive_class: type, registry: KeyRegistry) -> PrimitiveSet:
        """
        Instantiate ``primitive_class`` for every ENABLED key.

        Any key that cannot be instantiated aborts the whole build with the
        originating error.

        Raises:
            InvalidKeysetError: If the keyset fails validation or has no ENABLED key
            UnknownKeyTypeError: If a key type is not registered
            UnsupportedPrimitiveError: If a key type cannot produce the primitive
            InvalidKeyError: If a key's material is malformed
        """
        keyset.validate()
        buckets: Dict[bytes, List[Entry[Any]]] = {}
        primary: Optional[Entry[Any]] = None
        for key in keyset:
            if key.status is not KeyStatus.ENABLED:
                continue
            if key.key_material is None:
                raise InvalidKeysetError(f"Key {key.key_id} has no material")
            handler = registry.lookup(key.type_url)
            primitive = handler.primitive(key.key_material, primitive_class)
            entry = Entry(
                primitive=primitive,
                identifier=key.output_prefix,
                key_id=key.key_id,
                status=key.status,
                output_prefix_kind=key.output_prefix_kind,
                is_primary=key.is_primary,
            )
            buckets.setdefault(entry.identifier, []).append(entry)
            if key.is_primary:
                primary = entry
        if not buckets:
            raise InvalidKeysetError("Keyset has no ENABLED keys")
        return cls(
            primitive_class,
            {prefix: tuple(items) for prefix, items in buckets.items()},
            primary,
        )

    @property
    def primitive_class(self) -> type:
        return self._primitive_class

    @property
    def primary(self) -> Optional[Entry[P]]:
        return self._primary

    def require_primary(self) -> Entry[P]:
        """
        Raises:
            NoPrimaryKeyError: If the keyset had no primary key
        """
        if self._primary is None:
            raise NoPrimaryKeyError("Keyset has no primary key")
        return self._primary

    def entries_for(self, identifier: bytes) -> Tuple[Entry[P], ...]:
        return self._entries.get(identifier, ())

    def raw_entries(self) -> Tuple[Entry[P], ...]:
        return self.entries_for(RAW_PREFIX)

    def all(self) -> Iterator[Entry[P]]:
        for items in self._entries.values():
            yield from items

    def candidates(self, data: bytes) -> Iterator[Tuple[Entry[P], bytes]]:
        """
        Yield (entry, payload) pairs in trial order: prefix matches on the
        bytes after the prefix, then RAW keys on the whole input.
        """
        if len(data) >= PREFIX_SIZE:
            for entry in self.entries_for(data[:PREFIX_SIZE]):
                yield entry, data[PREFIX_SIZE:]
        for entry in self.raw_entries():
            yield entry, data


def _first_success(
    primitive_set: PrimitiveSet[P],
    data: bytes,
    attempt: Callable[[Entry[P], bytes], R],
    failure: type,
) -> R:
    for entry, payload in primitive_set.candidates(data):
        try:
            return attempt(entry, payload)
        except CryptoError:
            continue
    logger.debug("No key in the %s set accepted the input", primitive_set.primitive_class.__name__)
    raise failure()


def _legacy_data(entry: Entry[Any], data: bytes) -> bytes:
    if entry.output_prefix_kind is OutputPrefixKind.LEGACY:
        return data + LEGACY_FORMAT_MARKER
    return data


# =============================================================================
# Wrapped primitives
# =============================================================================


class _WrappedAead(Aead):
    def __init__(self, primitive_set: PrimitiveSet[Aead]) -> None:
        self._set = primitive_set

    def encrypt(self, plaintext: bytes, associated_data: bytes) -> bytes:
        primary = self._set.require_primary()
        return primary.identifier + primary.primitive.encrypt(plaintext, associated_data)

    def decrypt(self, ciphertext: bytes, associated_data: bytes) -> bytes:
        return _first_success(
            self._set,
            ciphertext,
            lambda entry, payload: entry.primitive.decrypt(payload, associated_data),
            DecryptionFailedError,
        )


class _WrappedMac(Mac):
    def __init__(self, primitive_set: PrimitiveSet[Mac]) -> None:
        self._set = primitive_set

    def compute_mac(self, data: bytes) -> bytes:
        primary = self._set.require_primary()
        return primary.identifier + primary.primitive.compute_mac(_legacy_data(primary, data))

    def verify_mac(self, tag: bytes, data: bytes) -> None:
        _first_success(
            self._set,
            tag,
            lambda entry, payload: entry.primitive.verify_mac(payload, _legacy_data(entry, data)),
            VerificationFailedError,
        )


class _WrappedSign(PublicKeySign):
    def __init__(self, primitive_set: PrimitiveSet[PublicKeySign]) -> None:
        self._set = primitive_set

    def sign(self, data: bytes) -> bytes:
        primary = self._set.require_primary()
        return primary.identifier + primary.primitive.sign(_legacy_data(primary, data))


class _WrappedVerify(PublicKeyVerify):
    def __init__(self, primitive_set: PrimitiveSet[PublicKeyVerify]) -> None:
        self._set = primitive_set

    def verify(self, signature: bytes, data: bytes) -> None:
        _first_success(
            self._set,
            signature,
            lambda entry, payload: entry.primitive.verify(payload, _legacy_data(entry, data)),
            VerificationFailedError,
        )


class _WrappedHybridEncrypt(HybridEncrypt):
    def __init__(self, primitive_set: PrimitiveSet[HybridEncrypt]) -> None:
        self._set = primitive_set

    def encrypt(self, plaintext: bytes, context_info: bytes) -> bytes:
        primary = self._set.require_primary()
        return primary.identifier + primary.primitive.encrypt(plaintext, context_info)


class _WrappedHybridDecrypt(HybridDecrypt):
    def __init__(self, primitive_set: PrimitiveSet[HybridDecrypt]) -> None:
        self._set = primitive_set

    def decrypt(self, ciphertext: bytes, context_info: bytes) -> bytes:
        return _first_success(
            self._set,
            ciphertext,
            lambda entry, payload: entry.primitive.decrypt(payload, context_info),
            DecryptionFailedError,
        )


class AeadWrapper(PrimitiveWrapper[Aead]):
    primitive_class = Aead

    def wrap(self, primitive_set: PrimitiveSet[Aead]) -> Aead:
        return _WrappedAead(primitive_set)


class MacWrapper(PrimitiveWrapper[Mac]):
    primitive_class = Mac

    def wrap(self, primitive_set: PrimitiveSet[Mac]) -> Mac:
        return _WrappedMac(primitive_set)


class PublicKeySignWrapper(PrimitiveWrapper[PublicKeySign]):
    primitive_class = PublicKeySign

    def wrap(self, primitive_set: PrimitiveSet[PublicKeySign]) -> PublicKeySign:
        return _WrappedSign(primitive_set)


class PublicKeyVerifyWrapper(PrimitiveWrapper[PublicKeyVerify]):
    primitive_class = PublicKeyVerify

    def wrap(self, primitive_set: PrimitiveSet[PublicKeyVerify]) -> PublicKeyVerify:
        return _WrappedVerify(primitive_set)


class HybridEncryptWrapper(PrimitiveWrapper[HybridEncrypt]):
    primitive_class = HybridEncrypt

    def wrap(self, primitive_set: PrimitiveSet[HybridEncrypt]) -> HybridEncrypt:
        return _WrappedHybridEncrypt(primitive_set)


class HybridDecryptWrapper(PrimitiveWrapper[HybridDecrypt]):
    primitive_class = HybridDecrypt

    def wrap(self, primitive_set: PrimitiveSet[HybridDecrypt]) -> HybridDecrypt:
        return _WrappedHybridDecrypt(primitive_set)


ALL_WRAPPERS = (
    AeadWrapper,
    MacWrapper,
    PublicKeySignWrapper,
    PublicKeyVerifyWrapper,
    HybridEncryptWrapper,
    HybridDecryptWrapper,
)
