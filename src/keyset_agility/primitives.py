"""
Primitive interfaces and their single-key implementations.

The interface classes double as capability identifiers: callers ask a
keyset handle for ``Aead``, ``Mac``, ``PublicKeySign`` ... and key handlers
declare which of these classes they can produce.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from .backend import CryptoBackend
from .key_types import KeyMaterial


class Aead(ABC):
    """Authenticated encryption with associated data."""

    @abstractmethod
    def encrypt(self, plaintext: bytes, associated_data: bytes) -> bytes:
        ...

    @abstractmethod
    def decrypt(self, ciphertext: bytes, associated_data: bytes) -> bytes:
        ...


class Mac(ABC):
    """Message authentication code."""

    @abstractmethod
    def compute_mac(self, data: bytes) -> bytes:
        ...

    @abstractmethod
    def verify_mac(self, tag: bytes, data: bytes) -> None:
        """Raises VerificationFailedError if the tag does not match."""
        ...


class PublicKeySign(ABC):
    """Signer."""

    @abstractmethod
    def sign(self, data: bytes) -> bytes:
        ...


class PublicKeyVerify(ABC):
    """Verifier."""

    @abstractmethod
    def verify(self, signature: bytes, data: bytes) -> None:
        """Raises VerificationFailedError if the signature does not match."""
        ...


class HybridEncrypt(ABC):
    """Public-key encryption side of a hybrid scheme."""

    @abstractmethod
    def encrypt(self, plaintext: bytes, context_info: bytes) -> bytes:
        ...


class HybridDecrypt(ABC):
    """Private-key decryption side of a hybrid scheme."""

    @abstractmethod
    def decrypt(self, ciphertext: bytes, context_info: bytes) -> bytes:
        ...


# =============================================================================
# Backend-bound primitives (one key each)
# =============================================================================


class _BackendBound:
    __slots__ = ("_backend", "_key")

    def __init__(self, backend: CryptoBackend, key: KeyMaterial) -> None:
        self._backend = backend
        self._key = key

    def __repr__(self) -> str:
        return f"{type(self).__name__}({type(self._key).__name__})"


class BackendAead(_BackendBound, Aead):
    __slots__ = ()

    def encrypt(self, plaintext: bytes, associated_data: bytes) -> bytes:
        return self._backend.encrypt(self._key, plaintext, associated_data)

    def decrypt(self, ciphertext: bytes, associated_data: bytes) -> bytes:
        return self._backend.decrypt(self._key, ciphertext, associated_data)


class BackendMac(_BackendBound, Mac):
    __slots__ = ()

    def compute_mac(self, data: bytes) -> bytes:
        return self._backend.mac_compute(self._key, data)

    def verify_mac(self, tag: bytes, data: bytes) -> None:
        self._backend.mac_verify(self._key, tag, data)


class BackendSign(_BackendBound, PublicKeySign):
    __slots__ = ()

    def sign(self, data: bytes) -> bytes:
        return self._backend.sign(self._key, data)


class BackendVerify(_BackendBound, PublicKeyVerify):
    __slots__ = ()

    def verify(self, signature: bytes, data: bytes) -> None:
        self._backend.verify(self._key, signature, data)


class BackendHybridEncrypt(_BackendBound, HybridEncrypt):
    __slots__ = ()

    def encrypt(self, plaintext: bytes, context_info: bytes) -> bytes:
        return self._backend.hybrid_encrypt(self._key, plaintext, context_info)


class BackendHybridDecrypt(_BackendBound, HybridDecrypt):
    __slots__ = ()

    def decrypt(self, ciphertext: bytes, context_info: bytes) -> bytes:
        return self._backend.hybrid_decrypt(self._key, ciphertext, context_info)
