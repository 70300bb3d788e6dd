"""
Cryptographic backend.

The keyset layer never touches algorithms directly: key handlers bind key
material to a CryptoBackend, and every operation goes through it. The
default CryptographyBackend delegates to the ``cryptography`` package via
the helpers in ``crypto.py`` and maps its exceptions onto this package's
error taxonomy.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Iterator, Optional, Type

from cryptography.exceptions import InvalidSignature, InvalidTag

from .crypto import (
    AesCtrHmacCipher,
    AesGcmCipher,
    EcdsaSigner,
    Ed25519Signer,
    HmacTagger,
    MlDsaSigner,
    X25519HybridCipher,
    generate_random_bytes,
)
from .errors import (
    BackendFailureError,
    CryptoError,
    DecryptionFailedError,
    InvalidKeyError,
    KeysetError,
    VerificationFailedError,
)
from .key_types import (
    AesCtrHmacAeadKey,
    AesGcmKey,
    EcdsaPrivateKey,
    EcdsaPublicKey,
    Ed25519PrivateKey,
    Ed25519PublicKey,
    HmacKey,
    KeyMaterial,
    MlDsaPrivateKey,
    MlDsaPublicKey,
    X25519HybridPrivateKey,
    X25519HybridPublicKey,
)

logger = logging.getLogger(__name__)


class CryptoBackend(ABC):
    """
    Capability interface the keyset layer needs from a crypto provider.

    Every method takes the opaque key material a key handler owns. Rejected
    inputs raise DecryptionFailedError / VerificationFailedError; anything
    else that goes wrong inside the provider raises BackendFailureError.
    """

    @abstractmethod
    def encrypt(self, key: KeyMaterial, plaintext: bytes, associated_data: bytes) -> bytes:
        ...

    @abstractmethod
    def decrypt(self, key: KeyMaterial, ciphertext: bytes, associated_data: bytes) -> bytes:
        ...

    @abstractmethod
    def sign(self, key: KeyMaterial, data: bytes) -> bytes:
        ...

    @abstractmethod
    def verify(self, key: KeyMaterial, signature: bytes, data: bytes) -> None:
        ...

    @abstractmethod
    def mac_compute(self, key: KeyMaterial, data: bytes) -> bytes:
        ...

    @abstractmethod
    def mac_verify(self, key: KeyMaterial, tag: bytes, data: bytes) -> None:
        ...

    @abstractmethod
    def hybrid_encrypt(self, key: KeyMaterial, plaintext: bytes, context_info: bytes) -> bytes:
        ...

    @abstractmethod
    def hybrid_decrypt(self, key: KeyMaterial, ciphertext: bytes, context_info: bytes) -> bytes:
        ...

    @abstractmethod
    def generate_secret(self, size: int) -> bytes:
        ...


@contextmanager
def _translate(rejection: Optional[Type[CryptoError]] = None) -> Iterator[None]:
    """
    Map errors from ``cryptography`` onto the keyset taxonomy.

    Consuming operations pass the generic rejection they collapse to;
    producing operations pass nothing and surface every failure as a
    BackendFailureError.
    """
    try:
        yield
    except KeysetError:
        raise
    except (InvalidTag, InvalidSignature, ValueError) as e:
        # ValueError covers malformed ciphertexts, signatures and encodings
        if rejection is None:
            raise BackendFailureError(f"Backend failure: {type(e).__name__}") from e
        raise rejection() from None
    except Exception as e:
        logger.warning("Cryptographic backend failure: %s", type(e).__name__)
        raise BackendFailureError(f"Backend failure: {type(e).__name__}") from e


class CryptographyBackend(CryptoBackend):
    """CryptoBackend implemented on the ``cryptography`` package."""

    def encrypt(self, key: KeyMaterial, plaintext: bytes, associated_data: bytes) -> bytes:
        with _translate():
            if isinstance(key, AesGcmKey):
                return AesGcmCipher.encrypt(key.key_value, plaintext, associated_data)
            if isinstance(key, AesCtrHmacAeadKey):
                return AesCtrHmacCipher.encrypt(
                    key.aes_key, key.iv_size, key.hmac_key, key.hash, key.tag_size,
                    plaintext, associated_data,
                )
        raise _unsupported(key, "encrypt")

    def decrypt(self, key: KeyMaterial, ciphertext: bytes, associated_data: bytes) -> bytes:
        with _translate(DecryptionFailedError):
            if isinstance(key, AesGcmKey):
                return AesGcmCipher.decrypt(key.key_value, ciphertext, associated_data)
            if isinstance(key, AesCtrHmacAeadKey):
                return AesCtrHmacCipher.decrypt(
                    key.aes_key, key.iv_size, key.hmac_key, key.hash, key.tag_size,
                    ciphertext, associated_data,
                )
        raise _unsupported(key, "decrypt")

    def sign(self, key: KeyMaterial, data: bytes) -> bytes:
        with _translate():
            if isinstance(key, Ed25519PrivateKey):
                return Ed25519Signer.sign(key.private_key.as_bytes(), data)
            if isinstance(key, EcdsaPrivateKey):
                return EcdsaSigner.sign(key.curve, key.priv.as_bytes(), data)
            if isinstance(key, MlDsaPrivateKey):
                return MlDsaSigner.sign(key.parameter_set, key.private_key.as_bytes(), data)
        raise _unsupported(key, "sign")

    def verify(self, key: KeyMaterial, signature: bytes, data: bytes) -> None:
        if isinstance(key, (Ed25519PrivateKey, EcdsaPrivateKey, MlDsaPrivateKey)):
            key = key.public()
        with _translate(VerificationFailedError):
            if isinstance(key, Ed25519PublicKey):
                Ed25519Signer.verify(key.public_key, signature, data)
                return
            if isinstance(key, EcdsaPublicKey):
                EcdsaSigner.verify(key.curve, key.pub_x, key.pub_y, signature, data)
                return
            if isinstance(key, MlDsaPublicKey):
                MlDsaSigner.verify(key.parameter_set, key.public_key, signature, data)
                return
        raise _unsupported(key, "verify")

    def mac_compute(self, key: KeyMaterial, data: bytes) -> bytes:
        if not isinstance(key, HmacKey):
            raise _unsupported(key, "mac_compute")
        with _translate():
            return HmacTagger.compute(key.key_value, key.hash, key.tag_size, data)

    def mac_verify(self, key: KeyMaterial, tag: bytes, data: bytes) -> None:
        if not isinstance(key, HmacKey):
            raise _unsupported(key, "mac_verify")
        with _translate(VerificationFailedError):
            if HmacTagger.verify(key.key_value, key.hash, key.tag_size, tag, data):
                return
        raise VerificationFailedError()

    def hybrid_encrypt(self, key: KeyMaterial, plaintext: bytes, context_info: bytes) -> bytes:
        if isinstance(key, X25519HybridPrivateKey):
            key = key.public()
        if not isinstance(key, X25519HybridPublicKey):
            raise _unsupported(key, "hybrid_encrypt")
        with _translate():
            return X25519HybridCipher.encrypt(
                key.public_key, key.hkdf_salt, plaintext, context_info
            )

    def hybrid_decrypt(self, key: KeyMaterial, ciphertext: bytes, context_info: bytes) -> bytes:
        if not isinstance(key, X25519HybridPrivateKey):
            raise _unsupported(key, "hybrid_decrypt")
        with _translate(DecryptionFailedError):
            return X25519HybridCipher.decrypt(
                key.private_key.as_bytes(), key.hkdf_salt, ciphertext, context_info
            )

    def generate_secret(self, size: int) -> bytes:
        return generate_random_bytes(size)


def _unsupported(key: KeyMaterial, operation: str) -> InvalidKeyError:
    return InvalidKeyError(f"{type(key).__name__} does not support {operation}")
