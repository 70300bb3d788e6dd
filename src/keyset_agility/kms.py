"""
KMS clients and envelope encryption.

This module provides:
- KmsClient: abstract client handing out Aead primitives for key URIs
- register_kms_client / kms_client_for: process-wide client list
- LocalKmsClient: in-process KMS backed by a local 32-byte master key
- KmsEnvelopeAead: per-message DEK wrapped by a remote KEK
- call_remote(): surfaces network failures as transient BackendFailureError

KMS calls are blocking from the caller's point of view. No timeout or retry
policy is applied here; callers inspect ``BackendFailureError.transient``.
"""

from __future__ import annotations

import json
import logging
import struct
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional, Tuple, TypeVar, Union

from .backend import CryptoBackend, CryptographyBackend
from .config import Settings
from .crypto import AES_256_KEY_SIZE, SecureKey
from .errors import (
    BackendFailureError,
    ConfigError,
    DecryptionFailedError,
    InvalidKeyError,
    KeysetError,
)
from .key_types import AesGcmKey
from .primitives import Aead
from .registry import KeyRegistry, resolve
from .templates import KeyTemplate

logger = logging.getLogger(__name__)

T = TypeVar("T")

LOCAL_KMS_PREFIX = "local-kms://"
_DEK_LENGTH_SIZE = 4


def call_remote(fn: Callable[..., T], *args: Any) -> T:
    """
    Invoke a KMS-backed operation.

    Keyset errors pass through untouched. OS-level errors (connection
    resets, timeouts, DNS failures) become transient BackendFailureErrors;
    any other exception becomes a permanent one.
    """
    try:
        return fn(*args)
    except KeysetError:
        raise
    except OSError as e:
        logger.warning("Transient KMS failure: %s", type(e).__name__)
        raise BackendFailureError(f"KMS unavailable: {e}", transient=True) from e
    except Exception as e:
        logger.error("KMS failure: %s", type(e).__name__)
        raise BackendFailureError(f"KMS failure: {e}", transient=False) from e


class KmsClient(ABC):
    """Hands out Aead primitives backed by keys held in a KMS."""

    @abstractmethod
    def does_support(self, key_uri: str) -> bool:
        ...

    @abstractmethod
    def get_aead(self, key_uri: str, credentials: Optional[Any] = None) -> Aead:
        ...


class RemoteAead(Aead):
    """Aead whose calls go to a KMS; network failures surface as transient."""

    def __init__(self, remote: Aead) -> None:
        self._remote = remote

    @property
    def key_uri(self) -> Optional[str]:
        return getattr(self._remote, "key_uri", None)

    def encrypt(self, plaintext: bytes, associated_data: bytes) -> bytes:
        return call_remote(self._remote.encrypt, plaintext, associated_data)

    def decrypt(self, ciphertext: bytes, associated_data: bytes) -> bytes:
        return call_remote(self._remote.decrypt, ciphertext, associated_data)


_clients: Tuple[KmsClient, ...] = ()
_clients_lock = threading.Lock()


def register_kms_client(client: KmsClient) -> None:
    """Add a client; later registrations win when several support a URI."""
    global _clients
    with _clients_lock:
        _clients = _clients + (client,)


def reset_kms_clients() -> None:
    global _clients
    with _clients_lock:
        _clients = ()


def kms_client_for(key_uri: str) -> KmsClient:
    """
    Raises:
        ConfigError: If no registered client supports ``key_uri``
    """
    for client in reversed(_clients):
        if client.does_support(key_uri):
            return client
    raise ConfigError(f"No KMS client supports key URI {key_uri}")


# =============================================================================
# Local KMS
# =============================================================================


class _LocalKmsAead(Aead):
    """Aead bound to a local master key; exposes the URI it serves."""

    def __init__(self, key_uri: str, master_key: SecureKey, backend: CryptoBackend) -> None:
        self.key_uri = key_uri
        self._key = AesGcmKey(key_value=master_key)
        self._backend = backend

    def encrypt(self, plaintext: bytes, associated_data: bytes) -> bytes:
        return self._backend.encrypt(self._key, plaintext, associated_data)

    def decrypt(self, ciphertext: bytes, associated_data: bytes) -> bytes:
        return self._backend.decrypt(self._key, ciphertext, associated_data)

    def __repr__(self) -> str:
        return f"_LocalKmsAead({self.key_uri!r})"


class LocalKmsClient(KmsClient):
    """
    KMS client for ``local-kms://`` URIs served by a local master key.

    Suitable for development and tests; production deployments register a
    client for their provider instead.
    """

    def __init__(
        self,
        key_uri: str,
        master_key: Union[bytes, SecureKey],
        backend: Optional[CryptoBackend] = None,
    ) -> None:
        if not key_uri.startswith(LOCAL_KMS_PREFIX):
            raise ConfigError(f"Local KMS key URI must start with {LOCAL_KMS_PREFIX}")
        key = master_key if isinstance(master_key, SecureKey) else SecureKey(master_key)
        if len(key) != AES_256_KEY_SIZE:
            raise ConfigError(
                f"Local KMS master key must be {AES_256_KEY_SIZE} bytes, got {len(key)}"
            )
        self._key_uri = key_uri
        self._master_key = key
        self._backend = backend or CryptographyBackend()

    @classmethod
    def from_settings(cls, settings: Settings) -> LocalKmsClient:
        """
        Raises:
            ConfigError: If no local KMS master key is configured
        """
        if settings.local_kms_key is None:
            raise ConfigError("KEYSET_AGILITY_LOCAL_KMS_KEY is not set")
        return cls(settings.local_kms_uri, settings.local_kms_key)

    @property
    def key_uri(self) -> str:
        return self._key_uri

    def does_support(self, key_uri: str) -> bool:
        return key_uri == self._key_uri

    def get_aead(self, key_uri: str, credentials: Optional[Any] = None) -> Aead:
        if not self.does_support(key_uri):
            raise InvalidKeyError(f"This client is bound to {self._key_uri}, got {key_uri}")
        return _LocalKmsAead(key_uri, self._master_key, self._backend)


# =============================================================================
# Envelope AEAD
# =============================================================================


class KmsEnvelopeAead(Aead):
    """
    Envelope encryption with a remote KEK.

    Every ``encrypt`` generates a fresh DEK from ``dek_template``, encrypts
    the plaintext with it and wraps the DEK with ``remote_aead``:

        len(encrypted_dek) (4 bytes, big-endian) || encrypted_dek || ciphertext
    """

    def __init__(
        self,
        dek_template: KeyTemplate,
        remote_aead: Aead,
        registry: Optional[KeyRegistry] = None,
    ) -> None:
        self._dek_template = dek_template
        self._remote = remote_aead
        self._handler = resolve(registry).lookup(dek_template.type_url)
        if not self._handler.supports(Aead):
            raise InvalidKeyError(f"DEK template {dek_template.type_url} is not an Aead key type")

    def encrypt(self, plaintext: bytes, associated_data: bytes) -> bytes:
        dek = self._handler.new_key(self._dek_template.parameters)
        serialized_dek = json.dumps(dek.to_dict(), sort_keys=True, separators=(",", ":"))
        encrypted_dek = call_remote(self._remote.encrypt, serialized_dek.encode("utf-8"), b"")
        ciphertext = self._handler.primitive(dek, Aead).encrypt(plaintext, associated_data)
        return struct.pack(">I", len(encrypted_dek)) + encrypted_dek + ciphertext

    def decrypt(self, ciphertext: bytes, associated_data: bytes) -> bytes:
        if len(ciphertext) < _DEK_LENGTH_SIZE:
            raise DecryptionFailedError()
        (dek_size,) = struct.unpack(">I", ciphertext[:_DEK_LENGTH_SIZE])
        if dek_size == 0 or dek_size > len(ciphertext) - _DEK_LENGTH_SIZE:
            raise DecryptionFailedError()
        encrypted_dek = ciphertext[_DEK_LENGTH_SIZE:_DEK_LENGTH_SIZE + dek_size]
        payload = ciphertext[_DEK_LENGTH_SIZE + dek_size:]

        serialized_dek = call_remote(self._remote.decrypt, encrypted_dek, b"")
        try:
            dek = self._handler.parse_key(json.loads(serialized_dek.decode("utf-8")))
        except (InvalidKeyError, ValueError, TypeError):
            raise DecryptionFailedError() from None
        return self._handler.primitive(dek, Aead).decrypt(payload, associated_data)
