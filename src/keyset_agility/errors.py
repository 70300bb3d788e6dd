"""
Exception classes for keyset operations.

All errors raised by this package derive from KeysetError. Consumption
failures (decrypt, verify) collapse to DecryptionFailedError or
VerificationFailedError with fixed messages so callers cannot learn which
candidate key, if any, almost matched.
"""

from __future__ import annotations


class KeysetError(Exception):
    """Base exception for all keyset operations."""

    pass


class UnknownKeyTypeError(KeysetError):
    """No key handler is registered for the requested key type."""

    pass


class AlreadyRegisteredError(KeysetError):
    """A different handler or wrapper is already bound to the identifier."""

    pass


class UnsupportedPrimitiveError(KeysetError):
    """The key handler cannot produce the requested primitive capability."""

    pass


class InvalidKeyError(KeysetError):
    """Malformed key material, invalid parameters or invalid key id/state."""

    pass


class InvalidKeysetError(KeysetError):
    """A cross-entry keyset invariant is violated."""

    pass


class NoPrimaryKeyError(KeysetError):
    """A producing operation was requested on a keyset without a primary key."""

    pass


class SecretKeyAccessDeniedError(KeysetError):
    """Secret key material was reached without the insecure access token."""

    pass


class CryptoError(KeysetError):
    """Cryptographic rejection of an input."""

    pass


class DecryptionFailedError(CryptoError):
    """Decryption failed. Deliberately carries no detail."""

    def __init__(self, message: str = "Decryption failed") -> None:
        super().__init__(message)


class VerificationFailedError(CryptoError):
    """Signature or MAC verification failed. Deliberately carries no detail."""

    def __init__(self, message: str = "Verification failed") -> None:
        super().__init__(message)


class BackendFailureError(KeysetError):
    """
    Underlying cryptographic backend or KMS error.

    The original exception is chained as ``__cause__``. ``transient`` is True
    when retrying the same call could succeed (network or timeout errors);
    this package never retries on its own.
    """

    def __init__(self, message: str, transient: bool = False) -> None:
        super().__init__(message)
        self.transient = transient


class SerializationError(KeysetError):
    """Serialization or deserialization error."""

    pass


class StorageError(KeysetError):
    """Storage backend error (database, in-memory, etc.)."""

    pass


class ConfigError(KeysetError):
    """Configuration error."""

    pass


class KeysetNotFoundError(StorageError):
    """Keyset not found in storage."""

    pass
