"""
Keyset Agility Library

Versioned keysets with key rotation, output-prefix dispatch and encrypted
keyset storage.

Overview
--------
A keyset holds several versions of a key. Exactly one ENABLED key is the
primary and produces new outputs; every ENABLED key can still consume:

- **Output prefixes** tag each ciphertext, tag or signature with the id of
  the key that made it, so decryption and verification find the right key
- **Rotation** adds a key and promotes it without breaking old ciphertexts
- **Encrypted keysets** are serialized under a master key held by a KMS

Quick Start
-----------
```python
import asyncio
from keyset_agility import (
    Aead,
    InMemoryKeysetStorage,
    KeysetService,
    LocalKmsClient,
    SecureKey,
    templates,
)

async def main():
    kms = LocalKmsClient("local-kms://app", SecureKey.generate())
    master = kms.get_aead("local-kms://app")
    service = KeysetService(InMemoryKeysetStorage(), master)

    # Create a keyset and encrypt
    loaded = await service.create("orders", templates.AES256_GCM)
    aead = loaded.handle.primitive(Aead)
    ciphertext = aead.encrypt(b"Sensitive data", b"order-17")

    # Rotate; old ciphertexts keep decrypting
    await service.rotate("orders", templates.AES256_GCM)
    aead = (await service.load("orders")).handle.primitive(Aead)
    assert aead.decrypt(ciphertext, b"order-17") == b"Sensitive data"

asyncio.run(main())
```

Modules
-------
- `keyset`: keyset data model, statuses and output prefixes
- `registry`: key handlers, primitive wrappers and the key registry
- `handlers`: built-in key types (AES-GCM, AES-CTR-HMAC, HMAC, Ed25519, ML-DSA,
  ECDSA, X25519 hybrid, KMS)
- `wrappers`: primitive sets and prefix dispatch
- `handle`: KeysetHandle and the secret access token
- `codec`: plaintext and encrypted keyset serialization
- `kms`: KMS clients and envelope Aead
- `storage` / `postgres`: versioned encrypted keyset storage
- `service`: high-level keyset service
"""

__version__ = "0.1.0"

# ============================================================================
# Crypto Exports
# ============================================================================

from .crypto import (
    AES_128_KEY_SIZE,
    AES_256_KEY_SIZE,
    SecureKey,
    generate_random_bytes,
)
from .backend import CryptoBackend, CryptographyBackend

# ============================================================================
# Error Exports
# ============================================================================

from .errors import (
    AlreadyRegisteredError,
    BackendFailureError,
    ConfigError,
    CryptoError,
    DecryptionFailedError,
    InvalidKeyError,
    InvalidKeysetError,
    KeysetError,
    KeysetNotFoundError,
    NoPrimaryKeyError,
    SecretKeyAccessDeniedError,
    SerializationError,
    StorageError,
    UnknownKeyTypeError,
    UnsupportedPrimitiveError,
    VerificationFailedError,
)

# ============================================================================
# Keyset Model Exports
# ============================================================================

from .key_types import KeyMaterial, KeyMaterialType
from .keyset import (
    KeyEntry,
    KeyInfo,
    Keyset,
    KeysetInfo,
    KeyStatus,
    OutputPrefixKind,
    output_prefix,
)
from .primitives import (
    Aead,
    HybridDecrypt,
    HybridEncrypt,
    Mac,
    PublicKeySign,
    PublicKeyVerify,
)
from .registry import (
    KeyHandler,
    KeyRegistry,
    PrimitiveWrapper,
    PrivateKeyHandler,
    default_registry,
)
from .templates import KeyTemplate
from . import templates
from .handlers import register_all
from .wrappers import PrimitiveSet

# ============================================================================
# Handle and Codec Exports
# ============================================================================

from .handle import InsecureSecretKeyAccess, KeysetHandle, build_primitive
from .codec import EnvelopeKeysetCodec

# ============================================================================
# KMS Exports
# ============================================================================

from .kms import (
    KmsClient,
    KmsEnvelopeAead,
    LocalKmsClient,
    kms_client_for,
    register_kms_client,
    reset_kms_clients,
)

# ============================================================================
# Storage and Service Exports
# ============================================================================

from .storage import InMemoryKeysetStorage, KeysetStorage, StoredKeyset
from .postgres import PostgresKeysetStorage
from .service import KeysetRotationResult, KeysetService, LoadedKeyset

# ============================================================================
# Config and Logging Exports
# ============================================================================

from .config import Settings, load_settings
from .log import get_logger

__all__ = [
    # Version
    "__version__",
    # Crypto
    "AES_128_KEY_SIZE",
    "AES_256_KEY_SIZE",
    "SecureKey",
    "generate_random_bytes",
    "CryptoBackend",
    "CryptographyBackend",
    # Errors
    "AlreadyRegisteredError",
    "BackendFailureError",
    "ConfigError",
    "CryptoError",
    "DecryptionFailedError",
    "InvalidKeyError",
    "InvalidKeysetError",
    "KeysetError",
    "KeysetNotFoundError",
    "NoPrimaryKeyError",
    "SecretKeyAccessDeniedError",
    "SerializationError",
    "StorageError",
    "UnknownKeyTypeError",
    "UnsupportedPrimitiveError",
    "VerificationFailedError",
    # Keyset model
    "KeyMaterial",
    "KeyMaterialType",
    "KeyEntry",
    "KeyInfo",
    "Keyset",
    "KeysetInfo",
    "KeyStatus",
    "OutputPrefixKind",
    "output_prefix",
    "Aead",
    "HybridDecrypt",
    "HybridEncrypt",
    "Mac",
    "PublicKeySign",
    "PublicKeyVerify",
    "KeyHandler",
    "KeyRegistry",
    "PrimitiveWrapper",
    "PrivateKeyHandler",
    "default_registry",
    "KeyTemplate",
    "templates",
    "register_all",
    "PrimitiveSet",
    # Handle and codec
    "InsecureSecretKeyAccess",
    "KeysetHandle",
    "build_primitive",
    "EnvelopeKeysetCodec",
    # KMS
    "KmsClient",
    "KmsEnvelopeAead",
    "LocalKmsClient",
    "kms_client_for",
    "register_kms_client",
    "reset_kms_clients",
    # Storage and service
    "InMemoryKeysetStorage",
    "KeysetStorage",
    "StoredKeyset",
    "PostgresKeysetStorage",
    "KeysetRotationResult",
    "KeysetService",
    "LoadedKeyset",
    # Config and logging
    "Settings",
    "load_settings",
    "get_logger",
]
