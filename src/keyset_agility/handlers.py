"""
Built-in key handlers.

One handler per key type. Each validates its material, generates new
material from template parameters and binds material to the crypto backend
as one or more primitives. ``register_all`` installs every handler and every
primitive wrapper into a registry.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from .backend import CryptoBackend, CryptographyBackend
from .crypto import (
    AES_128_KEY_SIZE,
    AES_256_KEY_SIZE,
    AES_BLOCK_SIZE,
    CURVES,
    ED25519_KEY_SIZE,
    HASHES,
    MIN_AES_CTR_IV_SIZE,
    MIN_HMAC_KEY_SIZE,
    MIN_HMAC_TAG_SIZE,
    ML_DSA_PARAMETER_SETS,
    X25519_KEY_SIZE,
    EcdsaSigner,
    Ed25519Signer,
    MlDsaParameters,
    MlDsaSigner,
    SecureKey,
    X25519HybridCipher,
    curve_field_size,
    hash_digest_size,
)
from .errors import InvalidKeyError
from .key_types import (
    AesCtrHmacAeadKey,
    AesGcmKey,
    EcdsaPrivateKey,
    EcdsaPublicKey,
    Ed25519PrivateKey,
    Ed25519PublicKey,
    HmacKey,
    KeyMaterial,
    KmsAeadKey,
    KmsEnvelopeAeadKey,
    MlDsaPrivateKey,
    MlDsaPublicKey,
    X25519HybridPrivateKey,
    X25519HybridPublicKey,
    b64d,
)
from .kms import KmsEnvelopeAead, RemoteAead, kms_client_for
from .primitives import (
    Aead,
    BackendAead,
    BackendHybridDecrypt,
    BackendHybridEncrypt,
    BackendMac,
    BackendSign,
    BackendVerify,
    HybridDecrypt,
    HybridEncrypt,
    Mac,
    PublicKeySign,
    PublicKeyVerify,
)
from .registry import KeyHandler, KeyRegistry, PrivateKeyHandler, resolve
from .templates import KeyTemplate
from .wrappers import ALL_WRAPPERS

logger = logging.getLogger(__name__)


def _param(parameters: Mapping[str, Any], name: str, default: Any = None) -> Any:
    value = parameters.get(name, default)
    if value is None:
        raise InvalidKeyError(f"Missing key parameter: {name}")
    return value


def _int_param(parameters: Mapping[str, Any], name: str, default: Optional[int] = None) -> int:
    value = _param(parameters, name, default)
    if not isinstance(value, int) or isinstance(value, bool):
        raise InvalidKeyError(f"Key parameter {name} must be an integer")
    return value


def _validate_aes_key_size(size: int) -> None:
    if size not in (AES_128_KEY_SIZE, AES_256_KEY_SIZE):
        raise InvalidKeyError(f"Invalid AES key size: expected 16 or 32 bytes, got {size}")


def _validate_hmac_params(hash_name: str, key_size: int, tag_size: int) -> None:
    if hash_name not in HASHES:
        raise InvalidKeyError(f"Unknown hash type: {hash_name}")
    if key_size < MIN_HMAC_KEY_SIZE:
        raise InvalidKeyError("HMAC key too short")
    if tag_size < MIN_HMAC_TAG_SIZE:
        raise InvalidKeyError("HMAC tag size too small")
    if tag_size > hash_digest_size(hash_name):
        raise InvalidKeyError("HMAC tag size too big")


class _BackendHandler(KeyHandler):
    def __init__(self, backend: Optional[CryptoBackend] = None) -> None:
        self._backend = backend or CryptographyBackend()

    def _secret(self, size: int) -> SecureKey:
        return SecureKey(self._backend.generate_secret(size))


class _BackendPrivateHandler(_BackendHandler, PrivateKeyHandler):
    pass


# =============================================================================
# Aead
# =============================================================================


class AesGcmKeyHandler(_BackendHandler):
    type_url = AesGcmKey.TYPE_URL
    material_class = AesGcmKey
    capabilities = frozenset({Aead})

    def validate_key(self, key: KeyMaterial) -> None:
        self._check_material_class(key)
        _validate_aes_key_size(len(key.key_value))

    def new_key(self, parameters: Mapping[str, Any]) -> AesGcmKey:
        size = _int_param(parameters, "keySize", AES_256_KEY_SIZE)
        _validate_aes_key_size(size)
        return AesGcmKey(key_value=self._secret(size))

    def _primitive(self, key: KeyMaterial, capability: type) -> Any:
        return BackendAead(self._backend, key)


class AesCtrHmacAeadKeyHandler(_BackendHandler):
    """AES-CTR + HMAC; IV between 12 and 16 bytes, HMAC rules as for HmacKey."""

    type_url = AesCtrHmacAeadKey.TYPE_URL
    material_class = AesCtrHmacAeadKey
    capabilities = frozenset({Aead})

    def validate_key(self, key: KeyMaterial) -> None:
        self._check_material_class(key)
        _validate_aes_key_size(len(key.aes_key))
        if not MIN_AES_CTR_IV_SIZE <= key.iv_size <= AES_BLOCK_SIZE:
            raise InvalidKeyError("Invalid AES-CTR IV size")
        _validate_hmac_params(key.hash, len(key.hmac_key), key.tag_size)

    def new_key(self, parameters: Mapping[str, Any]) -> AesCtrHmacAeadKey:
        key = AesCtrHmacAeadKey(
            aes_key=self._secret(_int_param(parameters, "aesKeySize", AES_256_KEY_SIZE)),
            iv_size=_int_param(parameters, "ivSize", AES_BLOCK_SIZE),
            hmac_key=self._secret(_int_param(parameters, "hmacKeySize", 32)),
            hash=str(_param(parameters, "hash", "SHA256")),
            tag_size=_int_param(parameters, "tagSize", 16),
        )
        self.validate_key(key)
        return key

    def _primitive(self, key: KeyMaterial, capability: type) -> Any:
        return BackendAead(self._backend, key)


# =============================================================================
# Mac
# =============================================================================


class HmacKeyHandler(_BackendHandler):
    type_url = HmacKey.TYPE_URL
    material_class = HmacKey
    capabilities = frozenset({Mac})

    def validate_key(self, key: KeyMaterial) -> None:
        self._check_material_class(key)
        _validate_hmac_params(key.hash, len(key.key_value), key.tag_size)

    def new_key(self, parameters: Mapping[str, Any]) -> HmacKey:
        key = HmacKey(
            key_value=self._secret(_int_param(parameters, "keySize", 32)),
            hash=str(_param(parameters, "hash", "SHA256")),
            tag_size=_int_param(parameters, "tagSize", 16),
        )
        self.validate_key(key)
        return key

    def _primitive(self, key: KeyMaterial, capability: type) -> Any:
        return BackendMac(self._backend, key)


# =============================================================================
# Signatures
# =============================================================================


def _check_size(value: bytes, size: int, what: str) -> None:
    if len(value) != size:
        raise InvalidKeyError(f"Invalid {what} size: expected {size}, got {len(value)}")


class Ed25519PublicKeyHandler(_BackendHandler):
    type_url = Ed25519PublicKey.TYPE_URL
    material_class = Ed25519PublicKey
    capabilities = frozenset({PublicKeyVerify})

    def validate_key(self, key: KeyMaterial) -> None:
        self._check_material_class(key)
        _check_size(key.public_key, ED25519_KEY_SIZE, "Ed25519 public key")

    def new_key(self, parameters: Mapping[str, Any]) -> KeyMaterial:
        raise InvalidKeyError("Public keys are derived from private keys, not generated")

    def _primitive(self, key: KeyMaterial, capability: type) -> Any:
        return BackendVerify(self._backend, key)


class Ed25519PrivateKeyHandler(_BackendPrivateHandler):
    type_url = Ed25519PrivateKey.TYPE_URL
    public_type_url = Ed25519PublicKey.TYPE_URL
    material_class = Ed25519PrivateKey
    capabilities = frozenset({PublicKeySign, PublicKeyVerify})

    def validate_key(self, key: KeyMaterial) -> None:
        self._check_material_class(key)
        _check_size(key.private_key.as_bytes(), ED25519_KEY_SIZE, "Ed25519 private key")
        _check_size(key.public_key, ED25519_KEY_SIZE, "Ed25519 public key")
        if Ed25519Signer.public_from_private(key.private_key.as_bytes()) != key.public_key:
            raise InvalidKeyError("Ed25519 public key does not match private key")

    def new_key(self, parameters: Mapping[str, Any]) -> Ed25519PrivateKey:
        private_raw, public_raw = Ed25519Signer.generate()
        return Ed25519PrivateKey(private_key=SecureKey(private_raw), public_key=public_raw)

    def public_key(self, key: KeyMaterial) -> Ed25519PublicKey:
        self._check_material_class(key)
        return key.public()

    def _primitive(self, key: KeyMaterial, capability: type) -> Any:
        if capability is PublicKeySign:
            return BackendSign(self._backend, key)
        return BackendVerify(self._backend, key.public())


def _validate_ecdsa_point(curve: str, pub_x: bytes, pub_y: bytes) -> None:
    if curve not in CURVES:
        raise InvalidKeyError(f"Unknown curve: {curve}")
    field_size = curve_field_size(curve)
    _check_size(pub_x, field_size, "EC coordinate")
    _check_size(pub_y, field_size, "EC coordinate")
    try:
        EcdsaSigner.public_key(curve, pub_x, pub_y)
    except ValueError:
        raise InvalidKeyError("EC point is not on the curve") from None


class EcdsaPublicKeyHandler(_BackendHandler):
    type_url = EcdsaPublicKey.TYPE_URL
    material_class = EcdsaPublicKey
    capabilities = frozenset({PublicKeyVerify})

    def validate_key(self, key: KeyMaterial) -> None:
        self._check_material_class(key)
        _validate_ecdsa_point(key.curve, key.pub_x, key.pub_y)

    def new_key(self, parameters: Mapping[str, Any]) -> KeyMaterial:
        raise InvalidKeyError("Public keys are derived from private keys, not generated")

    def _primitive(self, key: KeyMaterial, capability: type) -> Any:
        return BackendVerify(self._backend, key)


class EcdsaPrivateKeyHandler(_BackendPrivateHandler):
    type_url = EcdsaPrivateKey.TYPE_URL
    public_type_url = EcdsaPublicKey.TYPE_URL
    material_class = EcdsaPrivateKey
    capabilities = frozenset({PublicKeySign, PublicKeyVerify})

    def validate_key(self, key: KeyMaterial) -> None:
        self._check_material_class(key)
        _validate_ecdsa_point(key.curve, key.pub_x, key.pub_y)
        _check_size(key.priv.as_bytes(), curve_field_size(key.curve), "EC private key")
        try:
            derived = EcdsaSigner.private_key(key.curve, key.priv.as_bytes())
        except ValueError:
            raise InvalidKeyError("Invalid EC private key") from None
        numbers = derived.public_key().public_numbers()
        if (numbers.x, numbers.y) != (
            int.from_bytes(key.pub_x, "big"),
            int.from_bytes(key.pub_y, "big"),
        ):
            raise InvalidKeyError("EC public point does not match private key")

    def new_key(self, parameters: Mapping[str, Any]) -> EcdsaPrivateKey:
        curve = str(_param(parameters, "curve", "NIST_P256"))
        if curve not in CURVES:
            raise InvalidKeyError(f"Unknown curve: {curve}")
        pub_x, pub_y, priv = EcdsaSigner.generate(curve)
        return EcdsaPrivateKey(curve=curve, pub_x=pub_x, pub_y=pub_y, priv=SecureKey(priv))

    def public_key(self, key: KeyMaterial) -> EcdsaPublicKey:
        self._check_material_class(key)
        return key.public()

    def _primitive(self, key: KeyMaterial, capability: type) -> Any:
        if capability is PublicKeySign:
            return BackendSign(self._backend, key)
        return BackendVerify(self._backend, key.public())


# =============================================================================
# Post-quantum signatures
# =============================================================================


def _ml_dsa_parameters(parameter_set: str) -> MlDsaParameters:
    params = ML_DSA_PARAMETER_SETS.get(parameter_set)
    if params is None:
        raise InvalidKeyError(f"Unknown ML-DSA parameter set: {parameter_set}")
    return params


class MlDsaPublicKeyHandler(_BackendHandler):
    type_url = MlDsaPublicKey.TYPE_URL
    material_class = MlDsaPublicKey
    capabilities = frozenset({PublicKeyVerify})

    def validate_key(self, key: KeyMaterial) -> None:
        self._check_material_class(key)
        params = _ml_dsa_parameters(key.parameter_set)
        _check_size(key.public_key, params.public_key_size, "ML-DSA public key")

    def new_key(self, parameters: Mapping[str, Any]) -> KeyMaterial:
        raise InvalidKeyError("Public keys are derived from private keys, not generated")

    def _primitive(self, key: KeyMaterial, capability: type) -> Any:
        return BackendVerify(self._backend, key)


class MlDsaPrivateKeyHandler(_BackendPrivateHandler):
    type_url = MlDsaPrivateKey.TYPE_URL
    public_type_url = MlDsaPublicKey.TYPE_URL
    material_class = MlDsaPrivateKey
    capabilities = frozenset({PublicKeySign, PublicKeyVerify})

    def validate_key(self, key: KeyMaterial) -> None:
        self._check_material_class(key)
        params = _ml_dsa_parameters(key.parameter_set)
        _check_size(key.private_key.as_bytes(), params.private_key_size, "ML-DSA private key")
        _check_size(key.public_key, params.public_key_size, "ML-DSA public key")
        if not MlDsaSigner.key_pair_matches(key.public_key, key.private_key.as_bytes()):
            raise InvalidKeyError("ML-DSA public key does not match private key")

    def new_key(self, parameters: Mapping[str, Any]) -> MlDsaPrivateKey:
        parameter_set = str(_param(parameters, "parameterSet", "ML_DSA_65"))
        _ml_dsa_parameters(parameter_set)
        public_raw, private_raw = MlDsaSigner.generate(parameter_set)
        return MlDsaPrivateKey(
            parameter_set=parameter_set,
            private_key=SecureKey(private_raw),
            public_key=public_raw,
        )

    def public_key(self, key: KeyMaterial) -> MlDsaPublicKey:
        self._check_material_class(key)
        return key.public()

    def _primitive(self, key: KeyMaterial, capability: type) -> Any:
        if capability is PublicKeySign:
            return BackendSign(self._backend, key)
        return BackendVerify(self._backend, key.public())


# =============================================================================
# Hybrid encryption
# =============================================================================


class X25519HybridPublicKeyHandler(_BackendHandler):
    type_url = X25519HybridPublicKey.TYPE_URL
    material_class = X25519HybridPublicKey
    capabilities = frozenset({HybridEncrypt})

    def validate_key(self, key: KeyMaterial) -> None:
        self._check_material_class(key)
        _check_size(key.public_key, X25519_KEY_SIZE, "X25519 public key")

    def new_key(self, parameters: Mapping[str, Any]) -> KeyMaterial:
        raise InvalidKeyError("Public keys are derived from private keys, not generated")

    def _primitive(self, key: KeyMaterial, capability: type) -> Any:
        return BackendHybridEncrypt(self._backend, key)


class X25519HybridPrivateKeyHandler(_BackendPrivateHandler):
    """Yields the decrypt side and, from the embedded public value, the encrypt side."""

    type_url = X25519HybridPrivateKey.TYPE_URL
    public_type_url = X25519HybridPublicKey.TYPE_URL
    material_class = X25519HybridPrivateKey
    capabilities = frozenset({HybridDecrypt, HybridEncrypt})

    def validate_key(self, key: KeyMaterial) -> None:
        self._check_material_class(key)
        _check_size(key.private_key.as_bytes(), X25519_KEY_SIZE, "X25519 private key")
        _check_size(key.public_key, X25519_KEY_SIZE, "X25519 public key")
        if X25519HybridCipher.public_from_private(key.private_key.as_bytes()) != key.public_key:
            raise InvalidKeyError("X25519 public key does not match private key")

    def new_key(self, parameters: Mapping[str, Any]) -> X25519HybridPrivateKey:
        salt = parameters.get("hkdfSalt")
        private_raw, public_raw = X25519HybridCipher.generate()
        return X25519HybridPrivateKey(
            private_key=SecureKey(private_raw),
            public_key=public_raw,
            hkdf_salt=b64d(salt) if salt else b"",
        )

    def public_key(self, key: KeyMaterial) -> X25519HybridPublicKey:
        self._check_material_class(key)
        return key.public()

    def _primitive(self, key: KeyMaterial, capability: type) -> Any:
        if capability is HybridDecrypt:
            return BackendHybridDecrypt(self._backend, key)
        return BackendHybridEncrypt(self._backend, key.public())


# =============================================================================
# Remote (KMS) keys
# =============================================================================


class KmsAeadKeyHandler(KeyHandler):
    """Aead served directly by the KMS client registered for the key URI."""

    type_url = KmsAeadKey.TYPE_URL
    material_class = KmsAeadKey
    capabilities = frozenset({Aead})

    def validate_key(self, key: KeyMaterial) -> None:
        self._check_material_class(key)
        if not key.key_uri:
            raise InvalidKeyError("KMS key URI is empty")

    def new_key(self, parameters: Mapping[str, Any]) -> KmsAeadKey:
        key = KmsAeadKey(key_uri=str(_param(parameters, "keyUri")))
        self.validate_key(key)
        return key

    def _primitive(self, key: KeyMaterial, capability: type) -> Any:
        return RemoteAead(kms_client_for(key.key_uri).get_aead(key.key_uri))


class KmsEnvelopeAeadKeyHandler(KeyHandler):
    """Envelope Aead: local DEK per message, wrapped by a KMS-held KEK."""

    type_url = KmsEnvelopeAeadKey.TYPE_URL
    material_class = KmsEnvelopeAeadKey
    capabilities = frozenset({Aead})

    def __init__(self, registry: Optional[KeyRegistry] = None) -> None:
        self._registry = registry

    def validate_key(self, key: KeyMaterial) -> None:
        self._check_material_class(key)
        if not key.kek_uri:
            raise InvalidKeyError("KMS KEK URI is empty")
        dek_handler = resolve(self._registry).lookup(key.dek_type_url)
        if not dek_handler.supports(Aead):
            raise InvalidKeyError(f"DEK key type {key.dek_type_url} is not an Aead key type")

    def new_key(self, parameters: Mapping[str, Any]) -> KmsEnvelopeAeadKey:
        dek_parameters = parameters.get("dekParameters") or {}
        key = KmsEnvelopeAeadKey(
            kek_uri=str(_param(parameters, "kekUri")),
            dek_type_url=str(_param(parameters, "dekTypeUrl")),
            dek_parameters=dict(dek_parameters),
        )
        self.validate_key(key)
        return key

    def _primitive(self, key: KeyMaterial, capability: type) -> Any:
        remote = kms_client_for(key.kek_uri).get_aead(key.kek_uri)
        return KmsEnvelopeAead(
            KeyTemplate(key.dek_type_url, dict(key.dek_parameters)),
            remote,
            self._registry,
        )


def register_all(registry: Optional[KeyRegistry] = None) -> KeyRegistry:
    """
    Register every built-in key handler and primitive wrapper.

    Safe to call repeatedly.
    """
    registry = resolve(registry)
    for handler in (
        AesGcmKeyHandler(),
        AesCtrHmacAeadKeyHandler(),
        HmacKeyHandler(),
        Ed25519PrivateKeyHandler(),
        Ed25519PublicKeyHandler(),
        EcdsaPrivateKeyHandler(),
        EcdsaPublicKeyHandler(),
        MlDsaPrivateKeyHandler(),
        MlDsaPublicKeyHandler(),
        X25519HybridPrivateKeyHandler(),
        X25519HybridPublicKeyHandler(),
        KmsAeadKeyHandler(),
        KmsEnvelopeAeadKeyHandler(registry),
    ):
        registry.register_handler(handler)
    for wrapper_class in ALL_WRAPPERS:
        registry.register_wrapper(wrapper_class())
    logger.debug("Registered built-in key handlers")
    return registry
