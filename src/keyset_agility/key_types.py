"""
Key material for every built-in key type.

Each material class carries its ``TYPE_URL`` and ``MATERIAL_TYPE`` and knows
how to turn itself into a JSON-ready dict and back. Validation of sizes and
parameters belongs to the matching key handler, not to these classes.
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict

from .crypto import SecureKey
from .errors import InvalidKeyError

TYPE_URL_PREFIX = "type.keyset-agility.dev/"


class KeyMaterialType(Enum):
    """What kind of material a key carries."""

    SYMMETRIC = "SYMMETRIC"
    ASYMMETRIC_PRIVATE = "ASYMMETRIC_PRIVATE"
    ASYMMETRIC_PUBLIC = "ASYMMETRIC_PUBLIC"
    REMOTE = "REMOTE"  # only a reference to a key held by a KMS

    def __str__(self) -> str:
        return self.value

    @property
    def has_secret(self) -> bool:
        return self in (KeyMaterialType.SYMMETRIC, KeyMaterialType.ASYMMETRIC_PRIVATE)

    @classmethod
    def from_str(cls, s: str) -> KeyMaterialType:
        try:
            return cls(s)
        except (ValueError, TypeError):
            raise InvalidKeyError(f"Invalid key material type: {s}")


def b64e(data: bytes) -> str:
    return base64.standard_b64encode(data).decode("ascii")


def b64d(data: str) -> bytes:
    try:
        return base64.standard_b64decode(data.encode("ascii"))
    except (binascii.Error, AttributeError, UnicodeEncodeError) as e:
        raise InvalidKeyError(f"Base64 decode error: {e}")


class KeyMaterial:
    """Base class for opaque, type-tagged key material."""

    TYPE_URL: str = ""
    MATERIAL_TYPE: KeyMaterialType = KeyMaterialType.SYMMETRIC

    @property
    def type_url(self) -> str:
        return self.TYPE_URL

    @property
    def material_type(self) -> KeyMaterialType:
        return self.MATERIAL_TYPE

    @property
    def has_secret(self) -> bool:
        return self.MATERIAL_TYPE.has_secret

    def to_dict(self) -> Dict[str, Any]:
        raise NotImplementedError

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> KeyMaterial:
        raise NotImplementedError


def _field(data: Dict[str, Any], name: str) -> Any:
    try:
        return data[name]
    except (KeyError, TypeError):
        raise InvalidKeyError(f"Missing key field: {name}")


def _int_field(data: Dict[str, Any], name: str) -> int:
    value = _field(data, name)
    if not isinstance(value, int) or isinstance(value, bool):
        raise InvalidKeyError(f"Key field {name} must be an integer")
    return value


# =============================================================================
# Symmetric keys
# =============================================================================


@dataclass(frozen=True)
class AesGcmKey(KeyMaterial):
    """AES-GCM key (16 or 32 bytes)."""

    TYPE_URL = TYPE_URL_PREFIX + "AesGcmKey"
    MATERIAL_TYPE = KeyMaterialType.SYMMETRIC

    key_value: SecureKey

    def to_dict(self) -> Dict[str, Any]:
        return {"keyValue": b64e(self.key_value.as_bytes())}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> AesGcmKey:
        return cls(key_value=SecureKey(b64d(_field(data, "keyValue"))))


@dataclass(frozen=True)
class AesCtrHmacAeadKey(KeyMaterial):
    """AES-CTR + HMAC encrypt-then-MAC key."""

    TYPE_URL = TYPE_URL_PREFIX + "AesCtrHmacAeadKey"
    MATERIAL_TYPE = KeyMaterialType.SYMMETRIC

    aes_key: SecureKey
    iv_size: int
    hmac_key: SecureKey
    hash: str
    tag_size: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "aesKey": b64e(self.aes_key.as_bytes()),
            "ivSize": self.iv_size,
            "hmacKey": b64e(self.hmac_key.as_bytes()),
            "hash": self.hash,
            "tagSize": self.tag_size,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> AesCtrHmacAeadKey:
        return cls(
            aes_key=SecureKey(b64d(_field(data, "aesKey"))),
            iv_size=_int_field(data, "ivSize"),
            hmac_key=SecureKey(b64d(_field(data, "hmacKey"))),
            hash=str(_field(data, "hash")),
            tag_size=_int_field(data, "tagSize"),
        )


@dataclass(frozen=True)
class HmacKey(KeyMaterial):
    """HMAC key with a truncated tag size."""

    TYPE_URL = TYPE_URL_PREFIX + "HmacKey"
    MATERIAL_TYPE = KeyMaterialType.SYMMETRIC

    key_value: SecureKey
    hash: str
    tag_size: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "keyValue": b64e(self.key_value.as_bytes()),
            "hash": self.hash,
            "tagSize": self.tag_size,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> HmacKey:
        return cls(
            key_value=SecureKey(b64d(_field(data, "keyValue"))),
            hash=str(_field(data, "hash")),
            tag_size=_int_field(data, "tagSize"),
        )


# =============================================================================
# Signature keys
# =============================================================================


@dataclass(frozen=True)
class Ed25519PublicKey(KeyMaterial):
    TYPE_URL = TYPE_URL_PREFIX + "Ed25519PublicKey"
    MATERIAL_TYPE = KeyMaterialType.ASYMMETRIC_PUBLIC

    public_key: bytes

    def to_dict(self) -> Dict[str, Any]:
        return {"publicKey": b64e(self.public_key)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Ed25519PublicKey:
        return cls(public_key=b64d(_field(data, "publicKey")))


@dataclass(frozen=True)
class Ed25519PrivateKey(KeyMaterial):
    TYPE_URL = TYPE_URL_PREFIX + "Ed25519PrivateKey"
    MATERIAL_TYPE = KeyMaterialType.ASYMMETRIC_PRIVATE

    private_key: SecureKey
    public_key: bytes

    def public(self) -> Ed25519PublicKey:
        return Ed25519PublicKey(public_key=self.public_key)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "privateKey": b64e(self.private_key.as_bytes()),
            "publicKey": b64e(self.public_key),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Ed25519PrivateKey:
        return cls(
            private_key=SecureKey(b64d(_field(data, "privateKey"))),
            public_key=b64d(_field(data, "publicKey")),
        )


@dataclass(frozen=True)
class EcdsaPublicKey(KeyMaterial):
    """ECDSA public point as big-endian affine coordinates."""

    TYPE_URL = TYPE_URL_PREFIX + "EcdsaPublicKey"
    MATERIAL_TYPE = KeyMaterialType.ASYMMETRIC_PUBLIC

    curve: str
    pub_x: bytes
    pub_y: bytes

    def to_dict(self) -> Dict[str, Any]:
        return {"curve": self.curve, "x": b64e(self.pub_x), "y": b64e(self.pub_y)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> EcdsaPublicKey:
        return cls(
            curve=str(_field(data, "curve")),
            pub_x=b64d(_field(data, "x")),
            pub_y=b64d(_field(data, "y")),
        )


@dataclass(frozen=True)
class EcdsaPrivateKey(KeyMaterial):
    TYPE_URL = TYPE_URL_PREFIX + "EcdsaPrivateKey"
    MATERIAL_TYPE = KeyMaterialType.ASYMMETRIC_PRIVATE

    curve: str
    pub_x: bytes
    pub_y: bytes
    priv: SecureKey

    def public(self) -> EcdsaPublicKey:
        return EcdsaPublicKey(curve=self.curve, pub_x=self.pub_x, pub_y=self.pub_y)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "curve": self.curve,
            "x": b64e(self.pub_x),
            "y": b64e(self.pub_y),
            "priv": b64e(self.priv.as_bytes()),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> EcdsaPrivateKey:
        return cls(
            curve=str(_field(data, "curve")),
            pub_x=b64d(_field(data, "x")),
            pub_y=b64d(_field(data, "y")),
            priv=SecureKey(b64d(_field(data, "priv"))),
        )


# =============================================================================
# Post-quantum signature keys
# =============================================================================


@dataclass(frozen=True)
class MlDsaPublicKey(KeyMaterial):
    """ML-DSA (Dilithium) public key in its FIPS 204 encoding."""

    TYPE_URL = TYPE_URL_PREFIX + "MlDsaPublicKey"
    MATERIAL_TYPE = KeyMaterialType.ASYMMETRIC_PUBLIC

    parameter_set: str
    public_key: bytes

    def to_dict(self) -> Dict[str, Any]:
        return {"parameterSet": self.parameter_set, "publicKey": b64e(self.public_key)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> MlDsaPublicKey:
        return cls(
            parameter_set=str(_field(data, "parameterSet")),
            public_key=b64d(_field(data, "publicKey")),
        )


@dataclass(frozen=True)
class MlDsaPrivateKey(KeyMaterial):
    TYPE_URL = TYPE_URL_PREFIX + "MlDsaPrivateKey"
    MATERIAL_TYPE = KeyMaterialType.ASYMMETRIC_PRIVATE

    parameter_set: str
    private_key: SecureKey
    public_key: bytes

    def public(self) -> MlDsaPublicKey:
        return MlDsaPublicKey(parameter_set=self.parameter_set, public_key=self.public_key)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "parameterSet": self.parameter_set,
            "privateKey": b64e(self.private_key.as_bytes()),
            "publicKey": b64e(self.public_key),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> MlDsaPrivateKey:
        return cls(
            parameter_set=str(_field(data, "parameterSet")),
            private_key=SecureKey(b64d(_field(data, "privateKey"))),
            public_key=b64d(_field(data, "publicKey")),
        )


# =============================================================================
# Hybrid encryption keys
# =============================================================================


@dataclass(frozen=True)
class X25519HybridPublicKey(KeyMaterial):
    TYPE_URL = TYPE_URL_PREFIX + "X25519HkdfAesGcmPublicKey"
    MATERIAL_TYPE = KeyMaterialType.ASYMMETRIC_PUBLIC

    public_key: bytes
    hkdf_salt: bytes = b""

    def to_dict(self) -> Dict[str, Any]:
        return {"publicKey": b64e(self.public_key), "hkdfSalt": b64e(self.hkdf_salt)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> X25519HybridPublicKey:
        return cls(
            public_key=b64d(_field(data, "publicKey")),
            hkdf_salt=b64d(data.get("hkdfSalt", "")),
        )


@dataclass(frozen=True)
class X25519HybridPrivateKey(KeyMaterial):
    TYPE_URL = TYPE_URL_PREFIX + "X25519HkdfAesGcmPrivateKey"
    MATERIAL_TYPE = KeyMaterialType.ASYMMETRIC_PRIVATE

    private_key: SecureKey
    public_key: bytes
    hkdf_salt: bytes = b""

    def public(self) -> X25519HybridPublicKey:
        return X25519HybridPublicKey(public_key=self.public_key, hkdf_salt=self.hkdf_salt)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "privateKey": b64e(self.private_key.as_bytes()),
            "publicKey": b64e(self.public_key),
            "hkdfSalt": b64e(self.hkdf_salt),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> X25519HybridPrivateKey:
        return cls(
            private_key=SecureKey(b64d(_field(data, "privateKey"))),
            public_key=b64d(_field(data, "publicKey")),
            hkdf_salt=b64d(data.get("hkdfSalt", "")),
        )


# =============================================================================
# Remote (KMS) keys
# =============================================================================


@dataclass(frozen=True)
class KmsAeadKey(KeyMaterial):
    """Reference to an AEAD key held by a KMS; no secret leaves the KMS."""

    TYPE_URL = TYPE_URL_PREFIX + "KmsAeadKey"
    MATERIAL_TYPE = KeyMaterialType.REMOTE

    key_uri: str

    def to_dict(self) -> Dict[str, Any]:
        return {"keyUri": self.key_uri}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> KmsAeadKey:
        return cls(key_uri=str(_field(data, "keyUri")))


@dataclass(frozen=True)
class KmsEnvelopeAeadKey(KeyMaterial):
    """KMS key encryption key plus the template used for per-message DEKs."""

    TYPE_URL = TYPE_URL_PREFIX + "KmsEnvelopeAeadKey"
    MATERIAL_TYPE = KeyMaterialType.REMOTE

    kek_uri: str
    dek_type_url: str
    dek_parameters: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kekUri": self.kek_uri,
            "dekTypeUrl": self.dek_type_url,
            "dekParameters": dict(self.dek_parameters),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> KmsEnvelopeAeadKey:
        params = data.get("dekParameters", {}) if isinstance(data, dict) else {}
        if not isinstance(params, dict):
            raise InvalidKeyError("Key field dekParameters must be an object")
        return cls(
            kek_uri=str(_field(data, "kekUri")),
            dek_type_url=str(_field(data, "dekTypeUrl")),
            dek_parameters=params,
        )
