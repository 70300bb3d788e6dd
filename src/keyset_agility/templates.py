"""
Key templates: what to generate and how to frame its outputs.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict

from .key_types import (
    AesCtrHmacAeadKey,
    AesGcmKey,
    EcdsaPrivateKey,
    Ed25519PrivateKey,
    HmacKey,
    KmsAeadKey,
    KmsEnvelopeAeadKey,
    MlDsaPrivateKey,
    X25519HybridPrivateKey,
)
from .keyset import OutputPrefixKind


@dataclass(frozen=True)
class KeyTemplate:
    """Key type url, generation parameters and output prefix kind."""

    type_url: str
    parameters: Dict[str, Any] = field(default_factory=dict)
    output_prefix_kind: OutputPrefixKind = OutputPrefixKind.TINK

    def with_prefix(self, kind: OutputPrefixKind) -> KeyTemplate:
        return replace(self, output_prefix_kind=kind)


def aes_gcm(key_size: int, kind: OutputPrefixKind = OutputPrefixKind.TINK) -> KeyTemplate:
    return KeyTemplate(AesGcmKey.TYPE_URL, {"keySize": key_size}, kind)


def aes_ctr_hmac(
    aes_key_size: int,
    iv_size: int,
    hmac_key_size: int,
    tag_size: int,
    hash_name: str,
    kind: OutputPrefixKind = OutputPrefixKind.TINK,
) -> KeyTemplate:
    return KeyTemplate(
        AesCtrHmacAeadKey.TYPE_URL,
        {
            "aesKeySize": aes_key_size,
            "ivSize": iv_size,
            "hmacKeySize": hmac_key_size,
            "tagSize": tag_size,
            "hash": hash_name,
        },
        kind,
    )


def hmac(
    key_size: int, tag_size: int, hash_name: str, kind: OutputPrefixKind = OutputPrefixKind.TINK
) -> KeyTemplate:
    return KeyTemplate(
        HmacKey.TYPE_URL, {"keySize": key_size, "tagSize": tag_size, "hash": hash_name}, kind
    )


def ecdsa(curve: str, kind: OutputPrefixKind = OutputPrefixKind.TINK) -> KeyTemplate:
    return KeyTemplate(EcdsaPrivateKey.TYPE_URL, {"curve": curve}, kind)


def ml_dsa(parameter_set: str, kind: OutputPrefixKind = OutputPrefixKind.TINK) -> KeyTemplate:
    return KeyTemplate(MlDsaPrivateKey.TYPE_URL, {"parameterSet": parameter_set}, kind)


def kms_aead(key_uri: str) -> KeyTemplate:
    return KeyTemplate(KmsAeadKey.TYPE_URL, {"keyUri": key_uri}, OutputPrefixKind.TINK)


def kms_envelope_aead(kek_uri: str, dek_template: KeyTemplate) -> KeyTemplate:
    return KeyTemplate(
        KmsEnvelopeAeadKey.TYPE_URL,
        {
            "kekUri": kek_uri,
            "dekTypeUrl": dek_template.type_url,
            "dekParameters": dict(dek_template.parameters),
        },
        OutputPrefixKind.TINK,
    )


# Aead
AES128_GCM = aes_gcm(16)
AES256_GCM = aes_gcm(32)
AES256_GCM_RAW = aes_gcm(32, OutputPrefixKind.RAW)
AES128_CTR_HMAC_SHA256 = aes_ctr_hmac(16, 16, 32, 16, "SHA256")
AES256_CTR_HMAC_SHA256 = aes_ctr_hmac(32, 16, 32, 32, "SHA256")

# Mac
HMAC_SHA256_128BITTAG = hmac(32, 16, "SHA256")
HMAC_SHA256_256BITTAG = hmac(32, 32, "SHA256")
HMAC_SHA512_256BITTAG = hmac(64, 32, "SHA512")

# Signatures
ED25519 = KeyTemplate(Ed25519PrivateKey.TYPE_URL, {}, OutputPrefixKind.TINK)
ED25519_RAW = ED25519.with_prefix(OutputPrefixKind.RAW)
ECDSA_P256 = ecdsa("NIST_P256")
ECDSA_P384 = ecdsa("NIST_P384")
ML_DSA_44 = ml_dsa("ML_DSA_44")
ML_DSA_65 = ml_dsa("ML_DSA_65")
ML_DSA_87 = ml_dsa("ML_DSA_87")
ML_DSA_65_RAW = ml_dsa("ML_DSA_65", OutputPrefixKind.RAW)

# Hybrid
X25519_HKDF_AES256_GCM = KeyTemplate(X25519HybridPrivateKey.TYPE_URL, {}, OutputPrefixKind.TINK)
