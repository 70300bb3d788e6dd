import json

import pytest

from keyset_agility import (
    Aead,
    BackendFailureError,
    DecryptionFailedError,
    EnvelopeKeysetCodec,
    InsecureSecretKeyAccess,
    InvalidKeysetError,
    KeysetHandle,
    KeyStatus,
    LocalKmsClient,
    Mac,
    SecretKeyAccessDeniedError,
    SecureKey,
    SerializationError,
    templates,
)
from keyset_agility.handlers import AesGcmKeyHandler
from keyset_agility.templates import KeyTemplate

TOKEN = InsecureSecretKeyAccess.get()


class UnreachableAead(Aead):
    """Master Aead whose KMS cannot be reached."""

    def __init__(self, error: Exception) -> None:
        self.error = error

    def encrypt(self, plaintext: bytes, associated_data: bytes) -> bytes:
        raise self.error

    def decrypt(self, ciphertext: bytes, associated_data: bytes) -> bytes:
        raise self.error


@pytest.fixture
def codec(registry) -> EnvelopeKeysetCodec:
    return EnvelopeKeysetCodec(registry)


def _rich_handle(registry) -> KeysetHandle:
    handle = KeysetHandle.generate_new(templates.AES256_GCM, registry)
    handle.add_key(templates.AES128_CTR_HMAC_SHA256)
    disabled = handle.add_key(templates.AES256_GCM_RAW)
    handle.disable(disabled)
    destroyed = handle.add_key(templates.AES128_GCM)
    handle.destroy(destroyed)
    return handle


def test_round_trip(registry, codec):
    handle = _rich_handle(registry)
    ciphertext = handle.primitive(Aead).encrypt(b"data", b"ad")

    parsed = codec.parse(codec.serialize(handle, TOKEN), TOKEN)
    assert parsed.keyset(TOKEN) == handle.keyset(TOKEN)
    assert parsed.keyset_info() == handle.keyset_info()
    assert parsed.primitive(Aead).decrypt(ciphertext, b"ad") == b"data"


def test_serialized_layout(registry, codec):
    handle = _rich_handle(registry)
    decoded = json.loads(codec.serialize(handle, TOKEN))
    assert decoded["primaryKeyId"] == handle.primary().key_id
    destroyed = [k for k in decoded["key"] if k["status"] == "DESTROYED"][0]
    assert destroyed["keyData"]["value"] is None
    assert destroyed["keyData"]["keyMaterialType"] == "SYMMETRIC"
    assert {k["outputPrefixType"] for k in decoded["key"]} == {"TINK", "RAW"}


def test_serialize_secret_requires_token(registry, codec):
    handle = KeysetHandle.generate_new(templates.HMAC_SHA256_128BITTAG, registry)
    with pytest.raises(SecretKeyAccessDeniedError):
        codec.serialize(handle)
    with pytest.raises(SecretKeyAccessDeniedError):
        codec.serialize_without_secret(handle)
    data = codec.serialize(handle, TOKEN)
    with pytest.raises(SecretKeyAccessDeniedError):
        codec.parse(data)


def test_parse_without_secret(registry, codec):
    private = KeysetHandle.generate_new(templates.ED25519, registry)
    private.add_key(templates.X25519_HKDF_AES256_GCM)
    with pytest.raises(SecretKeyAccessDeniedError):
        codec.parse_without_secret(codec.serialize(private, TOKEN))

    public_data = codec.serialize_without_secret(private.public_keyset_handle())
    public = codec.parse_without_secret(public_data)
    assert not public.has_secret()
    assert public.keyset_info() == private.public_keyset_handle().keyset_info()


def test_parse_without_secret_checks_declared_type(registry, codec):
    handle = KeysetHandle.generate_new(templates.AES256_GCM, registry)
    first = handle.primary().key_id
    handle.rotate(templates.AES256_GCM)
    handle.destroy(first)
    decoded = json.loads(codec.serialize(handle, TOKEN))
    decoded["key"] = [k for k in decoded["key"] if k["keyId"] == first]
    decoded["primaryKeyId"] = None

    # Only a destroyed symmetric entry remains; its declared type still counts
    with pytest.raises(SecretKeyAccessDeniedError):
        codec.parse_without_secret(json.dumps(decoded).encode())


@pytest.mark.parametrize("data", [b"not json", b"[]", b'{"primaryKeyId": 1}', b"\xff\xfe"])
def test_parse_malformed(codec, data):
    with pytest.raises(SerializationError):
        codec.parse(data, TOKEN)


def _entry(**key_data):
    return {
        "keyId": 7,
        "status": "ENABLED",
        "outputPrefixType": "TINK",
        "keyData": dict({"typeUrl": templates.AES256_GCM.type_url, "value": {}}, **key_data),
    }


MALFORMED_DOCUMENTS = [
    {"primaryKeyId": True, "key": []},
    {"primaryKeyId": "7", "key": []},
    {"primaryKeyId": 7, "key": [_entry(typeUrl=[])]},
    {"primaryKeyId": 7, "key": [_entry(typeUrl=7)]},
    {"primaryKeyId": 7, "key": ["not an object"]},
    {"primaryKeyId": 7, "key": [dict(_entry(), keyData="not an object")]},
    {"primaryKeyId": 7, "key": [dict(_entry(), keyId=True)]},
]


@pytest.mark.parametrize("document", MALFORMED_DOCUMENTS)
def test_parse_malformed_entries(codec, document):
    data = json.dumps(document).encode()
    with pytest.raises(SerializationError):
        codec.parse(data, TOKEN)
    with pytest.raises(SerializationError):
        codec.parse_without_secret(data)


def test_custom_key_type_survives_serialization(registry, codec):
    registry.register("custom/aes", AesGcmKeyHandler())
    handle = KeysetHandle.generate_new(KeyTemplate("custom/aes", {"keySize": 32}), registry)
    ciphertext = handle.primitive(Aead).encrypt(b"payload", b"")

    data = codec.serialize(handle, TOKEN)
    assert json.loads(data)["key"][0]["keyData"]["typeUrl"] == "custom/aes"
    restored = codec.parse(data, TOKEN)
    assert restored.primitive(Aead).decrypt(ciphertext, b"") == b"payload"


def test_parse_rejects_missing_primary(registry, codec):
    handle = KeysetHandle.generate_new(templates.AES256_GCM, registry)
    decoded = json.loads(codec.serialize(handle, TOKEN))
    decoded["primaryKeyId"] = 1 if handle.primary().key_id != 1 else 2
    with pytest.raises(InvalidKeysetError):
        codec.parse(json.dumps(decoded).encode(), TOKEN)


def test_encrypted_round_trip(registry, codec, master_aead):
    handle = _rich_handle(registry)
    data = codec.serialize_encrypted(handle, master_aead, b"context")

    wrapper = json.loads(data)
    assert wrapper["masterKeyUri"] == master_aead.key_uri
    assert "keyValue" not in data.decode()

    parsed = codec.parse_encrypted(data, master_aead, b"context")
    assert parsed.keyset(TOKEN) == handle.keyset(TOKEN)
    assert codec.read_keyset_info(data) == handle.keyset_info()


def test_encrypted_wrong_associated_data(registry, codec, master_aead):
    handle = KeysetHandle.generate_new(templates.AES256_GCM, registry)
    data = codec.serialize_encrypted(handle, master_aead, b"context")
    with pytest.raises(DecryptionFailedError):
        codec.parse_encrypted(data, master_aead, b"other")


def test_encrypted_metadata_is_authenticated(registry, codec, master_aead):
    handle = KeysetHandle.generate_new(templates.AES256_GCM, registry)
    data = codec.serialize_encrypted(handle, master_aead)

    wrapper = json.loads(data)
    wrapper["keysetInfo"]["keyInfo"][0]["status"] = KeyStatus.DISABLED.value
    with pytest.raises(DecryptionFailedError):
        codec.parse_encrypted(json.dumps(wrapper).encode(), master_aead)

    wrapper = json.loads(data)
    wrapper["masterKeyUri"] = "local-kms://elsewhere"
    with pytest.raises(DecryptionFailedError):
        codec.parse_encrypted(json.dumps(wrapper).encode(), master_aead)


def test_encrypted_under_other_master_key(registry, codec, master_aead):
    uri = master_aead.key_uri
    other = LocalKmsClient(uri, SecureKey.generate()).get_aead(uri)
    data = codec.serialize_encrypted(KeysetHandle.generate_new(templates.AES256_GCM, registry), master_aead)
    with pytest.raises(DecryptionFailedError):
        codec.parse_encrypted(data, other)


@pytest.mark.parametrize(
    "error, transient",
    [(ConnectionError("reset"), True), (TimeoutError("slow"), True), (RuntimeError("quota"), False)],
)
def test_kms_failures_are_not_retried(registry, codec, master_aead, error, transient):
    handle = KeysetHandle.generate_new(templates.HMAC_SHA256_128BITTAG, registry)
    with pytest.raises(BackendFailureError) as excinfo:
        codec.serialize_encrypted(handle, UnreachableAead(error))
    assert excinfo.value.transient is transient
    assert excinfo.value.__cause__ is error

    data = codec.serialize_encrypted(handle, master_aead)
    with pytest.raises(BackendFailureError) as excinfo:
        codec.parse_encrypted(data, UnreachableAead(error))
    assert excinfo.value.transient is transient


def test_read_keyset_info_needs_no_key(registry, codec, master_aead):
    handle = KeysetHandle.generate_new(templates.HMAC_SHA256_128BITTAG, registry)
    data = codec.serialize_encrypted(handle, master_aead)
    info = codec.read_keyset_info(data)
    assert info.primary_key_id == handle.primary().key_id
    with pytest.raises(SerializationError):
        codec.read_keyset_info(b"{}")


def test_module_level_codec():
    from keyset_agility import codec as codec_module

    handle = KeysetHandle.generate_new(templates.HMAC_SHA256_128BITTAG)
    tag = handle.primitive(Mac).compute_mac(b"m")
    parsed = codec_module.parse(codec_module.serialize(handle, TOKEN), TOKEN)
    parsed.primitive(Mac).verify_mac(tag, b"m")
