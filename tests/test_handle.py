import threading

import pytest

from keyset_agility import (
    Aead,
    InsecureSecretKeyAccess,
    InvalidKeyError,
    InvalidKeysetError,
    Keyset,
    KeysetHandle,
    KeyStatus,
    NoPrimaryKeyError,
    OutputPrefixKind,
    SecretKeyAccessDeniedError,
    UnknownKeyTypeError,
    templates,
)
from keyset_agility.handle import require_secret_access
from keyset_agility.handlers import AesGcmKeyHandler, Ed25519PrivateKeyHandler
from keyset_agility.key_types import AesGcmKey, Ed25519PublicKey
from keyset_agility.templates import KeyTemplate


def test_insecure_access_token_is_unforgeable():
    assert InsecureSecretKeyAccess.get() is InsecureSecretKeyAccess.get()
    with pytest.raises(TypeError):
        InsecureSecretKeyAccess()


def test_generate_new(registry):
    handle = KeysetHandle.generate_new(templates.AES256_GCM, registry)
    assert len(handle) == 1
    primary = handle.primary()
    assert primary.status is KeyStatus.ENABLED
    assert primary.output_prefix_kind is OutputPrefixKind.TINK
    assert handle.keyset_info().primary_key_id == primary.key_id


def test_generate_new_unknown_type(registry):
    with pytest.raises(UnknownKeyTypeError):
        KeysetHandle.generate_new(KeyTemplate("type.example.com/Nope"), registry)


def test_secret_material_requires_token(registry):
    handle = KeysetHandle.generate_new(templates.HMAC_SHA256_256BITTAG, registry)
    assert handle.has_secret()
    with pytest.raises(SecretKeyAccessDeniedError):
        handle.keyset()
    with pytest.raises(SecretKeyAccessDeniedError):
        handle.keyset(access=object())
    assert len(handle.keyset(InsecureSecretKeyAccess.get())) == 1


def test_public_keyset_needs_no_token(registry):
    public = KeysetHandle.generate_new(templates.ED25519, registry).public_keyset_handle()
    keyset = public.keyset()
    assert keyset.primary.type_url == Ed25519PublicKey.TYPE_URL


def test_add_key_material_requires_token_for_secrets(registry):
    source = KeysetHandle.generate_new(templates.AES128_GCM, registry)
    material = source.keyset(InsecureSecretKeyAccess.get()).primary.key_material

    handle = KeysetHandle(Keyset(), registry)
    with pytest.raises(SecretKeyAccessDeniedError):
        handle.add_key_material(material, OutputPrefixKind.TINK)
    key_id = handle.add_key_material(
        material, OutputPrefixKind.RAW, access=InsecureSecretKeyAccess.get()
    )
    assert handle.keyset_info().key_info[0].key_id == key_id


def test_add_key_explicit_id(registry):
    handle = KeysetHandle.generate_new(templates.AES256_GCM, registry)
    assert handle.add_key(templates.AES256_GCM, key_id=7) == 7
    with pytest.raises(InvalidKeyError):
        handle.add_key(templates.AES256_GCM, key_id=7)
    assert len(handle) == 2


def test_add_disabled_key(registry):
    handle = KeysetHandle.generate_new(templates.AES256_GCM, registry)
    key_id = handle.add_key(templates.AES256_GCM, status=KeyStatus.DISABLED)
    with pytest.raises(InvalidKeyError):
        handle.set_primary(key_id)


def test_failed_mutation_leaves_handle_unchanged(registry):
    handle = KeysetHandle.generate_new(templates.AES256_GCM, registry)
    before = handle.keyset_info()
    with pytest.raises(InvalidKeyError):
        handle.set_status(12345, KeyStatus.DISABLED)
    with pytest.raises(InvalidKeyError):
        handle.add_key(templates.aes_gcm(20))
    assert handle.keyset_info() == before


def test_destroy(registry):
    handle = KeysetHandle.generate_new(templates.AES256_GCM, registry)
    first = handle.primary().key_id
    handle.rotate(templates.AES256_GCM)
    handle.destroy(first)

    entry = handle.keyset(InsecureSecretKeyAccess.get()).find(first)
    assert entry.status is KeyStatus.DESTROYED
    assert entry.key_material is None
    with pytest.raises(InvalidKeyError):
        handle.enable(first)
    with pytest.raises(InvalidKeyError):
        handle.set_primary(first)


def test_destroying_primary_leaves_no_primary(registry):
    handle = KeysetHandle.generate_new(templates.AES256_GCM, registry)
    handle.destroy(handle.primary().key_id)
    with pytest.raises(NoPrimaryKeyError):
        handle.primary()
    with pytest.raises(InvalidKeysetError):
        handle.primitive(Aead)


def test_from_keyset_validates():
    with pytest.raises(InvalidKeysetError):
        KeysetHandle.from_keyset(Keyset())


def test_public_keyset_handle_preserves_metadata(registry):
    handle = KeysetHandle.generate_new(templates.ECDSA_P256, registry)
    raw_id = handle.add_key(templates.ED25519_RAW)
    disabled_id = handle.add_key(templates.ED25519)
    handle.disable(disabled_id)
    destroyed_id = handle.add_key(templates.ED25519)
    handle.destroy(destroyed_id)

    public = handle.public_keyset_handle()
    assert not public.has_secret()
    assert public.keyset_info().primary_key_id == handle.primary().key_id
    statuses = {k.key_id: (k.status, k.output_prefix_kind) for k in public.keyset_info().key_info}
    assert statuses[raw_id] == (KeyStatus.ENABLED, OutputPrefixKind.RAW)
    assert statuses[disabled_id] == (KeyStatus.DISABLED, OutputPrefixKind.TINK)
    assert statuses[destroyed_id] == (KeyStatus.DESTROYED, OutputPrefixKind.TINK)


def test_public_keyset_handle_rejects_symmetric_keys(registry):
    handle = KeysetHandle.generate_new(templates.ED25519, registry)
    handle.add_key(templates.AES256_GCM)
    with pytest.raises(InvalidKeyError):
        handle.public_keyset_handle()


def test_concurrent_rotation(registry):
    handle = KeysetHandle.generate_new(templates.AES128_GCM, registry)
    aead = handle.primitive(Aead)
    ciphertext = aead.encrypt(b"stable", b"")
    errors = []

    def rotate():
        try:
            for _ in range(10):
                handle.rotate(templates.AES128_GCM)
                assert handle.primitive(Aead).decrypt(ciphertext, b"") == b"stable"
        except Exception as e:  # surfaced below
            errors.append(e)

    threads = [threading.Thread(target=rotate) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert len(handle) == 81
    assert len(handle.keyset(InsecureSecretKeyAccess.get()).key_ids) == 81
    handle.keyset(InsecureSecretKeyAccess.get()).validate()


def test_private_handler_public_key():
    handler = Ed25519PrivateKeyHandler()
    key = handler.new_key({})
    assert handler.public_key(key).public_key == key.public_key


def test_access_token_shared_across_threads():
    seen = []
    threads = [
        threading.Thread(target=lambda: seen.append(InsecureSecretKeyAccess.get()))
        for _ in range(16)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(seen) == 16
    assert all(token is seen[0] for token in seen)
    require_secret_access(seen[0])


def test_keys_resolve_under_the_registered_type(registry):
    registry.register("custom/aes", AesGcmKeyHandler())
    handle = KeysetHandle.generate_new(KeyTemplate("custom/aes", {"keySize": 16}), registry)
    entry = handle.keyset(InsecureSecretKeyAccess.get()).primary
    assert entry.type_url == "custom/aes"
    assert handle.keyset_info().key_info[0].type_url == "custom/aes"

    aead = handle.primitive(Aead)
    assert aead.decrypt(aead.encrypt(b"payload", b"ad"), b"ad") == b"payload"

    rotated_id = handle.rotate(KeyTemplate("custom/aes", {"keySize": 32}))
    assert handle.keyset(InsecureSecretKeyAccess.get()).find(rotated_id).type_url == "custom/aes"


def test_imported_material_recorded_under_given_type(registry):
    registry.register("custom/aes", AesGcmKeyHandler())
    material = AesGcmKeyHandler().new_key({"keySize": 16})
    assert isinstance(material, AesGcmKey)
    handle = KeysetHandle(Keyset(), registry)
    key_id = handle.add_key_material(
        material,
        OutputPrefixKind.TINK,
        access=InsecureSecretKeyAccess.get(),
        type_url="custom/aes",
    )
    handle.set_primary(key_id)

    assert handle.keyset(InsecureSecretKeyAccess.get()).find(key_id).type_url == "custom/aes"
    aead = handle.primitive(Aead)
    assert aead.decrypt(aead.encrypt(b"x", b""), b"") == b"x"
