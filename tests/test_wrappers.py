import pytest

from keyset_agility import (
    Aead,
    CryptographyBackend,
    DecryptionFailedError,
    HybridDecrypt,
    HybridEncrypt,
    InsecureSecretKeyAccess,
    Keyset,
    KeysetHandle,
    Mac,
    NoPrimaryKeyError,
    OutputPrefixKind,
    PrimitiveSet,
    PublicKeySign,
    PublicKeyVerify,
    UnsupportedPrimitiveError,
    VerificationFailedError,
    build_primitive,
    templates,
)
from keyset_agility.primitives import BackendMac, BackendSign


def _flip(data: bytes, index: int) -> bytes:
    return data[:index] + bytes([data[index] ^ 0x01]) + data[index + 1:]


def _material(handle: KeysetHandle, key_id: int):
    return handle.keyset(InsecureSecretKeyAccess.get()).find(key_id).key_material


def test_tink_key_id_42(registry):
    handle = KeysetHandle(Keyset(), registry)
    handle.add_key(templates.AES256_GCM, key_id=42)
    handle.set_primary(42)
    aead = build_primitive(handle, Aead)

    ciphertext = aead.encrypt(b"hello", b"ctx")
    assert ciphertext[:5] == b"\x01\x00\x00\x00\x2a"
    assert aead.decrypt(ciphertext, b"ctx") == b"hello"
    with pytest.raises(DecryptionFailedError):
        aead.decrypt(ciphertext, b"wrong")


@pytest.mark.parametrize("template", [templates.AES128_GCM, templates.AES256_CTR_HMAC_SHA256])
def test_single_byte_change_fails_generically(registry, template):
    aead = KeysetHandle.generate_new(template, registry).primitive(Aead)
    ciphertext = aead.encrypt(b"payload", b"aad")
    for index in range(len(ciphertext)):
        with pytest.raises(DecryptionFailedError) as excinfo:
            aead.decrypt(_flip(ciphertext, index), b"aad")
        assert str(excinfo.value) == "Decryption failed"


def test_short_inputs_fail(registry):
    aead = KeysetHandle.generate_new(templates.AES256_GCM, registry).primitive(Aead)
    for data in (b"", b"\x01", b"\x01\x00\x00\x00"):
        with pytest.raises(DecryptionFailedError):
            aead.decrypt(data, b"")


def test_rotation_keeps_old_ciphertexts(registry):
    handle = KeysetHandle.generate_new(templates.AES256_GCM, registry)
    old_id = handle.primary().key_id
    new_id = handle.add_key(templates.AES256_GCM)
    before = handle.primitive(Aead).encrypt(b"before", b"")

    handle.set_primary(new_id)
    aead = handle.primitive(Aead)
    after = aead.encrypt(b"after", b"")

    assert before[1:5] == old_id.to_bytes(4, "big")
    assert after[1:5] == new_id.to_bytes(4, "big")
    assert aead.decrypt(before, b"") == b"before"
    assert aead.decrypt(after, b"") == b"after"


def test_raw_key_among_prefixed_keys(registry):
    handle = KeysetHandle.generate_new(templates.AES256_GCM_RAW, registry)
    raw_ciphertext = handle.primitive(Aead).encrypt(b"raw", b"ad")

    handle.add_key(templates.AES128_GCM.with_prefix(OutputPrefixKind.LEGACY))
    handle.add_key(templates.AES256_GCM)
    handle.rotate(templates.AES128_GCM)
    aead = handle.primitive(Aead)

    assert aead.decrypt(raw_ciphertext, b"ad") == b"raw"
    assert aead.encrypt(b"x", b"")[0:1] == b"\x01"


def test_legacy_and_crunchy_share_aead_framing(registry):
    handle = KeysetHandle.generate_new(templates.AES256_GCM.with_prefix(OutputPrefixKind.LEGACY), registry)
    key_id = handle.primary().key_id
    legacy_ciphertext = handle.primitive(Aead).encrypt(b"legacy", b"")
    assert legacy_ciphertext[:5] == b"\x00" + key_id.to_bytes(4, "big")

    crunchy = KeysetHandle(Keyset(), registry)
    crunchy.add_key_material(
        _material(handle, key_id),
        OutputPrefixKind.CRUNCHY,
        key_id=key_id,
        access=InsecureSecretKeyAccess.get(),
    )
    crunchy.set_primary(key_id)
    crunchy_aead = crunchy.primitive(Aead)
    crunchy_ciphertext = crunchy_aead.encrypt(b"crunchy", b"")

    assert crunchy_ciphertext[:5] == legacy_ciphertext[:5]
    assert crunchy_aead.decrypt(legacy_ciphertext, b"") == b"legacy"
    assert handle.primitive(Aead).decrypt(crunchy_ciphertext, b"") == b"crunchy"


def test_destroyed_key_stops_decrypting(registry):
    handle = KeysetHandle.generate_new(templates.AES256_GCM, registry)
    old_id = handle.primary().key_id
    old_aead = handle.primitive(Aead)
    ciphertext = old_aead.encrypt(b"secret", b"")

    handle.rotate(templates.AES256_GCM)
    handle.destroy(old_id)

    with pytest.raises(DecryptionFailedError):
        handle.primitive(Aead).decrypt(ciphertext, b"")
    # Primitives already built keep the keyset they were built from
    assert old_aead.decrypt(ciphertext, b"") == b"secret"


def test_disabled_keys_are_not_loaded(registry):
    handle = KeysetHandle.generate_new(templates.AES256_GCM, registry)
    old_id = handle.primary().key_id
    ciphertext = handle.primitive(Aead).encrypt(b"data", b"")
    handle.rotate(templates.AES256_GCM)

    handle.disable(old_id)
    with pytest.raises(DecryptionFailedError):
        handle.primitive(Aead).decrypt(ciphertext, b"")

    handle.enable(old_id)
    assert handle.primitive(Aead).decrypt(ciphertext, b"") == b"data"


def test_no_primary_key(registry):
    handle = KeysetHandle.generate_new(templates.AES256_GCM, registry)
    first = handle.primary().key_id
    handle.add_key(templates.AES256_GCM)
    ciphertext = handle.primitive(Aead).encrypt(b"data", b"")

    handle.disable(first)
    handle.enable(first)
    aead = handle.primitive(Aead)
    with pytest.raises(NoPrimaryKeyError):
        aead.encrypt(b"data", b"")
    assert aead.decrypt(ciphertext, b"") == b"data"


def test_primitive_set_buckets(registry):
    handle = KeysetHandle.generate_new(templates.AES256_GCM, registry)
    raw_id = handle.add_key(templates.AES256_GCM_RAW)
    keyset = handle.keyset(InsecureSecretKeyAccess.get())

    primitive_set = PrimitiveSet.build(keyset, Aead, registry)
    assert primitive_set.require_primary().key_id == handle.primary().key_id
    assert [e.key_id for e in primitive_set.raw_entries()] == [raw_id]
    assert len(list(primitive_set.all())) == 2
    assert primitive_set.entries_for(handle.primary().output_prefix)[0].is_primary


def test_build_aborts_on_unsupported_key(registry):
    handle = KeysetHandle.generate_new(templates.AES256_GCM, registry)
    handle.add_key(templates.HMAC_SHA256_128BITTAG)
    with pytest.raises(UnsupportedPrimitiveError):
        handle.primitive(Aead)


def test_mac_prefix_kinds(registry):
    handle = KeysetHandle.generate_new(templates.HMAC_SHA256_128BITTAG, registry)
    tink_tag = handle.primitive(Mac).compute_mac(b"data")
    assert len(tink_tag) == 5 + 16

    legacy_id = handle.add_key(templates.HMAC_SHA256_128BITTAG.with_prefix(OutputPrefixKind.LEGACY))
    crunchy_id = handle.add_key(templates.HMAC_SHA256_128BITTAG.with_prefix(OutputPrefixKind.CRUNCHY))
    backend = CryptographyBackend()

    handle.set_primary(legacy_id)
    legacy_tag = handle.primitive(Mac).compute_mac(b"data")
    legacy_mac = BackendMac(backend, _material(handle, legacy_id))
    assert legacy_tag[:5] == b"\x00" + legacy_id.to_bytes(4, "big")
    assert legacy_tag[5:] == legacy_mac.compute_mac(b"data\x00")

    handle.set_primary(crunchy_id)
    crunchy_tag = handle.primitive(Mac).compute_mac(b"data")
    crunchy_mac = BackendMac(backend, _material(handle, crunchy_id))
    assert crunchy_tag[5:] == crunchy_mac.compute_mac(b"data")

    mac = handle.primitive(Mac)
    for tag in (tink_tag, legacy_tag, crunchy_tag):
        mac.verify_mac(tag, b"data")
        with pytest.raises(VerificationFailedError):
            mac.verify_mac(tag, b"other")
        with pytest.raises(VerificationFailedError):
            mac.verify_mac(_flip(tag, len(tag) - 1), b"data")


def test_legacy_signature_marker(registry):
    handle = KeysetHandle.generate_new(templates.ED25519.with_prefix(OutputPrefixKind.LEGACY), registry)
    key_id = handle.primary().key_id
    signature = handle.primitive(PublicKeySign).sign(b"message")

    direct = BackendSign(CryptographyBackend(), _material(handle, key_id)).sign(b"message\x00")
    # Ed25519 is deterministic
    assert signature[5:] == direct

    verify = handle.public_keyset_handle().primitive(PublicKeyVerify)
    verify.verify(signature, b"message")
    with pytest.raises(VerificationFailedError):
        verify.verify(signature, b"message\x00")


@pytest.mark.parametrize("template", [templates.ED25519, templates.ECDSA_P256, templates.ECDSA_P384])
def test_signatures(registry, template):
    private = KeysetHandle.generate_new(template, registry)
    signature = private.primitive(PublicKeySign).sign(b"message")

    public = private.public_keyset_handle()
    verify = public.primitive(PublicKeyVerify)
    verify.verify(signature, b"message")
    private.primitive(PublicKeyVerify).verify(signature, b"message")

    with pytest.raises(VerificationFailedError):
        verify.verify(signature, b"tampered")
    with pytest.raises(VerificationFailedError):
        verify.verify(_flip(signature, len(signature) - 1), b"message")
    with pytest.raises(UnsupportedPrimitiveError):
        public.primitive(PublicKeySign)


@pytest.mark.parametrize(
    "template", [templates.ML_DSA_44, templates.ML_DSA_65, templates.ML_DSA_87]
)
def test_ml_dsa_signatures(registry, template):
    private = KeysetHandle.generate_new(template, registry)
    signature = private.primitive(PublicKeySign).sign(b"message")

    public = private.public_keyset_handle()
    assert not public.has_secret()
    verify = public.primitive(PublicKeyVerify)
    verify.verify(signature, b"message")
    private.primitive(PublicKeyVerify).verify(signature, b"message")

    with pytest.raises(VerificationFailedError):
        verify.verify(signature, b"tampered")
    with pytest.raises(VerificationFailedError):
        verify.verify(_flip(signature, 10), b"message")
    with pytest.raises(VerificationFailedError):
        verify.verify(signature[:-1], b"message")
    with pytest.raises(UnsupportedPrimitiveError):
        public.primitive(PublicKeySign)


def test_rotation_from_ed25519_to_ml_dsa(registry):
    handle = KeysetHandle.generate_new(templates.ED25519, registry)
    classic = handle.primitive(PublicKeySign).sign(b"m")
    handle.rotate(templates.ML_DSA_65)
    post_quantum = handle.primitive(PublicKeySign).sign(b"m")

    verify = handle.public_keyset_handle().primitive(PublicKeyVerify)
    verify.verify(classic, b"m")
    verify.verify(post_quantum, b"m")
    with pytest.raises(VerificationFailedError):
        verify.verify(post_quantum, b"other")


def test_raw_signature_rotation(registry):
    handle = KeysetHandle.generate_new(templates.ED25519_RAW, registry)
    raw_signature = handle.primitive(PublicKeySign).sign(b"m")
    handle.rotate(templates.ECDSA_P256)

    verify = handle.public_keyset_handle().primitive(PublicKeyVerify)
    verify.verify(raw_signature, b"m")
    verify.verify(handle.primitive(PublicKeySign).sign(b"m"), b"m")


def test_hybrid_encryption(registry):
    private = KeysetHandle.generate_new(templates.X25519_HKDF_AES256_GCM, registry)
    public = private.public_keyset_handle()
    assert not public.has_secret()

    ciphertext = public.primitive(HybridEncrypt).encrypt(b"hybrid", b"context")
    decrypt = private.primitive(HybridDecrypt)
    assert decrypt.decrypt(ciphertext, b"context") == b"hybrid"
    with pytest.raises(DecryptionFailedError):
        decrypt.decrypt(ciphertext, b"other context")
    with pytest.raises(DecryptionFailedError):
        decrypt.decrypt(_flip(ciphertext, 10), b"context")
