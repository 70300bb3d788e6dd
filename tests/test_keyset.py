from dataclasses import replace

import pytest

from keyset_agility import (
    InvalidKeyError,
    InvalidKeysetError,
    KeyEntry,
    Keyset,
    KeyStatus,
    OutputPrefixKind,
    SecureKey,
    output_prefix,
)
from keyset_agility.key_types import AesGcmKey
from keyset_agility.keyset import new_key_id


def _material() -> AesGcmKey:
    return AesGcmKey(key_value=SecureKey(b"\x07" * 16))


def _entry(key_id: int, status: KeyStatus = KeyStatus.ENABLED, primary: bool = False) -> KeyEntry:
    return KeyEntry(
        key_id=key_id,
        type_url=AesGcmKey.TYPE_URL,
        status=status,
        output_prefix_kind=OutputPrefixKind.TINK,
        key_material=None if status is KeyStatus.DESTROYED else _material(),
        is_primary=primary,
    )


def test_output_prefixes():
    assert output_prefix(42, OutputPrefixKind.TINK) == b"\x01\x00\x00\x00\x2a"
    assert output_prefix(42, OutputPrefixKind.LEGACY) == b"\x00\x00\x00\x00\x2a"
    assert output_prefix(42, OutputPrefixKind.CRUNCHY) == b"\x00\x00\x00\x00\x2a"
    assert output_prefix(42, OutputPrefixKind.RAW) == b""
    assert output_prefix(0xFFFFFFFF, OutputPrefixKind.TINK) == b"\x01\xff\xff\xff\xff"


def test_validate_accepts_well_formed_keysets():
    Keyset(entries=(_entry(1, primary=True), _entry(2))).validate()
    Keyset(entries=(_entry(1), _entry(2, KeyStatus.DISABLED))).validate()
    Keyset(entries=(_entry(1, primary=True), _entry(2, KeyStatus.DESTROYED))).validate()


@pytest.mark.parametrize(
    "entries",
    [
        (),
        (_entry(1), _entry(1)),
        (_entry(1, primary=True), _entry(2, primary=True)),
        (_entry(1, KeyStatus.DISABLED, primary=True),),
        (_entry(-1),),
        (_entry(1 << 32),),
        (replace(_entry(1), status=KeyStatus.DESTROYED),),
        (replace(_entry(1), key_material=None),),
    ],
    ids=[
        "empty",
        "duplicate-id",
        "two-primaries",
        "disabled-primary",
        "negative-id",
        "id-too-large",
        "destroyed-with-material",
        "enabled-without-material",
    ],
)
def test_validate_rejects(entries):
    with pytest.raises(InvalidKeysetError):
        Keyset(entries=entries).validate()


def test_mutations_return_new_keysets():
    original = Keyset(entries=(_entry(1, primary=True),))
    added = original.with_key(_material(), OutputPrefixKind.RAW, key_id=2)
    assert len(original) == 1
    assert len(added) == 2
    assert added.find(2).output_prefix_kind is OutputPrefixKind.RAW
    assert not added.find(2).is_primary

    promoted = added.with_primary(2)
    assert promoted.primary.key_id == 2
    assert added.primary.key_id == 1


def test_with_key_rejects_taken_or_invalid_ids():
    keyset = Keyset(entries=(_entry(7, primary=True),))
    with pytest.raises(InvalidKeyError):
        keyset.with_key(_material(), OutputPrefixKind.TINK, key_id=7)
    with pytest.raises(InvalidKeyError):
        keyset.with_key(_material(), OutputPrefixKind.TINK, key_id=1 << 32)
    with pytest.raises(InvalidKeyError):
        keyset.with_key(_material(), OutputPrefixKind.TINK, status=KeyStatus.DESTROYED)


def test_only_enabled_keys_become_primary():
    keyset = Keyset(entries=(_entry(1, primary=True), _entry(2, KeyStatus.DISABLED)))
    with pytest.raises(InvalidKeyError):
        keyset.with_primary(2)
    with pytest.raises(InvalidKeyError):
        keyset.with_primary(3)


def test_disabling_primary_clears_it():
    keyset = Keyset(entries=(_entry(1, primary=True), _entry(2)))
    disabled = keyset.with_status(1, KeyStatus.DISABLED)
    assert disabled.primary is None
    assert disabled.find(1).status is KeyStatus.DISABLED
    assert disabled.find(1).key_material is not None


def test_destroy_is_terminal_and_drops_material():
    keyset = Keyset(entries=(_entry(1, primary=True), _entry(2)))
    destroyed = keyset.with_status(2, KeyStatus.DESTROYED)
    entry = destroyed.find(2)
    assert entry.status is KeyStatus.DESTROYED
    assert entry.key_material is None
    assert entry.type_url == AesGcmKey.TYPE_URL

    assert destroyed.with_status(2, KeyStatus.DESTROYED) is destroyed
    with pytest.raises(InvalidKeyError):
        destroyed.with_status(2, KeyStatus.ENABLED)
    with pytest.raises(InvalidKeyError):
        destroyed.with_key(_material(), OutputPrefixKind.TINK, key_id=2)


def test_info_carries_no_material():
    keyset = Keyset(entries=(_entry(5, primary=True), _entry(6, KeyStatus.DESTROYED)))
    info = keyset.info()
    assert info.primary_key_id == 5
    assert [k.key_id for k in info.key_info] == [5, 6]
    assert info.to_dict() == {
        "primaryKeyId": 5,
        "keyInfo": [
            {"keyId": 5, "typeUrl": AesGcmKey.TYPE_URL, "status": "ENABLED", "outputPrefixType": "TINK"},
            {"keyId": 6, "typeUrl": AesGcmKey.TYPE_URL, "status": "DESTROYED", "outputPrefixType": "TINK"},
        ],
    }


def test_new_key_id_resamples_on_collision(monkeypatch):
    draws = iter([7, 7, 9])
    monkeypatch.setattr("keyset_agility.keyset.secrets.randbits", lambda bits: next(draws))
    assert new_key_id({7}) == 9


def test_status_and_prefix_parsing():
    assert KeyStatus.from_str("disabled") is KeyStatus.DISABLED
    assert OutputPrefixKind.from_str("CRUNCHY") is OutputPrefixKind.CRUNCHY
    with pytest.raises(InvalidKeyError):
        KeyStatus.from_str("GONE")
    with pytest.raises(InvalidKeyError):
        OutputPrefixKind.from_str(None)
