"""
Envelope keyset codec.

Serializes keyset handles to JSON bytes and back, optionally encrypted end
to end under a master Aead (typically a KMS-backed one).

Plaintext layout::

    {"primaryKeyId": 42,
     "key": [{"keyId": 42, "status": "ENABLED", "outputPrefixType": "TINK",
              "keyData": {"typeUrl": "...", "keyMaterialType": "SYMMETRIC",
                          "value": {...} | null}}]}

Encrypted layout::

    {"encryptedKeyset": "<base64>", "masterKeyUri": "...", "keysetInfo": {...}}

The master Aead's associated data is
``len(header) (4 bytes, big-endian) || header || associated_data`` where
header is the canonical JSON of ``masterKeyUri`` and ``keysetInfo``; editing
the wrapper metadata or passing a different associated data breaks
decryption.
"""

from __future__ import annotations

import json
import logging
import struct
from typing import Any, Dict, List, Optional

from .errors import (
    CryptoError,
    DecryptionFailedError,
    InvalidKeyError,
    InvalidKeysetError,
    SecretKeyAccessDeniedError,
    SerializationError,
)
from .handle import InsecureSecretKeyAccess, KeysetHandle, require_secret_access
from .key_types import KeyMaterialType, b64d, b64e
from .keyset import KeyEntry, Keyset, KeysetInfo, KeyStatus, OutputPrefixKind
from .kms import call_remote
from .primitives import Aead
from .registry import KeyRegistry, resolve

logger = logging.getLogger(__name__)


def _canonical(data: Any) -> bytes:
    return json.dumps(data, sort_keys=True, separators=(",", ":")).encode("utf-8")


def _load_json(data: bytes) -> Dict[str, Any]:
    try:
        decoded = json.loads(data.decode("utf-8") if isinstance(data, (bytes, bytearray)) else data)
    except (UnicodeDecodeError, ValueError) as e:
        raise SerializationError(f"Invalid keyset encoding: {e}")
    if not isinstance(decoded, dict):
        raise SerializationError("Invalid keyset encoding: expected a JSON object")
    return decoded


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _encryption_aad(master_key_uri: str, info: Dict[str, Any], associated_data: bytes) -> bytes:
    header = _canonical({"masterKeyUri": master_key_uri, "keysetInfo": info})
    return struct.pack(">I", len(header)) + header + associated_data


class EnvelopeKeysetCodec:
    """Serialize and parse keyset handles, in the clear or under a master key."""

    def __init__(self, registry: Optional[KeyRegistry] = None) -> None:
        self._registry = registry

    @property
    def registry(self) -> KeyRegistry:
        return resolve(self._registry)

    # -------------------------------------------------------------------------
    # Plaintext
    # -------------------------------------------------------------------------

    def serialize(
        self, handle: KeysetHandle, access: Optional[InsecureSecretKeyAccess] = None
    ) -> bytes:
        """
        Serialize a handle.

        Args:
            handle: Handle to serialize
            access: Required when the keyset holds secret material

        Raises:
            InvalidKeysetError: If the keyset fails validation
            SecretKeyAccessDeniedError: If secret material is present and
                ``access`` is not the InsecureSecretKeyAccess token
        """
        keyset = handle.keyset(access)
        keyset.validate()
        return _canonical(self._keyset_to_dict(keyset))

    def serialize_without_secret(self, handle: KeysetHandle) -> bytes:
        """Serialize a keyset that holds only public or remote material."""
        return self.serialize(handle, access=None)

    def parse(
        self, data: bytes, access: Optional[InsecureSecretKeyAccess] = None
    ) -> KeysetHandle:
        """
        Parse a serialized keyset.

        Raises:
            SerializationError: If the encoding is malformed
            InvalidKeysetError / InvalidKeyError: If the content is invalid
            UnknownKeyTypeError: If a key type is not registered
            SecretKeyAccessDeniedError: If secret material is present and
                ``access`` is not the InsecureSecretKeyAccess token
        """
        keyset = self._keyset_from_dict(_load_json(data))
        if any(entry.has_secret for entry in keyset):
            require_secret_access(access)
        return KeysetHandle.from_keyset(keyset, self._registry)

    def parse_without_secret(self, data: bytes) -> KeysetHandle:
        """
        Parse a keyset expected to contain no secret material.

        The declared material type of every key is checked before any key is
        decoded.

        Raises:
            SecretKeyAccessDeniedError: If any key carries secret material
        """
        decoded = _load_json(data)
        for key in self._key_list(decoded):
            key_data = key.get("keyData") if isinstance(key, dict) else None
            if not isinstance(key_data, dict):
                continue
            declared = key_data.get("keyMaterialType")
            if declared is not None and KeyMaterialType.from_str(declared).has_secret:
                raise SecretKeyAccessDeniedError("Keyset contains secret key material")
        keyset = self._keyset_from_dict(decoded)
        if any(entry.has_secret for entry in keyset):
            raise SecretKeyAccessDeniedError("Keyset contains secret key material")
        return KeysetHandle.from_keyset(keyset, self._registry)

    # -------------------------------------------------------------------------
    # Encrypted
    # -------------------------------------------------------------------------

    def serialize_encrypted(
        self,
        handle: KeysetHandle,
        master_aead: Aead,
        associated_data: bytes = b"",
        master_key_uri: Optional[str] = None,
    ) -> bytes:
        """
        Serialize and encrypt a handle under ``master_aead``.

        Args:
            handle: Handle to serialize
            master_aead: Aead protecting the keyset (may call a KMS)
            associated_data: Context bound into the encryption
            master_key_uri: Identifies the master key; defaults to the
                Aead's ``key_uri`` attribute when it has one

        Raises:
            InvalidKeysetError: If the keyset fails validation
            BackendFailureError: If the master Aead fails (``transient`` set
                for network errors)
        """
        keyset = handle.keyset(InsecureSecretKeyAccess.get())
        keyset.validate()
        uri = master_key_uri if master_key_uri is not None else getattr(master_aead, "key_uri", None) or ""
        info = keyset.info().to_dict()
        plaintext = _canonical(self._keyset_to_dict(keyset))
        ciphertext = call_remote(
            master_aead.encrypt, plaintext, _encryption_aad(uri, info, associated_data)
        )
        logger.info("Serialized encrypted keyset under master key %s", uri or "<unnamed>")
        return _canonical({
            "encryptedKeyset": b64e(ciphertext),
            "masterKeyUri": uri,
            "keysetInfo": info,
        })

    def parse_encrypted(
        self,
        data: bytes,
        master_aead: Aead,
        associated_data: bytes = b"",
    ) -> KeysetHandle:
        """
        Decrypt and parse a keyset produced by ``serialize_encrypted``.

        Nothing is retried: a transient KMS failure surfaces as
        BackendFailureError with ``transient`` set and the caller decides.

        Raises:
            DecryptionFailedError: If the master key rejects the ciphertext
            BackendFailureError: If the master Aead fails for another reason
            SerializationError: If the wrapper is malformed
        """
        wrapper = _load_json(data)
        try:
            ciphertext = b64d(wrapper["encryptedKeyset"])
            uri = str(wrapper.get("masterKeyUri", ""))
            info = wrapper["keysetInfo"]
        except (KeyError, InvalidKeyError) as e:
            raise SerializationError(f"Invalid encrypted keyset: {e}")

        try:
            plaintext = call_remote(
                master_aead.decrypt, ciphertext, _encryption_aad(uri, info, associated_data)
            )
        except CryptoError:
            logger.warning("Encrypted keyset rejected by master key %s", uri or "<unnamed>")
            raise DecryptionFailedError() from None
        return self.parse(plaintext, InsecureSecretKeyAccess.get())

    def read_keyset_info(self, data: bytes) -> KeysetInfo:
        """Metadata of an encrypted keyset, read without decrypting it."""
        wrapper = _load_json(data)
        if "keysetInfo" not in wrapper:
            raise SerializationError("Invalid encrypted keyset: missing keysetInfo")
        return KeysetInfo.from_dict(wrapper["keysetInfo"])

    # -------------------------------------------------------------------------
    # Dict form
    # -------------------------------------------------------------------------

    def _keyset_to_dict(self, keyset: Keyset) -> Dict[str, Any]:
        primary = keyset.primary
        registry = self.registry
        keys: List[Dict[str, Any]] = []
        for entry in keyset:
            material_type = registry.lookup(entry.type_url).material_type
            keys.append({
                "keyId": entry.key_id,
                "status": entry.status.value,
                "outputPrefixType": entry.output_prefix_kind.value,
                "keyData": {
                    "typeUrl": entry.type_url,
                    "keyMaterialType": material_type.value,
                    "value": entry.key_material.to_dict() if entry.key_material else None,
                },
            })
        return {"primaryKeyId": primary.key_id if primary else None, "key": keys}

    @staticmethod
    def _key_list(decoded: Dict[str, Any]) -> List[Any]:
        keys = decoded.get("key")
        if not isinstance(keys, list):
            raise SerializationError("Invalid keyset encoding: missing key list")
        return keys

    def _keyset_from_dict(self, decoded: Dict[str, Any]) -> Keyset:
        registry = self.registry
        primary_id = decoded.get("primaryKeyId")
        if primary_id is not None and not _is_int(primary_id):
            raise SerializationError("Invalid keyset encoding: primaryKeyId must be an integer")
        entries: List[KeyEntry] = []
        for key in self._key_list(decoded):
            if not isinstance(key, dict) or not isinstance(key.get("keyData"), dict):
                raise SerializationError("Invalid key entry: expected an object with keyData")
            try:
                key_id = key["keyId"]
                key_data = key["keyData"]
                type_url = key_data["typeUrl"]
                status = KeyStatus.from_str(key["status"])
                kind = OutputPrefixKind.from_str(key["outputPrefixType"])
                value = key_data.get("value")
            except (KeyError, TypeError) as e:
                raise SerializationError(f"Invalid key entry: {e}")
            if not _is_int(key_id):
                raise SerializationError("Invalid key entry: keyId must be an integer")
            if not isinstance(type_url, str):
                raise SerializationError("Invalid key entry: typeUrl must be a string")

            handler = registry.lookup(type_url)
            if status is KeyStatus.DESTROYED:
                material = None
            elif not isinstance(value, dict):
                raise InvalidKeysetError(f"Key {key_id} has no material")
            else:
                material = handler.parse_key(value)
            entries.append(KeyEntry(
                key_id=key_id,
                type_url=type_url,
                status=status,
                output_prefix_kind=kind,
                key_material=material,
                is_primary=primary_id is not None and key_id == primary_id,
            ))
        keyset = Keyset(entries=tuple(entries))
        keyset.validate()
        if primary_id is not None and keyset.primary is None:
            raise InvalidKeysetError(f"Primary key {primary_id} not found in keyset")
        return keyset


_default_codec = EnvelopeKeysetCodec()

serialize = _default_codec.serialize
serialize_without_secret = _default_codec.serialize_without_secret
serialize_encrypted = _default_codec.serialize_encrypted
parse = _default_codec.parse
parse_without_secret = _default_codec.parse_without_secret
parse_encrypted = _default_codec.parse_encrypted
read_keyset_info = _default_codec.read_keyset_info
