"""
Low-level cryptographic transforms built on the ``cryptography`` package.

This module provides:
- SecureKey: Secure key wrapper with best-effort zeroization
- EncryptedData: Nonce and ciphertext pair in AEAD blob layout
- AesGcmCipher: AES-GCM encryption/decryption
- AesCtrHmacCipher: AES-CTR + HMAC encrypt-then-MAC
- HmacTagger: truncated HMAC tags
- Ed25519Signer / EcdsaSigner: signature helpers
- MlDsaSigner: ML-DSA post-quantum signatures (via ``dilithium-py``)
- X25519HybridCipher: X25519 + HKDF + AES-GCM hybrid encryption

Nothing here knows about keysets or output prefixes; errors raised by the
``cryptography`` package are left to the backend to translate.
"""

from __future__ import annotations

import secrets
import struct
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from cryptography.exceptions import InvalidSignature, InvalidTag
from cryptography.hazmat.primitives import constant_time, hashes
from cryptography.hazmat.primitives import hmac as crypto_hmac
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, x25519
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from dilithium_py.ml_dsa import ML_DSA_44, ML_DSA_65, ML_DSA_87

from .errors import InvalidKeyError

# Cryptographic constants
AES_128_KEY_SIZE: int = 16  # 128 bits
AES_256_KEY_SIZE: int = 32  # 256 bits
NONCE_SIZE: int = 12  # 96 bits (standard for AES-GCM)
TAG_SIZE: int = 16  # 128 bits (authentication tag)
AES_BLOCK_SIZE: int = 16
MIN_AES_CTR_IV_SIZE: int = 12
MIN_HMAC_KEY_SIZE: int = 16
MIN_HMAC_TAG_SIZE: int = 10
X25519_KEY_SIZE: int = 32
ED25519_KEY_SIZE: int = 32

HASHES: Dict[str, hashes.HashAlgorithm] = {
    "SHA1": hashes.SHA1(),
    "SHA224": hashes.SHA224(),
    "SHA256": hashes.SHA256(),
    "SHA384": hashes.SHA384(),
    "SHA512": hashes.SHA512(),
}

ML_DSA_SEED_SIZE: int = 32
ML_DSA_TR_SIZE: int = 64


@dataclass(frozen=True)
class MlDsaParameters:
    """FIPS 204 parameter set and its encoded sizes."""

    scheme: Any
    public_key_size: int
    private_key_size: int
    signature_size: int


ML_DSA_PARAMETER_SETS: Dict[str, MlDsaParameters] = {
    "ML_DSA_44": MlDsaParameters(ML_DSA_44, 1312, 2560, 2420),
    "ML_DSA_65": MlDsaParameters(ML_DSA_65, 1952, 4032, 3309),
    "ML_DSA_87": MlDsaParameters(ML_DSA_87, 2592, 4896, 4627),
}

# curve name -> (curve, signature hash, field size in bytes)
CURVES: Dict[str, Tuple[ec.EllipticCurve, hashes.HashAlgorithm, int]] = {
    "NIST_P256": (ec.SECP256R1(), hashes.SHA256(), 32),
    "NIST_P384": (ec.SECP384R1(), hashes.SHA384(), 48),
    "NIST_P521": (ec.SECP521R1(), hashes.SHA512(), 66),
}


class SecureKey:
    """
    Secure key wrapper with automatic memory cleanup on deletion.

    Uses bytearray internally for mutable zeroing in __del__.
    Note: Python's garbage collector doesn't guarantee immediate cleanup,
    so this is best-effort zeroization.
    """

    __slots__ = ("_bytes",)

    def __init__(self, key_bytes: bytes | bytearray) -> None:
        if not isinstance(key_bytes, (bytes, bytearray)):
            raise InvalidKeyError("Key must be bytes or bytearray")
        self._bytes = bytearray(key_bytes)

    @classmethod
    def generate(cls, size: int = AES_256_KEY_SIZE) -> SecureKey:
        """Generate a cryptographically secure random key of ``size`` bytes."""
        return cls(secrets.token_bytes(size))

    def as_bytes(self) -> bytes:
        """Return key as immutable bytes."""
        return bytes(self._bytes)

    def __len__(self) -> int:
        return len(self._bytes)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SecureKey):
            return NotImplemented
        return constant_time.bytes_eq(bytes(self._bytes), bytes(other._bytes))

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        """Redacted representation to prevent accidental key disclosure."""
        return "SecureKey([REDACTED])"

    def __del__(self) -> None:
        """Zero memory on deletion (best-effort)."""
        if hasattr(self, "_bytes"):
            for i in range(len(self._bytes)):
                self._bytes[i] = 0


@dataclass
class EncryptedData:
    """
    Encrypted data container with nonce and ciphertext.

    The ciphertext includes the 16-byte authentication tag appended by AESGCM.
    """

    nonce: bytes  # 12 bytes
    ciphertext: bytes  # Ciphertext + 16-byte auth tag

    def to_aead_blob(self) -> bytes:
        """Convert to AEAD blob format: nonce || ciphertext || tag."""
        return self.nonce + self.ciphertext

    @classmethod
    def from_aead_blob(cls, blob: bytes) -> EncryptedData:
        """
        Parse from AEAD blob format: nonce || ciphertext || tag.

        Raises:
            InvalidTag: If blob is too small to hold a nonce and a tag
        """
        if len(blob) < NONCE_SIZE + TAG_SIZE:
            raise InvalidTag()
        return cls(nonce=blob[:NONCE_SIZE], ciphertext=blob[NONCE_SIZE:])


def generate_random_bytes(length: int) -> bytes:
    """Generate cryptographically secure random bytes."""
    return secrets.token_bytes(length)


class AesGcmCipher:
    """
    AES-GCM authenticated encryption (128 or 256 bit keys).

    Output layout is the AEAD blob ``nonce || ciphertext || tag``.
    """

    @staticmethod
    def encrypt(
        key: SecureKey,
        plaintext: bytes,
        aad: Optional[bytes] = None,
    ) -> bytes:
        """
        Encrypt plaintext with AES-GCM under a fresh random nonce.

        Args:
            key: 16 or 32-byte encryption key
            plaintext: Data to encrypt
            aad: Optional Additional Authenticated Data for binding

        Returns:
            AEAD blob bytes

        Raises:
            InvalidKeyError: If key size is invalid
        """
        _check_aes_key_size(len(key))
        nonce = generate_random_bytes(NONCE_SIZE)
        ciphertext = AESGCM(key.as_bytes()).encrypt(nonce, plaintext, aad or None)
        return EncryptedData(nonce=nonce, ciphertext=ciphertext).to_aead_blob()

    @staticmethod
    def decrypt(
        key: SecureKey,
        blob: bytes,
        aad: Optional[bytes] = None,
    ) -> bytes:
        """
        Decrypt an AEAD blob with AES-GCM.

        Raises:
            InvalidKeyError: If key size is invalid
            InvalidTag: If the blob is truncated or fails authentication
        """
        _check_aes_key_size(len(key))
        encrypted = EncryptedData.from_aead_blob(blob)
        return AESGCM(key.as_bytes()).decrypt(
            encrypted.nonce, encrypted.ciphertext, aad or None
        )


class HmacTagger:
    """Truncated HMAC tags over any of the supported hashes."""

    @staticmethod
    def compute(key: SecureKey, hash_name: str, tag_size: int, data: bytes) -> bytes:
        h = crypto_hmac.HMAC(key.as_bytes(), _hash(hash_name))
        h.update(data)
        return h.finalize()[:tag_size]

    @staticmethod
    def verify(
        key: SecureKey, hash_name: str, tag_size: int, tag: bytes, data: bytes
    ) -> bool:
        expected = HmacTagger.compute(key, hash_name, tag_size, data)
        return constant_time.bytes_eq(expected, tag)


class AesCtrHmacCipher:
    """
    AES-CTR with HMAC, encrypt-then-MAC.

    Layout: ``iv || ctr_ciphertext || tag`` where the tag covers
    ``aad || iv || ctr_ciphertext || bitlen(aad)`` (8-byte big-endian).
    """

    @staticmethod
    def encrypt(
        aes_key: SecureKey,
        iv_size: int,
        hmac_key: SecureKey,
        hash_name: str,
        tag_size: int,
        plaintext: bytes,
        aad: bytes = b"",
    ) -> bytes:
        _check_aes_key_size(len(aes_key))
        iv = generate_random_bytes(iv_size)
        encryptor = Cipher(
            algorithms.AES(aes_key.as_bytes()), modes.CTR(_counter_block(iv))
        ).encryptor()
        ciphertext = iv + encryptor.update(plaintext) + encryptor.finalize()
        tag = HmacTagger.compute(
            hmac_key, hash_name, tag_size, _mac_input(aad, ciphertext)
        )
        return ciphertext + tag

    @staticmethod
    def decrypt(
        aes_key: SecureKey,
        iv_size: int,
        hmac_key: SecureKey,
        hash_name: str,
        tag_size: int,
        blob: bytes,
        aad: bytes = b"",
    ) -> bytes:
        _check_aes_key_size(len(aes_key))
        if len(blob) < iv_size + tag_size:
            raise InvalidTag()
        ciphertext, tag = blob[:-tag_size], blob[-tag_size:]
        if not HmacTagger.verify(
            hmac_key, hash_name, tag_size, tag, _mac_input(aad, ciphertext)
        ):
            raise InvalidTag()
        iv = ciphertext[:iv_size]
        decryptor = Cipher(
            algorithms.AES(aes_key.as_bytes()), modes.CTR(_counter_block(iv))
        ).decryptor()
        return decryptor.update(ciphertext[iv_size:]) + decryptor.finalize()


class Ed25519Signer:
    """Ed25519 helpers over raw 32-byte keys."""

    @staticmethod
    def generate() -> Tuple[bytes, bytes]:
        sk = ed25519.Ed25519PrivateKey.generate()
        return sk.private_bytes_raw(), sk.public_key().public_bytes_raw()

    @staticmethod
    def public_from_private(private_raw: bytes) -> bytes:
        sk = ed25519.Ed25519PrivateKey.from_private_bytes(private_raw)
        return sk.public_key().public_bytes_raw()

    @staticmethod
    def sign(private_raw: bytes, data: bytes) -> bytes:
        return ed25519.Ed25519PrivateKey.from_private_bytes(private_raw).sign(data)

    @staticmethod
    def verify(public_raw: bytes, signature: bytes, data: bytes) -> None:
        """Raises InvalidSignature on mismatch."""
        ed25519.Ed25519PublicKey.from_public_bytes(public_raw).verify(signature, data)


class EcdsaSigner:
    """
    ECDSA helpers. Points are carried as big-endian affine coordinates
    padded to the curve's field size; signatures are DER encoded.
    """

    @staticmethod
    def generate(curve_name: str) -> Tuple[bytes, bytes, bytes]:
        """Return (pub_x, pub_y, priv) for a fresh key on ``curve_name``."""
        curve, _, field_size = _curve(curve_name)
        sk = ec.generate_private_key(curve)
        numbers = sk.private_numbers()
        return (
            numbers.public_numbers.x.to_bytes(field_size, "big"),
            numbers.public_numbers.y.to_bytes(field_size, "big"),
            numbers.private_value.to_bytes(field_size, "big"),
        )

    @staticmethod
    def public_key(curve_name: str, pub_x: bytes, pub_y: bytes) -> ec.EllipticCurvePublicKey:
        """Raises ValueError if the point is not on the curve."""
        curve, _, _ = _curve(curve_name)
        return ec.EllipticCurvePublicNumbers(
            int.from_bytes(pub_x, "big"), int.from_bytes(pub_y, "big"), curve
        ).public_key()

    @staticmethod
    def private_key(curve_name: str, priv: bytes) -> ec.EllipticCurvePrivateKey:
        curve, _, _ = _curve(curve_name)
        return ec.derive_private_key(int.from_bytes(priv, "big"), curve)

    @staticmethod
    def sign(curve_name: str, priv: bytes, data: bytes) -> bytes:
        _, hash_alg, _ = _curve(curve_name)
        sk = EcdsaSigner.private_key(curve_name, priv)
        return sk.sign(data, ec.ECDSA(hash_alg))

    @staticmethod
    def verify(
        curve_name: str, pub_x: bytes, pub_y: bytes, signature: bytes, data: bytes
    ) -> None:
        """Raises InvalidSignature on mismatch."""
        _, hash_alg, _ = _curve(curve_name)
        pk = EcdsaSigner.public_key(curve_name, pub_x, pub_y)
        pk.verify(signature, data, ec.ECDSA(hash_alg))


class MlDsaSigner:
    """
    ML-DSA (FIPS 204, the standardized Dilithium) over encoded keys.

    Keys and signatures use the FIPS 204 byte encodings. The private key
    embeds ``tr = SHAKE256(public_key, 64)``, which is how a stored key pair
    is checked for consistency.
    """

    @staticmethod
    def generate(parameter_set: str) -> Tuple[bytes, bytes]:
        """Return (public_key, private_key) for ``parameter_set``."""
        public_key, private_key = _ml_dsa(parameter_set).scheme.keygen()
        return public_key, private_key

    @staticmethod
    def sign(parameter_set: str, private_key: bytes, data: bytes) -> bytes:
        return _ml_dsa(parameter_set).scheme.sign(private_key, data)

    @staticmethod
    def verify(parameter_set: str, public_key: bytes, signature: bytes, data: bytes) -> None:
        """Raises InvalidSignature on mismatch."""
        params = _ml_dsa(parameter_set)
        if len(signature) != params.signature_size:
            raise InvalidSignature()
        try:
            valid = params.scheme.verify(public_key, data, signature)
        except (IndexError, ValueError):
            # malformed hint encoding
            raise InvalidSignature() from None
        if not valid:
            raise InvalidSignature()

    @staticmethod
    def key_pair_matches(public_key: bytes, private_key: bytes) -> bool:
        digest = hashes.Hash(hashes.SHAKE256(ML_DSA_TR_SIZE))
        digest.update(public_key)
        tr = private_key[ML_DSA_SEED_SIZE * 2:ML_DSA_SEED_SIZE * 2 + ML_DSA_TR_SIZE]
        return constant_time.bytes_eq(digest.finalize(), tr)


class X25519HybridCipher:
    """
    Hybrid encryption: ephemeral X25519 + HKDF-SHA256 + AES-256-GCM.

    Layout: ``ephemeral_public(32) || nonce || ciphertext || tag``. The HKDF
    input is ``ephemeral_public || shared_secret`` and the context info is
    used as HKDF info.
    """

    @staticmethod
    def generate() -> Tuple[bytes, bytes]:
        sk = x25519.X25519PrivateKey.generate()
        return sk.private_bytes_raw(), sk.public_key().public_bytes_raw()

    @staticmethod
    def public_from_private(private_raw: bytes) -> bytes:
        sk = x25519.X25519PrivateKey.from_private_bytes(private_raw)
        return sk.public_key().public_bytes_raw()

    @staticmethod
    def encrypt(
        public_raw: bytes, hkdf_salt: bytes, plaintext: bytes, context_info: bytes
    ) -> bytes:
        recipient = x25519.X25519PublicKey.from_public_bytes(public_raw)
        ephemeral = x25519.X25519PrivateKey.generate()
        ephemeral_public = ephemeral.public_key().public_bytes_raw()
        shared = ephemeral.exchange(recipient)
        dem_key = _hkdf(ephemeral_public + shared, hkdf_salt, context_info)
        return ephemeral_public + AesGcmCipher.encrypt(dem_key, plaintext)

    @staticmethod
    def decrypt(
        private_raw: bytes, hkdf_salt: bytes, ciphertext: bytes, context_info: bytes
    ) -> bytes:
        if len(ciphertext) < X25519_KEY_SIZE + NONCE_SIZE + TAG_SIZE:
            raise InvalidTag()
        ephemeral_public = ciphertext[:X25519_KEY_SIZE]
        sk = x25519.X25519PrivateKey.from_private_bytes(private_raw)
        shared = sk.exchange(x25519.X25519PublicKey.from_public_bytes(ephemeral_public))
        dem_key = _hkdf(ephemeral_public + shared, hkdf_salt, context_info)
        return AesGcmCipher.decrypt(dem_key, ciphertext[X25519_KEY_SIZE:])


def hash_digest_size(hash_name: str) -> int:
    return _hash(hash_name).digest_size


def curve_field_size(curve_name: str) -> int:
    return _curve(curve_name)[2]


def _hash(hash_name: str) -> hashes.HashAlgorithm:
    try:
        return HASHES[hash_name]
    except KeyError:
        raise InvalidKeyError(f"Unknown hash type: {hash_name}")


def _curve(curve_name: str) -> Tuple[ec.EllipticCurve, hashes.HashAlgorithm, int]:
    try:
        return CURVES[curve_name]
    except KeyError:
        raise InvalidKeyError(f"Unknown curve: {curve_name}")


def _ml_dsa(parameter_set: str) -> MlDsaParameters:
    try:
        return ML_DSA_PARAMETER_SETS[parameter_set]
    except KeyError:
        raise InvalidKeyError(f"Unknown ML-DSA parameter set: {parameter_set}")


def _check_aes_key_size(size: int) -> None:
    if size not in (AES_128_KEY_SIZE, AES_256_KEY_SIZE):
        raise InvalidKeyError(
            f"Invalid AES key size: expected 16 or 32 bytes, got {size}"
        )


def _counter_block(iv: bytes) -> bytes:
    return iv + b"\x00" * (AES_BLOCK_SIZE - len(iv))


def _mac_input(aad: bytes, ciphertext: bytes) -> bytes:
    return aad + ciphertext + struct.pack(">Q", len(aad) * 8)


def _hkdf(ikm: bytes, salt: bytes, info: bytes) -> SecureKey:
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=AES_256_KEY_SIZE,
        salt=salt or None,
        info=info,
    )
    return SecureKey(hkdf.derive(ikm))
