# Copyright 2026 Lys-David Louis-Charles (KatchDaVizion)
# inferproof Hybrid Cipher
#
# ECIES over secp256k1:
#   ECDH(ephemeral, recipient) x-coordinate
#     -> HKDF-SHA256(info="ecdsa_encryption") -> 32-byte key
#     -> AES-256-GCM, 12-byte random nonce
#
# Packed field: ephemeral_pub(65) || nonce(12) || ciphertext+tag(16)
#
# Passphrase cipher (share bundles): AES-256-GCM keyed by
# HKDF-SHA256(words joined by '-', info="passphrase_encryption"),
# packed as nonce(12) || ciphertext+tag.

import os
from typing import Optional, Sequence, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from inferproof.crypto.keys import (
    CURVE,
    load_private_key,
    load_public_key,
    passphrase_bytes,
)
from inferproof.errors import DecryptionFailed

ECIES_INFO = b"ecdsa_encryption"
PASSPHRASE_INFO = b"passphrase_encryption"

EPHEMERAL_KEY_SIZE = 65
NONCE_SIZE = 12
TAG_SIZE = 16
MIN_FIELD_SIZE = EPHEMERAL_KEY_SIZE + NONCE_SIZE + TAG_SIZE

Text = Union[str, bytes]


def _hkdf(material: bytes, info: bytes) -> bytes:
    return HKDF(algorithm=hashes.SHA256(), length=32, salt=None, info=info).derive(material)


def _as_bytes(value: Text) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else value


def _field_bytes(field: Text) -> bytes:
    """Fields travel hex-encoded inside JSON; accept either form."""
    if isinstance(field, bytes):
        return field
    try:
        return bytes.fromhex(field)
    except ValueError:
        raise DecryptionFailed("field is not valid hex")


def _open(key: bytes, nonce: bytes, ciphertext: bytes) -> str:
    try:
        plaintext = AESGCM(key).decrypt(nonce, ciphertext, None)
        return plaintext.decode("utf-8")
    except InvalidTag:
        raise DecryptionFailed("authentication tag mismatch")
    except UnicodeDecodeError:
        raise DecryptionFailed("plaintext is not valid UTF-8")


# ── ECIES ───────────────────────────────────────────────────────────

def encrypt(
    plaintext: Text,
    recipient_public_key: bytes,
    ephemeral_private_key: Optional[bytes] = None,
) -> bytes:
    """Encrypt for recipient_public_key. A fresh ephemeral key is used unless one is given."""
    recipient = load_public_key(recipient_public_key)
    if ephemeral_private_key is None:
        ephemeral = ec.generate_private_key(CURVE)
    else:
        ephemeral = load_private_key(ephemeral_private_key)
    key = _hkdf(ephemeral.exchange(ec.ECDH(), recipient), ECIES_INFO)
    nonce = os.urandom(NONCE_SIZE)
    ciphertext = AESGCM(key).encrypt(nonce, _as_bytes(plaintext), None)
    ephemeral_public = ephemeral.public_key().public_bytes(
        Encoding.X962, PublicFormat.UncompressedPoint
    )
    return ephemeral_public + nonce + ciphertext


def encrypt_hex(plaintext: Text, recipient_public_key: bytes, ephemeral_private_key=None) -> str:
    return encrypt(plaintext, recipient_public_key, ephemeral_private_key).hex()


def _split(field: Text):
    data = _field_bytes(field)
    if len(data) < MIN_FIELD_SIZE:
        raise DecryptionFailed(f"field too short ({len(data)} bytes)")
    return (
        data[:EPHEMERAL_KEY_SIZE],
        data[EPHEMERAL_KEY_SIZE:EPHEMERAL_KEY_SIZE + NONCE_SIZE],
        data[EPHEMERAL_KEY_SIZE + NONCE_SIZE:],
    )


def decrypt(field: Text, private_key: bytes) -> str:
    """Decrypt a packed field with the recipient's private key."""
    ephemeral_public, nonce, ciphertext = _split(field)
    try:
        ephemeral = load_public_key(ephemeral_public)
        own = load_private_key(private_key)
        key = _hkdf(own.exchange(ec.ECDH(), ephemeral), ECIES_INFO)
    except ValueError as e:
        raise DecryptionFailed(f"invalid key material: {e}")
    return _open(key, nonce, ciphertext)


def decrypt_as_sender(field: Text, ephemeral_private_key: bytes, recipient_public_key: bytes) -> str:
    """Recover a field we encrypted ourselves, using the ephemeral key kept at send time."""
    _, nonce, ciphertext = _split(field)
    try:
        ephemeral = load_private_key(ephemeral_private_key)
        recipient = load_public_key(recipient_public_key)
        key = _hkdf(ephemeral.exchange(ec.ECDH(), recipient), ECIES_INFO)
    except ValueError as e:
        raise DecryptionFailed(f"invalid key material: {e}")
    return _open(key, nonce, ciphertext)


# ── Passphrase cipher ───────────────────────────────────────────────

def encrypt_with_passphrase(plaintext: Text, passphrase: Sequence[str]) -> bytes:
    key = _hkdf(passphrase_bytes(passphrase), PASSPHRASE_INFO)
    nonce = os.urandom(NONCE_SIZE)
    return nonce + AESGCM(key).encrypt(nonce, _as_bytes(plaintext), None)


def decrypt_with_passphrase(blob: bytes, passphrase: Sequence[str]) -> str:
    if len(blob) < NONCE_SIZE + TAG_SIZE:
        raise DecryptionFailed(f"blob too short ({len(blob)} bytes)")
    key = _hkdf(passphrase_bytes(passphrase), PASSPHRASE_INFO)
    return _open(key, blob[:NONCE_SIZE], blob[NONCE_SIZE:])
