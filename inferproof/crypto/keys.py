# Copyright 2026 Lys-David Louis-Charles (KatchDaVizion)
# inferproof Key Material
#
# Passphrases are lists of words, each a BIP-39 English word with one
# random digit appended ("orbit7"). The same word list always derives
# the same secp256k1 key pair, so a passphrase is all a user needs to
# write down to recover a session or open a share.

import secrets
from typing import List, Optional, Sequence

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat
from mnemonic import Mnemonic

from inferproof.errors import InvalidPassphrase
from inferproof.protocol import KeyPair

CURVE = ec.SECP256K1()
# secp256k1 group order
CURVE_ORDER = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141

DEFAULT_PASSPHRASE_WORDS = 6
KEYPAIR_INFO = b"keypair_derivation"

_wordlist: Optional[List[str]] = None


def _words() -> List[str]:
    global _wordlist
    if _wordlist is None:
        _wordlist = Mnemonic("english").wordlist
    return _wordlist


def generate_passphrase(num_words: int = DEFAULT_PASSPHRASE_WORDS) -> List[str]:
    """Random passphrase: num_words entries of word + one digit."""
    if num_words < 1:
        raise InvalidPassphrase("passphrase needs at least one word")
    words = _words()
    return [secrets.choice(words) + str(secrets.randbelow(10)) for _ in range(num_words)]


def passphrase_bytes(passphrase: Sequence[str]) -> bytes:
    """Canonical byte form of a passphrase: words joined by '-', UTF-8."""
    if not passphrase:
        raise InvalidPassphrase("passphrase is empty")
    return "-".join(str(word) for word in passphrase).encode("utf-8")


def keypair_from_private(private_key: ec.EllipticCurvePrivateKey, passphrase=()) -> KeyPair:
    public = private_key.public_key().public_bytes(
        Encoding.X962, PublicFormat.UncompressedPoint
    )
    private = private_key.private_numbers().private_value.to_bytes(32, "big")
    return KeyPair(public_key=public, private_key=private, passphrase=list(passphrase))


def derive_keypair(passphrase: Sequence[str]) -> KeyPair:
    """Deterministically derive a secp256k1 key pair from a passphrase."""
    seed = HKDF(
        algorithm=hashes.SHA256(),
        length=32,
        salt=None,
        info=KEYPAIR_INFO,
    ).derive(passphrase_bytes(passphrase))
    # Map into [1, n-1]
    scalar = int.from_bytes(seed, "big") % (CURVE_ORDER - 1) + 1
    return keypair_from_private(ec.derive_private_key(scalar, CURVE), passphrase)


def generate_keypair() -> KeyPair:
    """Fresh random key pair with no passphrase (per-message ephemeral keys)."""
    return keypair_from_private(ec.generate_private_key(CURVE))


def load_private_key(private_key: bytes) -> ec.EllipticCurvePrivateKey:
    if len(private_key) != 32:
        raise ValueError(f"private key must be 32 bytes, got {len(private_key)}")
    return ec.derive_private_key(int.from_bytes(private_key, "big"), CURVE)


def load_public_key(public_key: bytes) -> ec.EllipticCurvePublicKey:
    """Accept 65-byte uncompressed points and 64-byte points missing the 0x04 prefix."""
    if len(public_key) == 64:
        public_key = b"\x04" + public_key
    if len(public_key) != 65 or public_key[0] != 4:
        raise ValueError(f"expected uncompressed secp256k1 point, got {len(public_key)} bytes")
    return ec.EllipticCurvePublicKey.from_encoded_point(CURVE, public_key)
