# Copyright 2026 Lys-David Louis-Charles (KatchDaVizion)
# inferproof Receipt Signatures
#
# Two signing algorithms are accepted on receipts:
#   - "ecdsa":   EIP-191 personal_sign over secp256k1; signing_address is
#                the 0x-prefixed Ethereum address recovered from the signature
#   - "ed25519": raw Ed25519; signing_address is the hex public key

from typing import Tuple

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    PublicFormat,
)
from eth_account import Account
from eth_account.messages import encode_defunct

SUPPORTED_ALGOS = ("ecdsa", "ed25519")


def generate_signing_key(algo: str = "ecdsa") -> Tuple[bytes, str]:
    """
    Create a signing key for the given algorithm.
    Returns (private_key_bytes, signing_address).
    """
    if algo == "ecdsa":
        account = Account.create()
        return bytes(account.key), account.address
    if algo == "ed25519":
        private_key = Ed25519PrivateKey.generate()
        private_bytes = private_key.private_bytes(
            Encoding.Raw, PrivateFormat.Raw, NoEncryption()
        )
        public_bytes = private_key.public_key().public_bytes(
            Encoding.Raw, PublicFormat.Raw
        )
        return private_bytes, public_bytes.hex()
    raise ValueError(f"unsupported signing algorithm: {algo}")


def sign_text(text: str, private_key: bytes, algo: str = "ecdsa") -> str:
    """Sign text, returning a hex signature in the form the verifier expects."""
    if algo == "ecdsa":
        signed = Account.sign_message(encode_defunct(text=text), private_key=private_key)
        return "0x" + bytes(signed.signature).hex()
    if algo == "ed25519":
        key = Ed25519PrivateKey.from_private_bytes(private_key)
        return key.sign(text.encode("utf-8")).hex()
    raise ValueError(f"unsupported signing algorithm: {algo}")


def recover_address(text: str, signature: str) -> str:
    """Address that produced an EIP-191 signature over text."""
    return Account.recover_message(encode_defunct(text=text), signature=signature)


def verify_signature(text: str, signature: str, signing_address: str, algo: str = "ecdsa") -> bool:
    """
    Verify a receipt signature.
    Returns True if valid; malformed signatures or keys count as invalid.
    Raises ValueError only for an unknown algorithm.
    """
    if algo == "ecdsa":
        try:
            recovered = recover_address(text, signature)
        except Exception:
            return False
        return recovered.lower() == signing_address.lower()
    if algo == "ed25519":
        try:
            key = Ed25519PublicKey.from_public_bytes(bytes.fromhex(signing_address))
            key.verify(bytes.fromhex(signature), text.encode("utf-8"))
            return True
        except (InvalidSignature, ValueError):
            return False
    raise ValueError(f"unsupported signing algorithm: {algo}")
