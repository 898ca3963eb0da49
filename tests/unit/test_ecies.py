"""inferproof Hybrid Cipher Test Suite

Tests ECIES encrypt/decrypt over secp256k1, sender-side recovery with
the ephemeral key, and the passphrase cipher used by share bundles.
"""
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(os.path.abspath(__file__)), '..', '..'))

from inferproof.crypto.ecies import (
    MIN_FIELD_SIZE,
    decrypt,
    decrypt_as_sender,
    decrypt_with_passphrase,
    encrypt,
    encrypt_hex,
    encrypt_with_passphrase,
)
from inferproof.crypto.keys import derive_keypair, generate_keypair, generate_passphrase
from inferproof.errors import DecryptionFailed

passed = failed = 0


def check(cond, name):
    global passed, failed
    if cond:
        passed += 1
        print(f"    OK {name}")
    else:
        failed += 1
        print(f"    FAIL {name}")
    assert cond, name


def fails(fn, *args):
    try:
        fn(*args)
    except DecryptionFailed:
        return True
    return False


# ── 1. Round trip ───────────────────────────────────────────────────

def test_round_trip():
    print("\n1. Round trip...")
    recipient = derive_keypair(generate_passphrase())
    for text in ["hello", "", "ünïcødé ✓ 漢字", "x" * 10000]:
        field = encrypt(text, recipient.public_key)
        check(decrypt(field, recipient.private_key) == text, f"Round trip ({len(text)} chars)")

    field_hex = encrypt_hex("hex form", recipient.public_key)
    check(decrypt(field_hex, recipient.private_key) == "hex form", "Hex-encoded field decrypts")
    check(decrypt(bytes.fromhex(field_hex), recipient.private_key) == "hex form", "Raw bytes decrypt")


# ── 2. Packing ──────────────────────────────────────────────────────

def test_packing():
    print("\n2. Packing...")
    recipient = generate_keypair()
    field = encrypt("abc", recipient.public_key)
    check(len(field) == MIN_FIELD_SIZE + 3, f"65 + 12 + 3 + 16 = {len(field)}")
    check(field[0] == 4, "Starts with uncompressed ephemeral key")
    check(encrypt("abc", recipient.public_key) != field, "Fresh ephemeral key per call")

    unprefixed = encrypt("no prefix", recipient.public_key[1:])
    check(decrypt(unprefixed, recipient.private_key) == "no prefix", "64-byte recipient key accepted")


# ── 3. Failures ─────────────────────────────────────────────────────

def test_failures():
    print("\n3. Failures...")
    recipient = generate_keypair()
    other = generate_keypair()
    field = encrypt("secret", recipient.public_key)

    check(fails(decrypt, field, other.private_key), "Wrong key -> DecryptionFailed")

    tampered = bytearray(field)
    tampered[-1] ^= 0x01
    check(fails(decrypt, bytes(tampered), recipient.private_key), "Tampered tag")

    tampered = bytearray(field)
    tampered[70] ^= 0x01
    check(fails(decrypt, bytes(tampered), recipient.private_key), "Tampered nonce")

    check(fails(decrypt, field[:50], recipient.private_key), "Truncated field")
    check(fails(decrypt, "not hex at all", recipient.private_key), "Non-hex string")
    check(fails(decrypt, b"\x04" + b"\x01" * 100, recipient.private_key), "Invalid ephemeral point")

    binary = encrypt(b"\xff\xfe\xfd", recipient.public_key)
    check(fails(decrypt, binary, recipient.private_key), "Non-UTF-8 plaintext")


# ── 4. Sender-side recovery ─────────────────────────────────────────

def test_decrypt_as_sender():
    print("\n4. Sender-side recovery...")
    recipient = generate_keypair()
    ephemeral = generate_keypair()
    field = encrypt("my own message", recipient.public_key, ephemeral.private_key)

    check(field[:65] == ephemeral.public_key, "Given ephemeral key is used")
    check(
        decrypt_as_sender(field, ephemeral.private_key, recipient.public_key) == "my own message",
        "Sender recovers plaintext",
    )
    check(decrypt(field, recipient.private_key) == "my own message", "Recipient still decrypts")
    check(
        fails(decrypt_as_sender, field, generate_keypair().private_key, recipient.public_key),
        "Wrong ephemeral key fails",
    )


# ── 5. Passphrase cipher ────────────────────────────────────────────

def test_passphrase_cipher():
    print("\n5. Passphrase cipher...")
    phrase = generate_passphrase()
    blob = encrypt_with_passphrase('{"k": "v"}', phrase)
    check(decrypt_with_passphrase(blob, phrase) == '{"k": "v"}', "Round trip")
    check(decrypt_with_passphrase(blob, list(phrase)) == '{"k": "v"}', "Equal list decrypts")
    check(encrypt_with_passphrase("same", phrase) != encrypt_with_passphrase("same", phrase), "Random nonce")

    wrong = list(phrase)
    wrong[0] = wrong[0] + "x"
    check(fails(decrypt_with_passphrase, blob, wrong), "Wrong passphrase -> DecryptionFailed")
    check(fails(decrypt_with_passphrase, blob[:20], phrase), "Truncated blob")


# ── Run all ─────────────────────────────────────────────────────────

if __name__ == "__main__":
    print("=" * 60)
    print("  inferproof Hybrid Cipher Tests")
    print("=" * 60)

    test_round_trip()
    test_packing()
    test_failures()
    test_decrypt_as_sender()
    test_passphrase_cipher()

    print(f"\n{'=' * 60}")
    if failed == 0:
        print(f"  ALL {passed} TESTS PASSED!")
    else:
        print(f"  {passed} passed, {failed} FAILED")
    print("=" * 60)
    sys.exit(1 if failed else 0)
