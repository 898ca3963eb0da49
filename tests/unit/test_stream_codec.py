"""inferproof Stream Codec Test Suite

Tests incremental SSE decryption: chunk-boundary independence, pass-through
rules for [DONE], non-JSON and non-data lines, counted decryption failures,
flush behaviour, whole-body JSON decryption and output extraction.
"""
import sys
import os
import json

sys.path.insert(0, os.path.join(os.path.dirname(os.path.abspath(__file__)), '..', '..'))

from inferproof.crypto.ecies import encrypt_hex
from inferproof.crypto.keys import generate_keypair
from inferproof.e2ee.stream_codec import (
    StreamCodec,
    decrypt_json_body,
    extract_exchange_id,
    extract_output,
)
from tests.mock.mock_endpoint import sse_events

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


CLIENT = generate_keypair()


def encrypted_stream(pieces):
    return sse_events([encrypt_hex(p, CLIENT.public_key) for p in pieces])


def decode_in_chunks(body, size):
    codec = StreamCodec(CLIENT.private_key)
    out = []
    for offset in range(0, len(body), size):
        out.append(codec.feed(body[offset:offset + size]).data)
    out.append(codec.flush().data)
    return b"".join(out), codec


# ── 1. Chunk-size independence ──────────────────────────────────────

def test_chunk_independence():
    print("\n1. Chunk-size independence...")
    body = encrypted_stream(["Hel", "lo, ", "wörld ✓"])
    reference, codec = decode_in_chunks(body, len(body))
    check(codec.decrypted == 3, f"Three fields decrypted: {codec.decrypted}")
    check(extract_output(reference) == "Hello, wörld ✓", "Plaintext recovered")

    for size in (1, 2, 3, 7, 64, 1000):
        out, c = decode_in_chunks(body, size)
        check(out == reference and c.decrypted == 3, f"Chunk size {size} gives identical output")


# ── 2. Pass-through lines ───────────────────────────────────────────

def test_pass_through_lines():
    print("\n2. Pass-through lines...")
    body = (
        b": keep-alive comment\n"
        b"event: ping\n"
        b"data: {not json\n"
        b"data: [DONE]\n"
        b"\n"
    )
    out, codec = decode_in_chunks(body, 5)
    check(out == body, "Non-data, non-JSON and [DONE] lines unchanged byte for byte")
    check(codec.decrypted == 0 and codec.passed_through == 0, "Nothing counted")

    no_choices = b'data: {"id":"x","usage":{"total_tokens":3}}\n'
    out, codec = decode_in_chunks(no_choices, 4)
    check(out == no_choices, "JSON without choices unchanged")


# ── 3. Decryption failures are counted ──────────────────────────────

def test_failures_counted():
    print("\n3. Decryption failures are counted...")
    other = generate_keypair()
    body = sse_events([
        encrypt_hex("good", CLIENT.public_key),
        encrypt_hex("for someone else", other.public_key),
        "plain text",
    ])
    codec = StreamCodec(CLIENT.private_key)
    result = codec.feed(body)
    check(result.decrypted == 1, f"One decrypted: {result.decrypted}")
    check(result.passed_through == 2, f"Two passed through: {result.passed_through}")
    check(b"plain text" in result.data, "Undecryptable field left as-is")
    check(extract_output(result.data).startswith("good"), "Good field decrypted in place")


# ── 4. Flush & partial lines ────────────────────────────────────────

def test_flush():
    print("\n4. Flush & partial lines...")
    codec = StreamCodec(CLIENT.private_key)
    line = b'data: {"choices":[{"delta":{"content":"' + encrypt_hex("x", CLIENT.public_key).encode() + b'"}}]}'
    first = codec.feed(line[:20])
    check(first.data == b"", "Partial line held back")
    second = codec.feed(line[20:])
    check(second.data == b"", "Still no newline -> still held")
    tail = codec.flush()
    check(tail.data == line, "Flush emits remainder unchanged (not decrypted)")
    check(codec.flush().data == b"", "Second flush is empty")

    crlf = StreamCodec(CLIENT.private_key).feed(line + b"\r\n")
    check(crlf.data.endswith(b"\r\n") and crlf.decrypted == 1, "CRLF line ending preserved")


# ── 5. Multi-byte characters split across chunks ────────────────────

def test_multibyte_split():
    print("\n5. Multi-byte split...")
    body = ("data: " + json.dumps({"note": "日本語"}, ensure_ascii=False) + "\n").encode("utf-8")
    out, _ = decode_in_chunks(body, 1)
    check(out == body, "UTF-8 split mid-character survives")


# ── 6. Reasoning & message fields ───────────────────────────────────

def test_other_fields():
    print("\n6. Reasoning & message fields...")
    event = {"choices": [{"delta": {
        "reasoning_content": encrypt_hex("thinking", CLIENT.public_key),
        "reasoning": encrypt_hex("more", CLIENT.public_key),
        "role": "assistant",
    }}]}
    result = StreamCodec(CLIENT.private_key).feed(b"data: " + json.dumps(event).encode() + b"\n")
    decoded = json.loads(result.data[len(b"data: "):])
    check(decoded["choices"][0]["delta"]["reasoning_content"] == "thinking", "reasoning_content decrypted")
    check(decoded["choices"][0]["delta"]["reasoning"] == "more", "reasoning decrypted")
    check(decoded["choices"][0]["delta"]["role"] == "assistant", "Other fields untouched")

    body = json.dumps({
        "id": "chatcmpl-42",
        "choices": [{"message": {"role": "assistant", "content": encrypt_hex("whole", CLIENT.public_key)}}],
    }).encode()
    data, result = decrypt_json_body(body, CLIENT.private_key)
    check(result.decrypted == 1, "Whole-body message.content decrypted")
    check(extract_output(data) == "whole", "Output from JSON body")

    same, result = decrypt_json_body(b"not json", CLIENT.private_key)
    check(same == b"not json" and result.decrypted == 0, "Non-JSON body returned unchanged")


# ── 7. Exchange id ──────────────────────────────────────────────────

def test_exchange_id():
    print("\n7. Exchange id...")
    check(extract_exchange_id(b'data: {"id": "chatcmpl-1","x":1}\ndata: {"id":"chatcmpl-2"}') == "chatcmpl-1",
          "First occurrence wins")
    check(extract_exchange_id(b"data: [DONE]") is None, "No id -> None")


# ── Run all ─────────────────────────────────────────────────────────

if __name__ == "__main__":
    print("=" * 60)
    print("  inferproof Stream Codec Tests")
    print("=" * 60)

    test_chunk_independence()
    test_pass_through_lines()
    test_failures_counted()
    test_flush()
    test_multibyte_split()
    test_other_fields()
    test_exchange_id()

    print(f"\n{'=' * 60}")
    if failed == 0:
        print(f"  ALL {passed} TESTS PASSED!")
    else:
        print(f"  {passed} passed, {failed} FAILED")
    print("=" * 60)
    sys.exit(1 if failed else 0)
