# Copyright 2026 Lys-David Louis-Charles (KatchDaVizion)
# inferproof Stream Codec — incremental SSE decryption
#
# Consumes an encrypted server-sent-event byte stream in arbitrary chunks
# and emits the same stream with encrypted content fields replaced by
# their plaintext:
#   1. Append the chunk to a pending buffer, split on "\n"
#   2. Hold back the last (possibly partial) line
#   3. "data: <json>" lines: decrypt choices[*].delta.{content,reasoning,
#      reasoning_content} and choices[*].message.content
#   4. "data: [DONE]", non-JSON and non-data lines pass through as-is
#
# A field that fails to decrypt is left unchanged and counted, never raised.
# Output depends only on the byte sequence, not on where chunks split it.

import json
import logging
import re
from typing import Optional, Tuple

from pydantic import BaseModel

from inferproof.crypto.ecies import decrypt
from inferproof.errors import DecryptionFailed

logger = logging.getLogger(__name__)

DATA_PREFIX = b"data: "
DONE_MARKER = b"[DONE]"

DELTA_FIELDS = ("content", "reasoning", "reasoning_content")
MESSAGE_FIELDS = ("content",)

_EXCHANGE_ID_RE = re.compile(rb'"id"\s*:\s*"([^"]+)"')


class CodecResult(BaseModel):
    """Bytes emitted for one feed()/flush() call plus per-field outcomes."""

    data: bytes = b""
    decrypted: int = 0
    passed_through: int = 0


def _dumps(obj) -> bytes:
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def decrypt_fields(obj, private_key: bytes) -> Tuple[int, int]:
    """
    Decrypt content fields of a chat completion object in place.
    Returns (decrypted, passed_through) field counts.
    """
    decrypted = passed = 0
    if not isinstance(obj, dict):
        return decrypted, passed
    choices = obj.get("choices")
    if not isinstance(choices, list):
        return decrypted, passed

    for choice in choices:
        if not isinstance(choice, dict):
            continue
        for container, fields in (("delta", DELTA_FIELDS), ("message", MESSAGE_FIELDS)):
            target = choice.get(container)
            if not isinstance(target, dict):
                continue
            for field in fields:
                value = target.get(field)
                if not isinstance(value, str) or not value:
                    continue
                try:
                    target[field] = decrypt(value, private_key)
                    decrypted += 1
                except DecryptionFailed as e:
                    passed += 1
                    logger.debug(f"Passing {container}.{field} through: {e}")
    return decrypted, passed


def decrypt_json_body(body: bytes, private_key: bytes) -> Tuple[bytes, CodecResult]:
    """Decrypt a complete (non-streaming) JSON response body."""
    try:
        obj = json.loads(body)
    except ValueError:
        return body, CodecResult(data=body)
    decrypted, passed = decrypt_fields(obj, private_key)
    data = _dumps(obj) if decrypted else body
    return data, CodecResult(data=data, decrypted=decrypted, passed_through=passed)


def extract_exchange_id(data: bytes) -> Optional[str]:
    """First "id": "<value>" occurrence in a response body."""
    match = _EXCHANGE_ID_RE.search(data)
    return match.group(1).decode("utf-8", errors="replace") if match else None


def _choice_text(obj, container: str) -> str:
    if not isinstance(obj, dict) or not isinstance(obj.get("choices"), list):
        return ""
    parts = []
    for choice in obj["choices"]:
        target = choice.get(container) if isinstance(choice, dict) else None
        if isinstance(target, dict) and isinstance(target.get("content"), str):
            parts.append(target["content"])
    return "".join(parts)


def extract_output(body: bytes) -> str:
    """
    Assistant text of a (decrypted) response body.
    SSE bodies concatenate delta.content; JSON bodies use message.content.
    """
    if not body.lstrip().startswith(DATA_PREFIX):
        try:
            return _choice_text(json.loads(body), "message")
        except ValueError:
            return ""

    parts = []
    for line in body.split(b"\n"):
        line = line.rstrip(b"\r")
        if not line.startswith(DATA_PREFIX):
            continue
        payload = line[len(DATA_PREFIX):]
        if payload.strip() == DONE_MARKER:
            continue
        try:
            parts.append(_choice_text(json.loads(payload), "delta"))
        except ValueError:
            continue
    return "".join(parts)


class StreamCodec:
    """Line-buffered SSE decryptor. Pure and synchronous; feed() never blocks."""

    def __init__(self, private_key: bytes):
        self._private_key = private_key
        self._pending = b""
        self.decrypted = 0
        self.passed_through = 0

    def _process_line(self, line: bytes) -> Tuple[bytes, int, int]:
        ending = b""
        if line.endswith(b"\r"):
            line, ending = line[:-1], b"\r"
        if not line.startswith(DATA_PREFIX):
            return line + ending, 0, 0
        payload = line[len(DATA_PREFIX):]
        if payload.strip() == DONE_MARKER:
            return line + ending, 0, 0
        try:
            event = json.loads(payload)
        except ValueError:
            return line + ending, 0, 0
        decrypted, passed = decrypt_fields(event, self._private_key)
        if not decrypted:
            return line + ending, 0, passed
        return DATA_PREFIX + _dumps(event) + ending, decrypted, passed

    def feed(self, chunk: bytes) -> CodecResult:
        """Process a chunk; emits every line completed by it."""
        self._pending += chunk
        *lines, self._pending = self._pending.split(b"\n")
        out = []
        decrypted = passed = 0
        for line in lines:
            data, d, p = self._process_line(line)
            out.append(data + b"\n")
            decrypted += d
            passed += p
        self.decrypted += decrypted
        self.passed_through += passed
        return CodecResult(data=b"".join(out), decrypted=decrypted, passed_through=passed)

    def flush(self) -> CodecResult:
        """Emit the held-back partial line unchanged."""
        data, self._pending = self._pending, b""
        return CodecResult(data=data)

    def decode_all(self, body: bytes) -> CodecResult:
        """feed() + flush() over a complete body."""
        head = self.feed(body)
        tail = self.flush()
        return CodecResult(
            data=head.data + tail.data,
            decrypted=head.decrypted,
            passed_through=head.passed_through,
        )
