# Copyright 2026 Lys-David Louis-Charles (KatchDaVizion)
# inferproof References
#
# A reference cites a character range of one message in a shared chat:
#
#     <share_id>:<message_index>:<start_char>-<end_char>
#
# Ranges are half-open. decode_reference() only checks syntax; whether
# the range exists is decided by resolve_reference() against the
# decrypted conversation.

import json
import logging
import re
from typing import Dict, List, Union

from inferproof.crypto.ecies import decrypt_as_sender
from inferproof.errors import DecryptionFailed, MalformedReference, OutOfRange, ReferenceMismatch
from inferproof.protocol import ChatData, Reference, SharePayload, TextRange

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 50

_NUMBER = re.compile(r"[0-9]+")


def preview_text(text: str, max_length: int = PREVIEW_LENGTH) -> str:
    return text[:max_length] + "..." if len(text) > max_length else text


def _check_share_id(share_id: str) -> None:
    if not share_id or not share_id.strip():
        raise MalformedReference("share id is empty")
    if ":" in share_id:
        raise MalformedReference("share id may not contain ':'")
    if not share_id.isascii() or any(c.isspace() or not c.isprintable() for c in share_id):
        raise MalformedReference(f"share id must be printable ASCII without whitespace: {share_id!r}")


def encode_reference(share_id: str, message_index: int, start_char: int, end_char: int) -> str:
    _check_share_id(share_id)
    if message_index < 0 or start_char < 0:
        raise MalformedReference("indices must be non-negative")
    if start_char >= end_char:
        raise MalformedReference("empty or inverted range")
    return f"{share_id}:{message_index}:{start_char}-{end_char}"


def decode_reference(compact: str) -> Reference:
    parts = compact.split(":")
    if len(parts) != 3:
        raise MalformedReference(f"expected 3 ':'-separated fields, got {len(parts)}")
    share_id, index, span = parts
    _check_share_id(share_id)

    bounds = span.split("-")
    if len(bounds) != 2:
        raise MalformedReference(f"bad range: {span!r}")
    for field in (index, *bounds):
        if not _NUMBER.fullmatch(field):
            raise MalformedReference(f"not a non-negative integer: {field!r}")

    start_char, end_char = int(bounds[0]), int(bounds[1])
    if start_char >= end_char:
        raise MalformedReference("empty or inverted range")
    return Reference(
        share_id=share_id,
        message_index=int(index),
        start_char=start_char,
        end_char=end_char,
    )


def conversation_messages(chat_data: ChatData) -> List[Dict[str, str]]:
    """
    Ordered conversation of a shared exchange: the request messages,
    decrypted with the sender's ephemeral keys when E2EE was on,
    followed by the assistant output.
    """
    try:
        request = json.loads(chat_data.request_body)
    except ValueError:
        logger.warning("Shared request body is not JSON")
        request = {}
    raw_messages = request.get("messages") if isinstance(request, dict) else None
    keys = chat_data.ephemeral_private_keys
    model_key = bytes.fromhex(chat_data.model_public_key) if chat_data.model_public_key else b""

    messages = []
    for index, message in enumerate(raw_messages or []):
        if not isinstance(message, dict):
            continue
        role, content = message.get("role"), message.get("content")
        if not role or not isinstance(content, str) or not content:
            continue
        key = keys[index] if index < len(keys) else None
        if chat_data.e2ee and key and model_key:
            try:
                content = decrypt_as_sender(content, bytes.fromhex(key), model_key)
            except DecryptionFailed as e:
                logger.warning(f"Message {index} left encrypted: {e}")
        messages.append({"role": role, "content": content})

    if chat_data.output:
        messages.append({"role": "assistant", "content": chat_data.output})
    return messages


def make_reference(
    share_id: str,
    messages: List[Dict[str, str]],
    message_index: int,
    start_char: int,
    end_char: int,
) -> Reference:
    """Reference to a selection in a conversation, with a preview of the selected text."""
    compact = encode_reference(share_id, message_index, start_char, end_char)
    if message_index >= len(messages):
        raise OutOfRange(f"message {message_index} of {len(messages)}")
    content = messages[message_index]["content"]
    if end_char > len(content):
        raise OutOfRange(f"range ends at {end_char}, message has {len(content)} chars")
    reference = decode_reference(compact)
    return reference.model_copy(update={"preview_text": preview_text(content[start_char:end_char])})


def resolve_reference(
    reference: Union[str, Reference],
    payload: SharePayload,
    share_id: str,
) -> TextRange:
    """Text a reference points at inside an opened share."""
    if isinstance(reference, str):
        reference = decode_reference(reference)
    if reference.share_id != share_id:
        raise ReferenceMismatch(f"reference is for share {reference.share_id}, not {share_id}")

    messages = conversation_messages(payload.chat_data)
    if reference.message_index >= len(messages):
        raise OutOfRange(f"message {reference.message_index} of {len(messages)}")
    message = messages[reference.message_index]
    if reference.end_char > len(message["content"]):
        raise OutOfRange(
            f"range ends at {reference.end_char}, message has {len(message['content'])} chars"
        )
    return TextRange(
        message_index=reference.message_index,
        role=message["role"],
        start_char=reference.start_char,
        end_char=reference.end_char,
        text=message["content"][reference.start_char:reference.end_char],
    )
