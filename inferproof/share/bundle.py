# Copyright 2026 Lys-David Louis-Charles (KatchDaVizion)
# inferproof Share Bundle
#
# A share is {chat_data, receipt, timestamp} serialized to JSON and
# encrypted under a fresh 6-word passphrase. The blob store gets only
# ciphertext; the passphrase travels in the share link.

import logging
import time
from typing import List, Optional, Sequence, Tuple
from urllib.parse import parse_qs, urlencode, urlparse

from pydantic import ValidationError

from inferproof.crypto.ecies import decrypt_with_passphrase, encrypt_with_passphrase
from inferproof.crypto.keys import DEFAULT_PASSPHRASE_WORDS, generate_passphrase
from inferproof.errors import DecryptionFailed, InvalidPassphrase
from inferproof.protocol import ChatData, Receipt, SharePayload, canonical_json, sha256_hex
from inferproof.share.store import BlobStore, ShareCache

logger = logging.getLogger(__name__)


def content_hash(chat_data: ChatData, receipt: Receipt) -> str:
    """Stable key for "this exact chat + receipt"."""
    return sha256_hex(canonical_json({
        "chat_data": chat_data.model_dump(mode="json"),
        "receipt": receipt.model_dump(mode="json"),
    }))


async def share(
    chat_data: ChatData,
    receipt: Receipt,
    store: BlobStore,
    cache: Optional[ShareCache] = None,
    num_words: int = DEFAULT_PASSPHRASE_WORDS,
) -> Tuple[str, List[str]]:
    """Encrypt and upload a chat with its receipt. Returns (share_id, passphrase).

    With a cache, concurrent shares of the same content wait on one upload
    and all return its link.
    """
    if cache is None:
        return await _upload(chat_data, receipt, store, num_words)

    key = content_hash(chat_data, receipt)
    lock = cache.upload_lock(key)
    try:
        async with lock:
            cached = cache.get(key)
            if cached is not None:
                logger.info(f"Reusing share {cached[0]}")
                return cached
            share_id, passphrase = await _upload(chat_data, receipt, store, num_words)
            cache.put(key, share_id, passphrase)
            return share_id, passphrase
    finally:
        cache.release_upload_lock(key)


async def _upload(chat_data: ChatData, receipt: Receipt, store: BlobStore, num_words: int) -> Tuple[str, List[str]]:
    payload = SharePayload(
        chat_data=chat_data,
        receipt=receipt,
        timestamp=int(time.time() * 1000),
    )
    passphrase = generate_passphrase(num_words)
    binary = encrypt_with_passphrase(payload.model_dump_json(), passphrase)
    share_id = await store.upload(binary, receipt.request_hash, receipt.response_hash, receipt.signature)
    logger.info(f"Shared exchange {chat_data.exchange_id} as {share_id}")
    return share_id, passphrase


async def unshare(share_id: str, passphrase: Sequence[str], store: BlobStore) -> SharePayload:
    """Download and decrypt a share. NotFound / DecryptionFailed on failure."""
    binary = await store.download(share_id)
    plaintext = decrypt_with_passphrase(binary, passphrase)
    try:
        return SharePayload.model_validate_json(plaintext)
    except ValidationError as e:
        raise DecryptionFailed(f"share payload is incomplete: {e.error_count()} errors")


def share_url(base_url: str, share_id: str, passphrase: Sequence[str]) -> str:
    """Share link. The passphrase rides in the fragment, which browsers never send to the server."""
    query = urlencode({"id": share_id})
    fragment = urlencode({"passphrase": "-".join(passphrase)})
    return f"{base_url.rstrip('/')}/?{query}#{fragment}"


def parse_share_url(url: str) -> Tuple[str, List[str]]:
    """(share_id, passphrase) from a share link. Older links carry the passphrase in the query."""
    parsed = urlparse(url)
    query = parse_qs(parsed.query)
    fragment = parse_qs(parsed.fragment)
    share_id = (query.get("id") or [""])[0]
    words = (fragment.get("passphrase") or query.get("passphrase") or [""])[0]
    if not share_id:
        raise ValueError("share link has no id")
    if not words:
        raise InvalidPassphrase("share link has no passphrase")
    return share_id, words.split("-")
