# Copyright 2026 Lys-David Louis-Charles (KatchDaVizion)
# inferproof Share Storage
#
# BlobStore holds passphrase-encrypted share bundles by opaque id. The
# server never sees plaintext; it only learns the receipt hashes sent
# alongside the upload. ShareCache remembers which content was already
# shared so sharing the same chat twice returns the same link.

import asyncio
import base64
import logging
import secrets
import sqlite3
import threading
import time
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Tuple

import aiohttp

from inferproof.config import SHARE_API_URL
from inferproof.errors import NotFound, StorageUnavailable

logger = logging.getLogger(__name__)


class BlobStore(ABC):
    """Opaque storage for encrypted share bundles."""

    @abstractmethod
    async def upload(self, binary: bytes, request_hash: str, response_hash: str, signature: str) -> str:
        """Store binary, return its id."""

    @abstractmethod
    async def download(self, share_id: str) -> bytes:
        """Fetch a stored binary. Raises NotFound for unknown ids."""


def new_share_id() -> str:
    return secrets.token_urlsafe(12)


# ── SQLite ──────────────────────────────────────────────────────────

class SqliteBlobStore(BlobStore):
    """SQLite-backed blob store used by the development server and tests."""

    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        self._lock = threading.Lock()
        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS shares (
                id TEXT PRIMARY KEY,
                binary BLOB NOT NULL,
                request_hash TEXT NOT NULL,
                response_hash TEXT NOT NULL,
                signature TEXT NOT NULL,
                created_at REAL NOT NULL
            );
        """)
        self.conn.commit()

    def upload_sync(self, binary: bytes, request_hash: str, response_hash: str, signature: str) -> str:
        share_id = new_share_id()
        with self._lock:
            self.conn.execute(
                """INSERT INTO shares (id, binary, request_hash, response_hash, signature, created_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (share_id, binary, request_hash, response_hash, signature, time.time()),
            )
            self.conn.commit()
        logger.info(f"Stored share {share_id} ({len(binary)} bytes)")
        return share_id

    def download_sync(self, share_id: str) -> bytes:
        with self._lock:
            row = self.conn.execute("SELECT binary FROM shares WHERE id = ?", (share_id,)).fetchone()
        if row is None:
            raise NotFound(f"share {share_id} not found")
        return bytes(row[0])

    async def upload(self, binary, request_hash, response_hash, signature) -> str:
        return self.upload_sync(binary, request_hash, response_hash, signature)

    async def download(self, share_id: str) -> bytes:
        return self.download_sync(share_id)

    def count(self) -> int:
        with self._lock:
            return self.conn.execute("SELECT COUNT(*) FROM shares").fetchone()[0]

    def close(self):
        self.conn.close()


# ── HTTP share API ──────────────────────────────────────────────────

class HttpBlobStore(BlobStore):
    """POST {api}/api/share/store, GET {api}/api/share/{id}"""

    def __init__(
        self,
        api_url: str = SHARE_API_URL,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 30.0,
    ):
        self._api_url = api_url.rstrip("/")
        self._session = session
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    async def upload(self, binary, request_hash, response_hash, signature) -> str:
        payload = {
            "requestHash": request_hash,
            "responseHash": response_hash,
            "signature": signature,
            "binary": base64.b64encode(binary).decode("ascii"),
        }
        url = f"{self._api_url}/api/share/store"
        session = self._session or aiohttp.ClientSession(timeout=self._timeout)
        try:
            async with session.post(url, json=payload) as resp:
                if resp.status != 200:
                    text = await resp.text()
                    raise StorageUnavailable(f"Share upload returned {resp.status}: {text[:200]}", resp.status)
                data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise StorageUnavailable(f"Share upload to {url} failed: {e}")
        finally:
            if self._session is None:
                await session.close()

        share_id = data.get("id") if isinstance(data, dict) else None
        if not share_id:
            raise StorageUnavailable("Share store did not return an id")
        return share_id

    async def download(self, share_id: str) -> bytes:
        url = f"{self._api_url}/api/share/{share_id}"
        session = self._session or aiohttp.ClientSession(timeout=self._timeout)
        try:
            async with session.get(url) as resp:
                if resp.status == 404:
                    raise NotFound(f"share {share_id} not found")
                if resp.status != 200:
                    text = await resp.text()
                    raise StorageUnavailable(f"Share download returned {resp.status}: {text[:200]}", resp.status)
                return await resp.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise StorageUnavailable(f"Share download from {url} failed: {e}")
        finally:
            if self._session is None:
                await session.close()


# ── Share-id cache ──────────────────────────────────────────────────

class ShareCache:
    """content hash -> (share id, passphrase). Persists across restarts."""

    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        self._lock = threading.Lock()
        self._uploads: Dict[str, Tuple[asyncio.Lock, int]] = {}
        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS share_cache (
                content_hash TEXT PRIMARY KEY,
                share_id TEXT NOT NULL,
                passphrase TEXT NOT NULL,
                created_at REAL NOT NULL
            );
        """)
        self.conn.commit()

    def get(self, content_hash: str) -> Optional[Tuple[str, List[str]]]:
        with self._lock:
            row = self.conn.execute(
                "SELECT share_id, passphrase FROM share_cache WHERE content_hash = ?",
                (content_hash,),
            ).fetchone()
        if row is None:
            return None
        return row[0], row[1].split("-")

    def put(self, content_hash: str, share_id: str, passphrase: List[str]) -> None:
        with self._lock:
            self.conn.execute(
                """INSERT OR REPLACE INTO share_cache (content_hash, share_id, passphrase, created_at)
                   VALUES (?, ?, ?, ?)""",
                (content_hash, share_id, "-".join(passphrase), time.time()),
            )
            self.conn.commit()

    def upload_lock(self, content_hash: str) -> asyncio.Lock:
        """Serializes concurrent shares of the same content so only one uploads."""
        lock, users = self._uploads.get(content_hash) or (asyncio.Lock(), 0)
        self._uploads[content_hash] = (lock, users + 1)
        return lock

    def release_upload_lock(self, content_hash: str) -> None:
        lock, users = self._uploads[content_hash]
        if users <= 1:
            del self._uploads[content_hash]
        else:
            self._uploads[content_hash] = (lock, users - 1)

    def close(self):
        self.conn.close()
