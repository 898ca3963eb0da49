# Copyright 2026 Lys-David Louis-Charles (KatchDaVizion)
# inferproof Notarization Ledger
#
# Append-only store of (proof_hash, timestamp) records. Implementations:
#   - SqliteLedger: local file, used by the development server and tests
#   - HttpLedger:   the attestation API (POST /api/store, GET /api/store/{hash})
#   - NearLedger:   writes through the attestation API, reads the NEAR
#                   contract's `get` view method over JSON-RPC
#
# Writing a proof hash that is already recorded never creates a second
# record: the existing tx_hash is returned.

import asyncio
import base64
import hashlib
import json
import logging
import sqlite3
import threading
import time
from abc import ABC, abstractmethod
from typing import Optional

import aiohttp

from inferproof.config import NEAR_RPC_URL, SHARE_API_URL
from inferproof.errors import NotarizationFailed, StorageUnavailable
from inferproof.protocol import LedgerRecord

logger = logging.getLogger(__name__)


class NotarizationLedger(ABC):
    """Tamper-evident record of proof hashes."""

    @abstractmethod
    async def write(self, proof_hash: str, timestamp: int) -> str:
        """Record proof_hash at timestamp. Returns tx_hash. Raises NotarizationFailed."""

    @abstractmethod
    async def read(self, proof_hash: str) -> Optional[LedgerRecord]:
        """Record for proof_hash, or None if it was never written."""


# ── SQLite ──────────────────────────────────────────────────────────

class SqliteLedger(NotarizationLedger):
    """SQLite-backed ledger. proof_hash is the primary key."""

    def __init__(self, db_path: str = ":memory:", stored_by: str = "local"):
        self.db_path = db_path
        self.stored_by = stored_by
        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        self._lock = threading.Lock()
        if db_path != ":memory:":
            self.conn.execute("PRAGMA journal_mode=WAL")
        self._init_db()

    def _init_db(self):
        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS proofs (
                proof_hash TEXT PRIMARY KEY,
                timestamp INTEGER NOT NULL,
                tx_hash TEXT NOT NULL,
                stored_by TEXT NOT NULL,
                recorded_at REAL NOT NULL
            );
        """)
        self.conn.commit()

    def write_sync(self, proof_hash: str, timestamp: int) -> str:
        tx_hash = hashlib.sha256(f"{proof_hash}:{timestamp}".encode("utf-8")).hexdigest()
        with self._lock:
            try:
                self.conn.execute(
                    """INSERT INTO proofs (proof_hash, timestamp, tx_hash, stored_by, recorded_at)
                       VALUES (?, ?, ?, ?, ?)""",
                    (proof_hash, int(timestamp), tx_hash, self.stored_by, time.time()),
                )
                self.conn.commit()
                return tx_hash
            except sqlite3.IntegrityError:
                # Already notarized
                row = self.conn.execute(
                    "SELECT tx_hash FROM proofs WHERE proof_hash = ?", (proof_hash,)
                ).fetchone()
                logger.info(f"Proof {proof_hash[:16]}... already recorded")
                return row[0]

    def read_sync(self, proof_hash: str) -> Optional[LedgerRecord]:
        with self._lock:
            row = self.conn.execute(
                "SELECT proof_hash, timestamp, tx_hash, stored_by FROM proofs WHERE proof_hash = ?",
                (proof_hash,),
            ).fetchone()
        if row is None:
            return None
        return LedgerRecord(proof_hash=row[0], timestamp=row[1], tx_hash=row[2], stored_by=row[3])

    async def write(self, proof_hash: str, timestamp: int) -> str:
        try:
            return self.write_sync(proof_hash, timestamp)
        except sqlite3.Error as e:
            raise NotarizationFailed(f"Ledger write failed: {e}")

    async def read(self, proof_hash: str) -> Optional[LedgerRecord]:
        return self.read_sync(proof_hash)

    def count(self) -> int:
        with self._lock:
            return self.conn.execute("SELECT COUNT(*) FROM proofs").fetchone()[0]

    def close(self):
        self.conn.close()


# ── HTTP attestation API ────────────────────────────────────────────

class HttpLedger(NotarizationLedger):
    """Ledger behind the attestation API."""

    def __init__(
        self,
        api_url: str = SHARE_API_URL,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 30.0,
    ):
        self._api_url = api_url.rstrip("/")
        self._session = session
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    def _open(self) -> aiohttp.ClientSession:
        return self._session or aiohttp.ClientSession(timeout=self._timeout)

    async def _release(self, session: aiohttp.ClientSession) -> None:
        if self._session is None:
            await session.close()

    async def write(self, proof_hash: str, timestamp: int) -> str:
        session = self._open()
        try:
            async with session.post(
                f"{self._api_url}/api/store",
                json={"proofHash": proof_hash, "timestamp": timestamp},
            ) as resp:
                if resp.status != 200:
                    text = await resp.text()
                    raise NotarizationFailed(f"Failed to store attestation record ({resp.status}): {text[:200]}")
                data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise NotarizationFailed(f"Failed to store attestation record: {e}")
        finally:
            await self._release(session)

        tx_hash = data.get("txHash") if isinstance(data, dict) else None
        if not tx_hash:
            raise NotarizationFailed("Ledger did not confirm the write")
        return tx_hash

    async def read(self, proof_hash: str) -> Optional[LedgerRecord]:
        url = f"{self._api_url}/api/store/{proof_hash}"
        session = self._open()
        try:
            async with session.get(url) as resp:
                if resp.status == 404:
                    return None
                if resp.status != 200:
                    text = await resp.text()
                    raise StorageUnavailable(f"Ledger lookup returned {resp.status}: {text[:200]}", resp.status)
                data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise StorageUnavailable(f"Ledger lookup at {url} failed: {e}")
        finally:
            await self._release(session)
        if not data:
            return None
        try:
            timestamp = int(data["timestamp"])
        except (KeyError, TypeError, ValueError):
            raise StorageUnavailable(f"Ledger record for {proof_hash[:16]}... has no timestamp")
        return LedgerRecord(
            proof_hash=proof_hash,
            timestamp=timestamp,
            tx_hash=data.get("txHash", ""),
            stored_by=data.get("stored_by", ""),
        )


# ── NEAR contract ───────────────────────────────────────────────────

class NearLedger(HttpLedger):
    """Reads records straight from the NEAR attestation storage contract."""

    def __init__(
        self,
        contract_id: str,
        rpc_url: str = NEAR_RPC_URL,
        api_url: str = SHARE_API_URL,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 30.0,
    ):
        super().__init__(api_url=api_url, session=session, timeout=timeout)
        self._contract_id = contract_id
        self._rpc_url = rpc_url

    async def _view(self, method: str, args: dict):
        payload = {
            "jsonrpc": "2.0",
            "id": "inferproof",
            "method": "query",
            "params": {
                "request_type": "call_function",
                "finality": "final",
                "account_id": self._contract_id,
                "method_name": method,
                "args_base64": base64.b64encode(json.dumps(args).encode("utf-8")).decode("ascii"),
            },
        }
        session = self._open()
        try:
            async with session.post(self._rpc_url, json=payload) as resp:
                if resp.status != 200:
                    text = await resp.text()
                    raise StorageUnavailable(f"NEAR RPC returned {resp.status}: {text[:200]}", resp.status)
                data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise StorageUnavailable(f"NEAR RPC {method} failed: {e}")
        finally:
            await self._release(session)
        if not isinstance(data, dict) or "error" in data:
            raise StorageUnavailable(f"NEAR RPC error: {data.get('error') if isinstance(data, dict) else data}")
        try:
            raw = bytes(data["result"]["result"])
            return json.loads(raw) if raw else None
        except (KeyError, TypeError, ValueError) as e:
            raise StorageUnavailable(f"NEAR RPC {method} returned an unreadable result: {e}")

    async def read(self, proof_hash: str) -> Optional[LedgerRecord]:
        record = await self._view("get", {"proofHash": proof_hash})
        if not record:
            return None
        return LedgerRecord(
            proof_hash=proof_hash,
            timestamp=int(record["timestamp"]),
            stored_by=record.get("stored_by", ""),
        )

    async def exists(self, proof_hash: str) -> bool:
        return bool(await self._view("exists", {"proofHash": proof_hash}))
