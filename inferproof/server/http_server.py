# Copyright 2026 Lys-David Louis-Charles (KatchDaVizion)
# inferproof Attestation API Server
#
# aiohttp server exposing the notarization ledger and the share store
# over the same routes the hosted attestation API uses, so HttpLedger and
# HttpBlobStore work against a local instance:
#
#   POST /api/store              {proofHash, timestamp}     -> {txHash}
#   GET  /api/store/{proof_hash}                            -> record | 404
#   POST /api/share/store        {requestHash, responseHash,
#                                 signature, binary(base64)} -> {id}
#   GET  /api/share/{id}                                    -> bytes | 404
#   GET  /health

import base64
import binascii
import logging
from typing import Optional

from aiohttp import web

from inferproof.errors import NotarizationFailed, NotFound
from inferproof.receipts.ledger import SqliteLedger
from inferproof.share.store import SqliteBlobStore

logger = logging.getLogger(__name__)

DEFAULT_PORT = 8390
MAX_BODY_SIZE = 16 * 1024 * 1024  # 16MB per share upload


class AttestationApiServer:
    """Local attestation API backed by SQLite."""

    def __init__(
        self,
        ledger: SqliteLedger,
        blobs: SqliteBlobStore,
        host: str = "0.0.0.0",
        port: int = DEFAULT_PORT,
    ):
        self._ledger = ledger
        self._blobs = blobs
        self._host = host
        self._port = port
        self._app: Optional[web.Application] = None
        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None

    def make_app(self) -> web.Application:
        app = web.Application(client_max_size=MAX_BODY_SIZE)
        app.router.add_post("/api/store", self._handle_store)
        app.router.add_get("/api/store/{proof_hash}", self._handle_get_record)
        app.router.add_post("/api/share/store", self._handle_share_store)
        app.router.add_get("/api/share/{share_id}", self._handle_share_get)
        app.router.add_get("/health", self._handle_health)
        return app

    async def start(self) -> None:
        """Start the HTTP server."""
        self._app = self.make_app()
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self._host, self._port)
        await self._site.start()
        logger.info(f"Attestation API listening on {self._host}:{self.port}")

    async def stop(self) -> None:
        """Stop the HTTP server."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None

    @property
    def port(self) -> int:
        """Actual bound port (useful when port=0 for ephemeral)."""
        if self._site and self._site._server:
            sockets = self._site._server.sockets
            if sockets:
                return sockets[0].getsockname()[1]
        return self._port

    @property
    def url(self) -> str:
        host = "127.0.0.1" if self._host in ("0.0.0.0", "") else self._host
        return f"http://{host}:{self.port}"

    async def _json_body(self, request: web.Request) -> dict:
        try:
            body = await request.json()
        except ValueError:
            raise web.HTTPBadRequest(text="body is not JSON")
        if not isinstance(body, dict):
            raise web.HTTPBadRequest(text="body must be a JSON object")
        return body

    async def _handle_store(self, request: web.Request) -> web.Response:
        body = await self._json_body(request)
        proof_hash = body.get("proofHash")
        timestamp = body.get("timestamp")
        if not isinstance(proof_hash, str) or not proof_hash or not isinstance(timestamp, int) or isinstance(timestamp, bool):
            raise web.HTTPBadRequest(text="proofHash and integer timestamp required")
        try:
            tx_hash = await self._ledger.write(proof_hash, timestamp)
        except NotarizationFailed as e:
            logger.error(f"Store failed for {proof_hash[:16]}...: {e}")
            raise web.HTTPInternalServerError(text=str(e))
        return web.json_response({"txHash": tx_hash})

    async def _handle_get_record(self, request: web.Request) -> web.Response:
        record = await self._ledger.read(request.match_info["proof_hash"])
        if record is None:
            raise web.HTTPNotFound(text="proof hash not found")
        return web.json_response({
            "proofHash": record.proof_hash,
            "timestamp": record.timestamp,
            "txHash": record.tx_hash,
            "stored_by": record.stored_by,
        })

    async def _handle_share_store(self, request: web.Request) -> web.Response:
        body = await self._json_body(request)
        try:
            binary = base64.b64decode(body.get("binary") or "", validate=True)
        except (binascii.Error, TypeError):
            raise web.HTTPBadRequest(text="binary must be base64")
        if not binary:
            raise web.HTTPBadRequest(text="binary is empty")
        share_id = await self._blobs.upload(
            binary,
            str(body.get("requestHash", "")),
            str(body.get("responseHash", "")),
            str(body.get("signature", "")),
        )
        return web.json_response({"id": share_id})

    async def _handle_share_get(self, request: web.Request) -> web.Response:
        try:
            binary = await self._blobs.download(request.match_info["share_id"])
        except NotFound:
            raise web.HTTPNotFound(text="share not found")
        return web.Response(body=binary, content_type="application/octet-stream")

    async def _handle_health(self, request: web.Request) -> web.Response:
        """Health check endpoint."""
        return web.json_response({
            "status": "ok",
            "proofs": self._ledger.count(),
            "shares": self._blobs.count(),
        })
