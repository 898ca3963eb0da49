# Copyright 2026 Lys-David Louis-Charles (KatchDaVizion)
# inferproof E2EE Session
#
# One session per conversation with a model endpoint:
#   1. Session key pair derived from a 6-word passphrase
#   2. Outbound: each message with non-empty string content is encrypted
#      to the model's public key under its own ephemeral key (kept so the
#      conversation can later be shared and re-read)
#   3. Inbound stream is tee'd: the live branch is decrypted through a
#      StreamCodec, the capture branch accumulates the untouched wire bytes
#   4. await_capture() yields the WireCapture (request + response bytes,
#      exchange id) the receipt protocol signs and notarizes
#
# Only one exchange is in flight per session; send() cancels any
# previous capture still running.

import asyncio
import copy
import json
import logging
from typing import AsyncIterator, Dict, List, Optional, Sequence, Tuple

from inferproof.crypto.ecies import encrypt_hex
from inferproof.crypto.keys import derive_keypair, generate_keypair, generate_passphrase, load_public_key
from inferproof.e2ee.stream_codec import (
    StreamCodec,
    decrypt_json_body,
    extract_exchange_id,
    extract_output,
)
from inferproof.e2ee.tee import StreamTee
from inferproof.e2ee.transport import TransportLayer, TransportResponse
from inferproof.protocol import ChatData, KeyPair, WireCapture

logger = logging.getLogger(__name__)

SIGNING_ALGO = "ecdsa"

HEADER_SIGNING_ALGO = "X-Signing-Algo"
HEADER_CLIENT_PUB_KEY = "X-Client-Pub-Key"
HEADER_MODEL_PUB_KEY = "X-Model-Pub-Key"

LIVE_BRANCH = 0
CAPTURE_BRANCH = 1


def _normalize_public_key(public_key) -> bytes:
    if isinstance(public_key, str):
        public_key = bytes.fromhex(public_key[2:] if public_key.startswith("0x") else public_key)
    if len(public_key) == 64:
        public_key = b"\x04" + public_key
    load_public_key(public_key)  # raises ValueError on a bad point
    return public_key


class E2EEResponse:
    """
    Decrypted view of one response.
    Streaming responses are consumed with `async for`; read() gathers
    the rest. The wire bytes are captured separately by the session.
    """

    def __init__(
        self,
        status: int,
        headers: Dict[str, str],
        chunks: Optional[AsyncIterator[bytes]] = None,
        body: Optional[bytes] = None,
        codec: Optional[StreamCodec] = None,
        decrypted: int = 0,
        passed_through: int = 0,
    ):
        self.status = status
        self.headers = headers
        self._chunks = chunks
        self._body = body
        self._codec = codec
        self._decrypted = decrypted
        self._passed_through = passed_through

    @property
    def streaming(self) -> bool:
        return self._chunks is not None

    @property
    def decrypted(self) -> int:
        """Content fields decrypted so far."""
        return self._codec.decrypted if self._codec else self._decrypted

    @property
    def passed_through(self) -> int:
        """Content fields that failed to decrypt and were left as-is."""
        return self._codec.passed_through if self._codec else self._passed_through

    def __aiter__(self):
        if self._chunks is None:
            return self._single().__aiter__()
        return self._chunks.__aiter__()

    async def _single(self):
        yield self._body

    async def read(self) -> bytes:
        if self._chunks is None:
            return self._body
        return b"".join([chunk async for chunk in self._chunks])


class E2EESession:
    """End-to-end encrypted exchanges with one model endpoint."""

    def __init__(
        self,
        counterparty_public_key,
        transport: TransportLayer,
        passphrase: Optional[Sequence[str]] = None,
        model: str = "",
    ):
        self.counterparty_public_key = _normalize_public_key(counterparty_public_key)
        self.keypair: KeyPair = derive_keypair(passphrase or generate_passphrase())
        self.model = model
        self._transport = transport
        self._ephemeral_keys: List[Optional[str]] = []
        self._capture: Optional[asyncio.Future] = None
        self._tee: Optional[StreamTee] = None
        self._response: Optional[TransportResponse] = None
        self._closing: Optional[asyncio.Future] = None

    @property
    def ephemeral_private_keys(self) -> List[Optional[str]]:
        """Hex ephemeral key per request message of the last exchange (None where not encrypted)."""
        return list(self._ephemeral_keys)

    # ── Outbound ────────────────────────────────────────────────────

    def headers(self) -> Dict[str, str]:
        return {
            HEADER_SIGNING_ALGO: SIGNING_ALGO,
            HEADER_CLIENT_PUB_KEY: self.keypair.public_key_hex,
            HEADER_MODEL_PUB_KEY: self.counterparty_public_key[1:].hex(),
        }

    def encrypt_request(self, body: Dict) -> Tuple[bytes, Dict[str, str]]:
        """
        Encrypt message contents and serialize the request.
        Returns (wire_bytes, e2ee_headers). wire_bytes is what gets hashed.
        """
        body = copy.deepcopy(body)
        keys: List[Optional[str]] = []
        for message in body.get("messages") or []:
            content = message.get("content") if isinstance(message, dict) else None
            if isinstance(content, str) and content:
                ephemeral = generate_keypair()
                message["content"] = encrypt_hex(
                    content, self.counterparty_public_key, ephemeral.private_key
                )
                keys.append(ephemeral.private_key.hex())
            else:
                keys.append(None)
        if not self.model and isinstance(body.get("model"), str):
            self.model = body["model"]

        wire = json.dumps(body, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
        self._ephemeral_keys = keys
        logger.debug(f"Encrypted {sum(1 for k in keys if k)} of {len(keys)} messages")
        return wire, self.headers()

    async def send(self, url: str, body: Dict, headers: Optional[Dict[str, str]] = None) -> E2EEResponse:
        """Encrypt, POST and return the decrypted response. Capture starts immediately."""
        self.cancel()
        wire, e2ee_headers = self.encrypt_request(body)
        all_headers = {"Content-Type": "application/json"}
        all_headers.update(headers or {})
        all_headers.update(e2ee_headers)

        response = await self._transport.post(url, wire, all_headers)
        if body.get("stream"):
            return self.wrap_response_stream(wire, response)
        return await self._read_whole(wire, response)

    # ── Inbound ─────────────────────────────────────────────────────

    def wrap_response_stream(self, request_body: bytes, response: TransportResponse) -> E2EEResponse:
        """Tee a streaming response into a decrypted live branch and a raw capture branch."""
        self.cancel()
        tee = StreamTee(response.iter_chunks(), branches=2)
        self._tee = tee
        self._response = response
        codec = StreamCodec(self.keypair.private_key)
        self._capture = asyncio.ensure_future(
            self._run_capture(request_body, tee.branch(CAPTURE_BRANCH), response)
        )
        return E2EEResponse(
            status=response.status,
            headers=dict(response.headers),
            chunks=self._decrypt_live(tee.branch(LIVE_BRANCH), codec),
            codec=codec,
        )

    async def _decrypt_live(self, chunks: AsyncIterator[bytes], codec: StreamCodec) -> AsyncIterator[bytes]:
        async for chunk in chunks:
            result = codec.feed(chunk)
            if result.data:
                yield result.data
        tail = codec.flush()
        if tail.data:
            yield tail.data
        if codec.passed_through:
            logger.warning(f"{codec.passed_through} content fields could not be decrypted")

    async def _run_capture(
        self, request_body: bytes, chunks: AsyncIterator[bytes], response: TransportResponse
    ) -> WireCapture:
        parts = []
        try:
            async for chunk in chunks:
                parts.append(chunk)
        finally:
            if self._response is response:
                self._response = None
            await response.close()
        body = b"".join(parts)
        capture = WireCapture(
            request_body=request_body,
            response_body=body,
            exchange_id=extract_exchange_id(body),
        )
        logger.info(f"Captured exchange {capture.exchange_id}: {len(body)} response bytes")
        return capture

    async def _read_whole(self, request_body: bytes, response: TransportResponse) -> E2EEResponse:
        try:
            body = await response.read()
        finally:
            await response.close()
        capture = WireCapture(
            request_body=request_body,
            response_body=body,
            exchange_id=extract_exchange_id(body),
        )
        future = asyncio.get_running_loop().create_future()
        future.set_result(capture)
        self._capture = future

        decrypted, result = decrypt_json_body(body, self.keypair.private_key)
        return E2EEResponse(
            status=response.status,
            headers=dict(response.headers),
            body=decrypted,
            decrypted=result.decrypted,
            passed_through=result.passed_through,
        )

    def decrypt_response_body(self, body: bytes) -> bytes:
        """Decrypt a complete captured response body (SSE or JSON)."""
        if body.lstrip().startswith(b"data: "):
            return StreamCodec(self.keypair.private_key).decode_all(body).data
        return decrypt_json_body(body, self.keypair.private_key)[0]

    # ── Capture ─────────────────────────────────────────────────────

    async def await_capture(self) -> Optional[WireCapture]:
        """
        Wait for the capture of the current exchange.
        Returns None if there is none, or it failed or was cancelled.
        """
        capture = self._capture
        if capture is None:
            return None
        try:
            return await asyncio.shield(capture)
        except asyncio.CancelledError:
            if not capture.cancelled():
                raise
            logger.warning("Capture was cancelled")
            return None
        except Exception as e:
            logger.warning(f"Capture failed: {e}")
            return None

    def cancel(self) -> None:
        """
        Abort the in-flight exchange. The live branch raises TransportError
        on its next read, the capture resolves to None and the response
        is released, even if none of them had started yet.
        """
        if self._tee is not None:
            self._tee.cancel()
        if self._capture is not None and not self._capture.done():
            self._capture.cancel()
        if self._response is not None:
            response, self._response = self._response, None
            self._closing = asyncio.ensure_future(response.close())

    def chat_data(self, capture: WireCapture) -> ChatData:
        """Shareable record of a captured exchange, including the decrypted output."""
        output = extract_output(self.decrypt_response_body(capture.response_body))
        return ChatData.from_capture(
            capture,
            output=output,
            model=self.model,
            e2ee=True,
            model_public_key=self.counterparty_public_key[1:].hex(),
            client_public_key=self.keypair.public_key_hex,
            ephemeral_private_keys=list(self._ephemeral_keys),
        )


def open_session(
    counterparty_public_key,
    transport: TransportLayer,
    passphrase: Optional[Sequence[str]] = None,
    model: str = "",
) -> E2EESession:
    """Start an E2EE session with the holder of counterparty_public_key."""
    session = E2EESession(counterparty_public_key, transport, passphrase=passphrase, model=model)
    logger.info(f"Opened E2EE session (client key {session.keypair.public_key_hex[:16]}...)")
    return session
