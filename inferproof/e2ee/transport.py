# Copyright 2026 Lys-David Louis-Charles (KatchDaVizion)
# inferproof HTTP Transport
#
# The E2EE session only needs "POST bytes, get a status and a body that
# can be read whole or chunk by chunk". TransportLayer captures that so
# sessions run over aiohttp in production and in-memory mocks in tests.

import logging
from abc import ABC, abstractmethod
from typing import AsyncIterator, Dict, Mapping, Optional

import aiohttp

from inferproof.errors import TransportError

logger = logging.getLogger(__name__)


class TransportResponse(ABC):
    """Response to a single POST."""

    status: int = 200
    headers: Mapping[str, str] = {}

    @abstractmethod
    def iter_chunks(self) -> AsyncIterator[bytes]:
        """Body as an async iterator of chunks of arbitrary size."""

    @abstractmethod
    async def read(self) -> bytes:
        """Whole body."""

    @abstractmethod
    async def close(self) -> None:
        """Release the underlying connection."""


class TransportLayer(ABC):
    """Abstract HTTP transport used by E2EESession."""

    @abstractmethod
    async def post(self, url: str, body: bytes, headers: Dict[str, str]) -> TransportResponse:
        """POST body to url. Raises TransportError on connection failure or HTTP >= 400."""

    async def close(self) -> None:
        """Close the transport."""


# ── aiohttp implementation ──────────────────────────────────────────

class AiohttpResponse(TransportResponse):
    def __init__(self, response: aiohttp.ClientResponse):
        self._response = response
        self.status = response.status
        self.headers = dict(response.headers)

    async def iter_chunks(self) -> AsyncIterator[bytes]:
        try:
            async for chunk in self._response.content.iter_any():
                yield chunk
        except aiohttp.ClientError as e:
            raise TransportError(f"Stream read failed: {e}")

    async def read(self) -> bytes:
        try:
            return await self._response.read()
        except aiohttp.ClientError as e:
            raise TransportError(f"Body read failed: {e}")

    async def close(self) -> None:
        self._response.release()


class AiohttpTransport(TransportLayer):
    """TransportLayer over a shared aiohttp.ClientSession."""

    def __init__(
        self,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 30.0,
        api_key: Optional[str] = None,
    ):
        self._session = session
        self._owns_session = session is None
        self._timeout = timeout
        self._api_key = api_key

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            # Streams may run long; only bound connect + gaps between reads
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(
                    total=None, sock_connect=self._timeout, sock_read=self._timeout
                )
            )
        return self._session

    async def post(self, url: str, body: bytes, headers: Dict[str, str]) -> TransportResponse:
        headers = dict(headers)
        if self._api_key:
            headers.setdefault("Authorization", f"Bearer {self._api_key}")
        try:
            response = await self._get_session().post(url, data=body, headers=headers)
        except aiohttp.ClientError as e:
            raise TransportError(f"POST {url} failed: {e}")

        if response.status >= 400:
            text = await response.text()
            response.release()
            raise TransportError(f"POST {url} returned {response.status}: {text[:200]}", response.status)
        logger.debug(f"POST {url} -> {response.status}")
        return AiohttpResponse(response)

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None
