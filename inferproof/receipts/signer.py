# Copyright 2026 Lys-David Louis-Charles (KatchDaVizion)
# inferproof Remote Signer
#
# The inference provider's enclave signs "<request_hash>:<response_hash>"
# for each exchange it served. RemoteSigner is the interface the receipt
# protocol consumes; NearAISigner fetches the signature from the NEAR AI
# Cloud API, LocalSigner signs with a key held in-process (development
# server and tests).

import logging
from abc import ABC, abstractmethod
from typing import Optional

import aiohttp
from pydantic import ValidationError

from inferproof.config import NEAR_AI_BASE_URL
from inferproof.crypto.signatures import generate_signing_key, sign_text
from inferproof.errors import SigningUnavailable
from inferproof.protocol import SignatureResponse, signature_text

logger = logging.getLogger(__name__)


class RemoteSigner(ABC):
    """Produces the enclave signature for one exchange."""

    @abstractmethod
    async def sign(
        self, exchange_id: Optional[str], model: str, request_hash: str, response_hash: str
    ) -> SignatureResponse:
        """Return the signature record. Raises SigningUnavailable on failure."""


class NearAISigner(RemoteSigner):
    """GET {base}/signature/{exchange_id}?model=...&signing_algo=ecdsa"""

    def __init__(
        self,
        api_key: str,
        base_url: str = NEAR_AI_BASE_URL,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 30.0,
        signing_algo: str = "ecdsa",
    ):
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._session = session
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._signing_algo = signing_algo

    async def sign(self, exchange_id, model, request_hash, response_hash) -> SignatureResponse:
        if not exchange_id:
            raise SigningUnavailable("exchange id is required to fetch a signature")
        url = f"{self._base_url}/signature/{exchange_id}"
        params = {"model": model, "signing_algo": self._signing_algo}
        headers = {"Content-Type": "application/json", "Authorization": f"Bearer {self._api_key}"}

        session = self._session or aiohttp.ClientSession(timeout=self._timeout)
        try:
            async with session.get(url, params=params, headers=headers) as resp:
                if resp.status != 200:
                    text = await resp.text()
                    raise SigningUnavailable(f"Failed to fetch signature ({resp.status}): {text[:200]}")
                data = await resp.json(content_type=None)
        except aiohttp.ClientError as e:
            raise SigningUnavailable(f"Signature request failed: {e}")
        finally:
            if self._session is None:
                await session.close()

        try:
            return SignatureResponse.model_validate(data)
        except ValidationError as e:
            raise SigningUnavailable(f"Malformed signature response: {e}")


class LocalSigner(RemoteSigner):
    """Signs with an in-process key. Stands in for an enclave during development."""

    def __init__(self, algo: str = "ecdsa", private_key: Optional[bytes] = None, address: str = ""):
        if private_key is None:
            private_key, address = generate_signing_key(algo)
        self.algo = algo
        self.address = address
        self._private_key = private_key

    async def sign(self, exchange_id, model, request_hash, response_hash) -> SignatureResponse:
        text = signature_text(request_hash, response_hash)
        return SignatureResponse(
            text=text,
            signature=sign_text(text, self._private_key, self.algo),
            signing_address=self.address,
            signing_algo=self.algo,
        )
