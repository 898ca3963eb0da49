# Copyright 2026 Lys-David Louis-Charles (KatchDaVizion)
# inferproof Model Public Keys
#
# Looks up the public key an E2EE session encrypts to. The inference
# provider publishes it in the model's attestation report; keys are
# cached per model for a few minutes.

import logging
import secrets
import time
from typing import Dict, Optional, Tuple

import aiohttp

from inferproof.config import NEAR_AI_BASE_URL
from inferproof.errors import AttestationUnreachable

logger = logging.getLogger(__name__)

CACHE_TTL = 5 * 60  # seconds


class ModelPublicKeys:
    """TTL cache of model signing public keys keyed by model id."""

    def __init__(
        self,
        base_url: str = NEAR_AI_BASE_URL,
        session: Optional[aiohttp.ClientSession] = None,
        ttl: float = CACHE_TTL,
        timeout: float = 30.0,
    ):
        self._base_url = base_url.rstrip("/")
        self._session = session
        self._ttl = ttl
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._cache: Dict[str, Tuple[str, str, float]] = {}

    async def _fetch(self, model: str) -> Tuple[str, str]:
        params = {"model": model, "signing_algo": "ecdsa", "nonce": secrets.token_hex(32)}
        url = f"{self._base_url}/attestation/report"
        session = self._session or aiohttp.ClientSession(timeout=self._timeout)
        try:
            async with session.get(url, params=params) as resp:
                if resp.status != 200:
                    text = await resp.text()
                    raise AttestationUnreachable(
                        f"Model attestation for {model} returned {resp.status}: {text[:200]}"
                    )
                report = await resp.json(content_type=None)
        except aiohttp.ClientError as e:
            raise AttestationUnreachable(f"Model attestation for {model} failed: {e}")
        finally:
            if self._session is None:
                await session.close()

        attestations = report.get("model_attestations") or []
        if not attestations:
            raise AttestationUnreachable(f"No model attestation found for model: {model}")
        public_key = attestations[0].get("signing_public_key")
        if not public_key:
            raise AttestationUnreachable(f"Model attestation missing signing_public_key for model: {model}")
        return public_key, attestations[0].get("signing_address", "")

    async def get(self, model: str) -> Tuple[str, str]:
        """(public_key_hex, signing_address) for model, fetched if missing or stale."""
        cached = self._cache.get(model)
        if cached and time.time() - cached[2] < self._ttl:
            return cached[0], cached[1]
        public_key, address = await self._fetch(model)
        self._cache[model] = (public_key, address, time.time())
        logger.info(f"Fetched public key for {model} (address {address})")
        return public_key, address

    def invalidate(self, model: Optional[str] = None) -> None:
        if model is None:
            self._cache.clear()
        else:
            self._cache.pop(model, None)
