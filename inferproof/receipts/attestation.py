# Copyright 2026 Lys-David Louis-Charles (KatchDaVizion)
# inferproof Hardware Attestation Checks
#
# Confirms the signing key behind a receipt lives in genuine confidential
# hardware running the expected deployment. One attestation report is
# fetched per (model, signing address) and shared by all checks:
#
#   model_gpu        NVIDIA evidence posted to NRAS; overall result claim true
#   model_tdx        TDX quote verified; report data binds address + nonce
#   model_compose    compose-hash event equals sha256(app_compose)
#   gateway_tdx      same TDX check for the API gateway
#   gateway_compose  same compose check for the API gateway

import asyncio
import base64
import hashlib
import json
import logging
import secrets
from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple

import aiohttp

from inferproof.config import NEAR_AI_BASE_URL, NRAS_BASE_URL, QUOTE_VERIFY_URL
from inferproof.errors import AttestationUnreachable
from inferproof.protocol import CheckResult, Receipt

logger = logging.getLogger(__name__)

HARDWARE_CHECKS = ("model_gpu", "model_tdx", "model_compose", "gateway_tdx", "gateway_compose")

# TDX quote v4: 48-byte header, report_data is the last 64 bytes of the 584-byte TD report
REPORT_DATA_OFFSET = 568
REPORT_DATA_SIZE = 64

NRAS_RESULT_CLAIM = "x-nvidia-overall-att-result"

REPORT_RETRIES = 3
RETRY_DELAY = 1.0  # seconds


class AttestationChecker(ABC):
    """Source of the hardware checks for a receipt."""

    @abstractmethod
    async def model_gpu(self, receipt: Receipt) -> CheckResult: ...

    @abstractmethod
    async def model_tdx(self, receipt: Receipt) -> CheckResult: ...

    @abstractmethod
    async def model_compose(self, receipt: Receipt) -> CheckResult: ...

    @abstractmethod
    async def gateway_tdx(self, receipt: Receipt) -> CheckResult: ...

    @abstractmethod
    async def gateway_compose(self, receipt: Receipt) -> CheckResult: ...


# ── Report helpers ──────────────────────────────────────────────────

def _address_bytes(address: str) -> bytes:
    return bytes.fromhex(address[2:] if address.lower().startswith("0x") else address)


def expected_report_data(signing_address: str, nonce: str) -> bytes:
    """Address left-aligned in 32 zero-padded bytes, followed by the 32-byte nonce."""
    address = _address_bytes(signing_address)
    return address.ljust(32, b"\x00") + bytes.fromhex(nonce)


def quote_report_data(quote_hex: str) -> bytes:
    quote = bytes.fromhex(quote_hex[2:] if quote_hex.startswith("0x") else quote_hex)
    if len(quote) < REPORT_DATA_OFFSET + REPORT_DATA_SIZE:
        raise ValueError(f"quote too short ({len(quote)} bytes)")
    return quote[REPORT_DATA_OFFSET:REPORT_DATA_OFFSET + REPORT_DATA_SIZE]


def _jwt_claims(token: str) -> Dict:
    payload = token.split(".")[1]
    payload += "=" * (-len(payload) % 4)
    return json.loads(base64.urlsafe_b64decode(payload))


def nras_overall_result(response) -> bool:
    """NRAS answers [["JWT", <overall token>], {<gpu>: <token>, ...}]."""
    overall = response[0]
    token = overall[1] if isinstance(overall, list) else overall
    return bool(_jwt_claims(token).get(NRAS_RESULT_CLAIM))


def _tcb_info(attestation: Dict) -> Dict:
    info = attestation.get("info") or {}
    tcb = info.get("tcb_info") if isinstance(info, dict) else None
    if isinstance(tcb, str):
        tcb = json.loads(tcb)
    return tcb or {}


def check_compose(attestation: Dict) -> CheckResult:
    tcb = _tcb_info(attestation)
    app_compose = tcb.get("app_compose")
    if not app_compose:
        return CheckResult.fail("app compose manifest missing")
    expected = hashlib.sha256(app_compose.encode("utf-8")).hexdigest()
    for event in tcb.get("event_log") or attestation.get("event_log") or []:
        if event.get("event") == "compose-hash":
            if event.get("event_payload", "").lower() == expected:
                return CheckResult.ok()
            return CheckResult.fail("compose hash does not match manifest")
    return CheckResult.fail("compose hash event not found")


# ── NEAR AI Cloud ───────────────────────────────────────────────────

class NearAIAttestationChecker(AttestationChecker):
    """Checks against the NEAR AI Cloud attestation report, NVIDIA NRAS and a TDX quote verifier."""

    def __init__(
        self,
        base_url: str = NEAR_AI_BASE_URL,
        nras_url: str = NRAS_BASE_URL,
        quote_verify_url: str = QUOTE_VERIFY_URL,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 30.0,
    ):
        self._base_url = base_url.rstrip("/")
        self._nras_url = nras_url.rstrip("/")
        self._quote_verify_url = quote_verify_url
        self._session = session
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._reports: Dict[Tuple[str, str], asyncio.Future] = {}

    async def _request(self, method: str, url: str, **kwargs):
        session = self._session or aiohttp.ClientSession(timeout=self._timeout)
        try:
            async with session.request(method, url, **kwargs) as resp:
                if resp.status != 200:
                    text = await resp.text()
                    raise AttestationUnreachable(f"{url} returned {resp.status}: {text[:200]}")
                return await resp.json(content_type=None)
        except aiohttp.ClientError as e:
            raise AttestationUnreachable(f"{url} failed: {e}")
        finally:
            if self._session is None:
                await session.close()

    async def _fetch_report(self, model: str, signing_address: str) -> Tuple[Dict, str]:
        nonce = secrets.token_hex(32)
        params = {
            "model": model,
            "signing_algo": "ecdsa",
            "nonce": nonce,
            "signing_address": signing_address,
        }
        for attempt in range(REPORT_RETRIES):
            try:
                report = await self._request("GET", f"{self._base_url}/attestation/report", params=params)
                return report, nonce
            except AttestationUnreachable as e:
                logger.warning(f"Attestation report attempt {attempt + 1}/{REPORT_RETRIES}: {e}")
                if attempt + 1 == REPORT_RETRIES:
                    raise
                await asyncio.sleep(RETRY_DELAY)

    async def report(self, receipt: Receipt) -> Tuple[Dict, str]:
        """Attestation report and the nonce it was requested with, fetched once per receipt."""
        key = (receipt.model, receipt.signing_address.lower())
        future = self._reports.get(key)
        if future is None or (future.done() and (future.cancelled() or future.exception() is not None)):
            future = asyncio.ensure_future(self._fetch_report(receipt.model, receipt.signing_address))
            self._reports[key] = future
        return await asyncio.shield(future)

    async def _model_attestation(self, receipt: Receipt) -> Tuple[Dict, str]:
        report, nonce = await self.report(receipt)
        attestations = report.get("model_attestations") or []
        if not attestations:
            raise AttestationUnreachable(f"No model attestation found for model: {receipt.model}")
        wanted = receipt.signing_address.lower()
        for attestation in attestations:
            if str(attestation.get("signing_address", "")).lower() == wanted:
                return attestation, nonce
        raise AttestationUnreachable(f"No model attestation for signing address {receipt.signing_address}")

    async def _gateway_attestation(self, receipt: Receipt) -> Tuple[Dict, str]:
        report, nonce = await self.report(receipt)
        gateway = report.get("gateway_attestation")
        if not gateway:
            raise AttestationUnreachable("No gateway attestation in report")
        return gateway, nonce

    async def _check_tdx(self, attestation: Dict, nonce: str) -> CheckResult:
        quote = attestation.get("intel_quote")
        if not quote:
            return CheckResult.fail("intel quote missing")
        result = await self._request("POST", self._quote_verify_url, json={"hex": quote})
        verified = (result.get("quote") or {}).get("verified", result.get("verified"))
        if not verified:
            return CheckResult.fail("tdx quote verification failed")

        address = attestation.get("signing_address", "")
        request_nonce = attestation.get("request_nonce") or nonce
        if request_nonce != nonce:
            return CheckResult.fail("attestation nonce does not match request")
        if quote_report_data(quote) != expected_report_data(address, nonce):
            return CheckResult.fail("tdx report data does not bind signing address")
        return CheckResult.ok()

    async def model_gpu(self, receipt: Receipt) -> CheckResult:
        attestation, nonce = await self._model_attestation(receipt)
        payload = attestation.get("nvidia_payload")
        if not payload:
            return CheckResult.fail("nvidia payload missing")
        evidence = json.loads(payload) if isinstance(payload, str) else payload
        if evidence.get("nonce", nonce).lower() != nonce:
            return CheckResult.fail("gpu evidence nonce does not match request")
        response = await self._request("POST", f"{self._nras_url}/attest/gpu", json=evidence)
        if not nras_overall_result(response):
            return CheckResult.fail("gpu attestation failed")
        return CheckResult.ok()

    async def model_tdx(self, receipt: Receipt) -> CheckResult:
        attestation, nonce = await self._model_attestation(receipt)
        return await self._check_tdx(attestation, nonce)

    async def model_compose(self, receipt: Receipt) -> CheckResult:
        attestation, _ = await self._model_attestation(receipt)
        return check_compose(attestation)

    async def gateway_tdx(self, receipt: Receipt) -> CheckResult:
        attestation, nonce = await self._gateway_attestation(receipt)
        return await self._check_tdx(attestation, nonce)

    async def gateway_compose(self, receipt: Receipt) -> CheckResult:
        attestation, _ = await self._gateway_attestation(receipt)
        return check_compose(attestation)
