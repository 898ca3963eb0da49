# Copyright 2026 Lys-David Louis-Charles (KatchDaVizion)
# Mock Services — signer, ledger and attestation doubles for testing
#
# Wrap the real local implementations and add failure injection and
# call counting. No network involved.

import asyncio
from typing import Dict, Optional

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(os.path.abspath(__file__)), '..', '..'))

from inferproof.errors import NotarizationFailed, SigningUnavailable
from inferproof.protocol import CheckResult, LedgerRecord, Receipt, SignatureResponse
from inferproof.receipts.attestation import HARDWARE_CHECKS, AttestationChecker
from inferproof.receipts.ledger import NotarizationLedger, SqliteLedger
from inferproof.receipts.signer import LocalSigner


class MockSigner(LocalSigner):
    """LocalSigner that can be made unreachable or sign the wrong text."""

    def __init__(self, algo: str = "ecdsa", unavailable: bool = False, wrong_text: bool = False):
        super().__init__(algo)
        self.unavailable = unavailable
        self.wrong_text = wrong_text
        self.calls = 0

    async def sign(self, exchange_id, model, request_hash, response_hash) -> SignatureResponse:
        self.calls += 1
        if self.unavailable:
            raise SigningUnavailable("mock signer offline")
        signed = await super().sign(exchange_id, model, request_hash, response_hash)
        if self.wrong_text:
            return signed.model_copy(update={"text": f"{'0' * 64}:{response_hash}"})
        return signed


class MockLedger(NotarizationLedger):
    """In-memory SqliteLedger with injectable write failures."""

    def __init__(self, fail_writes: int = 0):
        self.inner = SqliteLedger(":memory:", stored_by="mock")
        self.fail_writes = fail_writes
        self.writes = 0
        self.reads = 0

    async def write(self, proof_hash: str, timestamp: int) -> str:
        self.writes += 1
        if self.fail_writes > 0:
            self.fail_writes -= 1
            raise NotarizationFailed("mock ledger rejected write")
        return await self.inner.write(proof_hash, timestamp)

    async def read(self, proof_hash: str) -> Optional[LedgerRecord]:
        self.reads += 1
        return await self.inner.read(proof_hash)

    def count(self) -> int:
        return self.inner.count()


class MockAttestationChecker(AttestationChecker):
    """
    Returns canned results per check. A check mapped to an exception
    raises it; `delay` slows every check down.
    """

    def __init__(self, results: Optional[Dict] = None, delay: float = 0.0):
        self.results = {name: CheckResult.ok() for name in HARDWARE_CHECKS}
        self.results.update(results or {})
        self.delay = delay
        self.calls = []

    async def _result(self, name: str) -> CheckResult:
        self.calls.append(name)
        if self.delay:
            await asyncio.sleep(self.delay)
        result = self.results[name]
        if isinstance(result, Exception):
            raise result
        return result

    async def model_gpu(self, receipt: Receipt) -> CheckResult:
        return await self._result("model_gpu")

    async def model_tdx(self, receipt: Receipt) -> CheckResult:
        return await self._result("model_tdx")

    async def model_compose(self, receipt: Receipt) -> CheckResult:
        return await self._result("model_compose")

    async def gateway_tdx(self, receipt: Receipt) -> CheckResult:
        return await self._result("gateway_tdx")

    async def gateway_compose(self, receipt: Receipt) -> CheckResult:
        return await self._result("gateway_compose")
