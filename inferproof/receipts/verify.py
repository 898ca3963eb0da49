# Copyright 2026 Lys-David Louis-Charles (KatchDaVizion)
# inferproof Verifier
#
# Re-checks a Receipt without trusting whoever produced it:
#   chat        proof hash recomputes; signature over "<rh>:<resp_h>"
#               belongs to signing_address
#   notorized   ledger holds proof_hash with exactly receipt.timestamp
#   model_* / gateway_*  hardware attestation (see attestation.py)
#
# Checks run concurrently, bounded by a semaphore and a per-check
# timeout. A failing or crashing check only marks itself invalid.
# The aggregate gates on chat, notorized, model_gpu, model_tdx and
# gateway_tdx; compose checks are reported but do not gate it.

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional, Tuple

from inferproof.crypto.signatures import verify_signature
from inferproof.protocol import (
    NOT_CHECKED,
    CheckResult,
    Receipt,
    VerificationResult,
    WireCapture,
    signature_text,
)
from inferproof.receipts.attestation import HARDWARE_CHECKS, AttestationChecker
from inferproof.receipts.ledger import NotarizationLedger

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0  # seconds per check
DEFAULT_CONCURRENCY = 4


async def check_chat(receipt: Receipt, capture: Optional[WireCapture] = None) -> CheckResult:
    if capture is not None:
        if capture.request_hash != receipt.request_hash:
            return CheckResult.fail("request hash does not match")
        if capture.response_hash != receipt.response_hash:
            return CheckResult.fail("response hash does not match")
    if receipt.expected_proof_hash() != receipt.proof_hash:
        return CheckResult.fail("proof hash does not match")
    text = signature_text(receipt.request_hash, receipt.response_hash)
    try:
        valid = verify_signature(text, receipt.signature, receipt.signing_address, receipt.signing_algo)
    except ValueError as e:
        return CheckResult.fail(str(e))
    if not valid:
        return CheckResult.fail("signature does not match signing address")
    return CheckResult.ok()


async def check_notorized(receipt: Receipt, ledger: NotarizationLedger) -> CheckResult:
    record = await ledger.read(receipt.proof_hash)
    if record is None:
        return CheckResult.fail("proof hash not found")
    if record.timestamp != receipt.timestamp:
        return CheckResult.fail("timestamp does not match")
    return CheckResult.ok()


async def _not_checked() -> CheckResult:
    return CheckResult.fail(NOT_CHECKED)


async def _run_check(
    name: str,
    factory: Callable[[], Awaitable[CheckResult]],
    semaphore: asyncio.Semaphore,
    timeout: float,
) -> Tuple[str, CheckResult]:
    async with semaphore:
        try:
            return name, await asyncio.wait_for(factory(), timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Check {name} timed out after {timeout}s")
            return name, CheckResult.fail(f"{name} check timed out")
        except Exception as e:
            logger.warning(f"Check {name} failed: {e}")
            return name, CheckResult.fail(str(e) or type(e).__name__)


def _bind(attestation: AttestationChecker, name: str, receipt: Receipt):
    method = getattr(attestation, name)
    return lambda: method(receipt)


async def verify(
    receipt: Receipt,
    ledger: NotarizationLedger,
    attestation: Optional[AttestationChecker] = None,
    capture: Optional[WireCapture] = None,
    timeout: float = DEFAULT_TIMEOUT,
    max_concurrency: int = DEFAULT_CONCURRENCY,
) -> VerificationResult:
    """
    Independently verify a receipt.

    Args:
        receipt: the receipt to check
        ledger: notarization ledger to look the proof hash up in
        attestation: hardware attestation source; checks report
            "attestation not checked" without one
        capture: optional wire bytes; when given, the receipt's hashes
            must match them
    """
    semaphore = asyncio.Semaphore(max_concurrency)
    factories: Dict[str, Callable[[], Awaitable[CheckResult]]] = {
        "chat": lambda: check_chat(receipt, capture),
        "notorized": lambda: check_notorized(receipt, ledger),
    }
    for name in HARDWARE_CHECKS:
        if attestation is None:
            factories[name] = _not_checked
        else:
            factories[name] = _bind(attestation, name, receipt)

    results = await asyncio.gather(*(
        _run_check(name, factory, semaphore, timeout) for name, factory in factories.items()
    ))
    outcome = VerificationResult.aggregate(dict(results))
    if outcome.valid:
        logger.info(f"Receipt {receipt.proof_hash[:16]}... verified")
    else:
        logger.info(f"Receipt {receipt.proof_hash[:16]}... invalid: {outcome.result.message}")
    return outcome