# Copyright 2026 Lys-David Louis-Charles (KatchDaVizion)
# inferproof Receipt Protocol — attest
#
# WireCapture -> Receipt:
#   1. request_hash / response_hash = sha256 of the captured bytes
#   2. Remote signer signs "<request_hash>:<response_hash>"; the text it
#      returns must match exactly
#   3. proof_hash = sha256("<rh>:<resp_h>:<signature>:<timestamp>")
#   4. (proof_hash, timestamp) notarized on the ledger -> tx_hash
#
# Nothing partial is returned: any failure raises and no Receipt exists.

import logging
import time
from typing import Optional

from inferproof.errors import NotarizationFailed, SignatureMismatch, SigningUnavailable
from inferproof.protocol import Receipt, WireCapture, compute_proof_hash, signature_text
from inferproof.receipts.ledger import NotarizationLedger
from inferproof.receipts.signer import RemoteSigner

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


async def notarize(ledger: NotarizationLedger, proof_hash: str, timestamp: int) -> str:
    """Write to the ledger unless the same record is already there."""
    try:
        existing = await ledger.read(proof_hash)
    except Exception as e:
        logger.warning(f"Ledger lookup failed, writing anyway: {e}")
        existing = None
    if existing is not None and existing.timestamp == timestamp and existing.tx_hash:
        logger.info(f"Proof {proof_hash[:16]}... already notarized (tx {existing.tx_hash})")
        return existing.tx_hash

    try:
        return await ledger.write(proof_hash, timestamp)
    except NotarizationFailed:
        raise
    except Exception as e:
        raise NotarizationFailed(f"Ledger write failed: {e}")


async def attest(
    capture: WireCapture,
    signer: RemoteSigner,
    ledger: NotarizationLedger,
    output: str = "",
    model: str = "",
    prompt: str = "",
    timestamp: Optional[int] = None,
) -> Receipt:
    """Sign and notarize a captured exchange."""
    request_hash = capture.request_hash
    response_hash = capture.response_hash

    try:
        signed = await signer.sign(capture.exchange_id, model, request_hash, response_hash)
    except SigningUnavailable:
        raise
    except Exception as e:
        raise SigningUnavailable(f"Signer failed: {e}")

    expected = signature_text(request_hash, response_hash)
    if signed.text != expected:
        logger.warning(f"Signer text {signed.text[:40]}... does not match {expected[:40]}...")
        raise SignatureMismatch("signature mismatch")

    if timestamp is None:
        timestamp = now_ms()
    proof_hash = compute_proof_hash(request_hash, response_hash, signed.signature, timestamp)
    tx_hash = await notarize(ledger, proof_hash, timestamp)

    receipt = Receipt(
        request_hash=request_hash,
        response_hash=response_hash,
        signature=signed.signature,
        signing_address=signed.signing_address,
        signing_algo=signed.signing_algo,
        proof_hash=proof_hash,
        timestamp=timestamp,
        tx_hash=tx_hash,
        model=model,
        prompt=prompt,
        output=output,
    )
    logger.info(f"Attested exchange {capture.exchange_id}: proof {proof_hash[:16]}... tx {tx_hash[:16]}...")
    return receipt
