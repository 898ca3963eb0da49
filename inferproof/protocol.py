# Copyright 2026 Lys-David Louis-Charles (KatchDaVizion)
# inferproof Data Model
#
# Shared records passed between the E2EE session, the receipt protocol,
# the verifier and the share bundle:
#   - KeyPair: secp256k1 pair, optionally derived from a passphrase
#   - WireCapture: exact bytes that crossed the wire for one exchange
#   - ChatData: capture + decrypted output + key material for sharing
#   - Receipt: signed, notarized claim about one exchange
#   - VerificationResult: per-check outcome of re-verifying a Receipt
#   - SharePayload / Reference / TextRange: sharing and citation

import hashlib
import json
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from inferproof import RECEIPT_VERSION

HASH_ALGORITHM = "sha256"


# ── Hash helpers ────────────────────────────────────────────────────

def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def signature_text(request_hash: str, response_hash: str) -> str:
    """Message the remote signer is expected to sign."""
    return f"{request_hash}:{response_hash}"


def compute_proof_hash(
    request_hash: str, response_hash: str, signature: str, timestamp: int
) -> str:
    """Bind hashes, signature and notarization time into one digest."""
    payload = f"{request_hash}:{response_hash}:{signature}:{timestamp}"
    return sha256_hex(payload.encode("utf-8"))


def canonical_json(data) -> bytes:
    """Sorted, compact JSON used wherever a stable byte form is needed."""
    return json.dumps(
        data, sort_keys=True, separators=(",", ":"), ensure_ascii=False
    ).encode("utf-8")


# ── Keys & capture ──────────────────────────────────────────────────

class KeyPair(BaseModel):
    """secp256k1 key pair. public_key is the 65-byte uncompressed point."""

    model_config = ConfigDict(frozen=True)

    public_key: bytes
    private_key: bytes
    passphrase: List[str] = Field(default_factory=list)

    @property
    def public_key_hex(self) -> str:
        return self.public_key.hex()

    @property
    def unprefixed_public_key_hex(self) -> str:
        return self.public_key[1:].hex()


class WireCapture(BaseModel):
    """Raw request/response bytes of a single exchange, exactly as sent/received."""

    model_config = ConfigDict(frozen=True)

    request_body: bytes
    response_body: bytes
    exchange_id: Optional[str] = None

    @property
    def request_hash(self) -> str:
        return sha256_hex(self.request_body)

    @property
    def response_hash(self) -> str:
        return sha256_hex(self.response_body)


class ChatData(BaseModel):
    """Everything a share recipient needs to rebuild and re-check an exchange."""

    exchange_id: Optional[str] = None
    model: str = ""
    request_body: str
    response_body: str
    output: str = ""
    e2ee: bool = False
    model_public_key: str = ""  # hex, as sent in X-Model-Pub-Key
    client_public_key: str = ""  # hex, as sent in X-Client-Pub-Key
    ephemeral_private_keys: List[Optional[str]] = Field(default_factory=list)

    @classmethod
    def from_capture(cls, capture: WireCapture, output: str = "", **kwargs) -> "ChatData":
        return cls(
            exchange_id=capture.exchange_id,
            request_body=capture.request_body.decode("utf-8"),
            response_body=capture.response_body.decode("utf-8"),
            output=output,
            **kwargs,
        )

    def to_capture(self) -> WireCapture:
        return WireCapture(
            request_body=self.request_body.encode("utf-8"),
            response_body=self.response_body.encode("utf-8"),
            exchange_id=self.exchange_id,
        )


# ── Receipts ────────────────────────────────────────────────────────

class SignatureResponse(BaseModel):
    """What the remote signer returns for one exchange."""

    text: str
    signature: str
    signing_address: str
    signing_algo: str = "ecdsa"


class LedgerRecord(BaseModel):
    """A notarized proof hash as stored by the ledger."""

    proof_hash: str
    timestamp: int
    tx_hash: str = ""
    stored_by: str = ""


class Receipt(BaseModel):
    """Verifiable claim that a specific inference exchange happened."""

    model_config = ConfigDict(frozen=True)

    version: str = RECEIPT_VERSION
    request_hash: str
    response_hash: str
    signature: str
    signing_address: str
    signing_algo: str = "ecdsa"
    proof_hash: str
    timestamp: int  # epoch milliseconds
    tx_hash: str = ""
    hash_algorithm: str = HASH_ALGORITHM
    model: str = ""
    prompt: str = ""
    output: str = ""

    def expected_proof_hash(self) -> str:
        return compute_proof_hash(
            self.request_hash, self.response_hash, self.signature, self.timestamp
        )


class CheckResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    valid: bool
    message: Optional[str] = None

    @classmethod
    def ok(cls) -> "CheckResult":
        return cls(valid=True)

    @classmethod
    def fail(cls, message: str) -> "CheckResult":
        return cls(valid=False, message=message)


NOT_CHECKED = "attestation not checked"

# Checks that gate the aggregate result, in report order.
REQUIRED_CHECKS = ("chat", "notorized", "model_gpu", "model_tdx", "gateway_tdx")
ADVISORY_CHECKS = ("model_compose", "gateway_compose")
ALL_CHECKS = REQUIRED_CHECKS + ADVISORY_CHECKS


class VerificationResult(BaseModel):
    """Outcome of verifying one receipt. `result` aggregates the required checks."""

    model_config = ConfigDict(frozen=True)

    result: CheckResult
    chat: CheckResult
    notorized: CheckResult
    model_gpu: CheckResult
    model_tdx: CheckResult
    model_compose: CheckResult
    gateway_tdx: CheckResult
    gateway_compose: CheckResult

    @classmethod
    def aggregate(cls, checks: Dict[str, CheckResult]) -> "VerificationResult":
        failures = [
            checks[name].message or f"{name} check failed"
            for name in REQUIRED_CHECKS
            if not checks[name].valid
        ]
        if failures:
            result = CheckResult.fail(", ".join(failures))
        else:
            result = CheckResult.ok()
        return cls(result=result, **{name: checks[name] for name in ALL_CHECKS})

    @property
    def valid(self) -> bool:
        return self.result.valid


# ── Sharing ─────────────────────────────────────────────────────────

class SharePayload(BaseModel):
    """Plaintext of a share bundle before passphrase encryption."""

    chat_data: ChatData
    receipt: Receipt
    timestamp: int = 0


class Reference(BaseModel):
    """Pointer to a half-open character range of one message in a share."""

    model_config = ConfigDict(frozen=True)

    share_id: str
    message_index: int
    start_char: int
    end_char: int
    preview_text: str = ""


class TextRange(BaseModel):
    """A resolved reference."""

    message_index: int
    role: str
    start_char: int
    end_char: int
    text: str
