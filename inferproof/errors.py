# Copyright 2026 Lys-David Louis-Charles (KatchDaVizion)
# inferproof Error Taxonomy
#
# Every component raises one of these. Network adapters translate
# aiohttp / timeout failures into the matching class so callers never
# have to catch transport-level exceptions directly.


class InferproofError(Exception):
    """Base class for all inferproof errors."""


class InvalidPassphrase(InferproofError):
    """Passphrase is empty or contains unusable words."""


class DecryptionFailed(InferproofError):
    """Ciphertext could not be decrypted or authenticated."""


class SigningUnavailable(InferproofError):
    """The remote signer could not produce a signature."""


class SignatureMismatch(SigningUnavailable):
    """The signer signed something other than the expected request/response hashes."""


class NotarizationFailed(InferproofError):
    """The ledger write did not succeed."""


class AttestationUnreachable(InferproofError):
    """A hardware attestation service could not be reached."""


class MalformedReference(InferproofError):
    """Compact reference string does not parse."""


class NotFound(InferproofError):
    """Requested share or ledger record does not exist."""


class OutOfRange(InferproofError):
    """Reference points outside the conversation."""


class ReferenceMismatch(InferproofError):
    """Reference belongs to a different share."""


class TransportError(InferproofError):
    """HTTP exchange with the inference endpoint failed."""

    def __init__(self, message: str, status: int = 0):
        super().__init__(message)
        self.status = status


class StorageUnavailable(InferproofError):
    """The share store or ledger API could not be reached or rejected the request."""

    def __init__(self, message: str, status: int = 0):
        super().__init__(message)
        self.status = status
