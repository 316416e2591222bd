"""
Relay error taxonomy.

Every failure surfaced by the relay pipeline derives from RelayError and
carries the context a caller needs to decide whether to retry the whole
workflow: the transaction id, the message fingerprint and the attempt count.
"""

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from relayer.core.types import FinalityRecord, MessageFingerprint


class RelayError(Exception):
    """Base class for all relay failures."""

    def __init__(
        self,
        message: str,
        transaction_id: Optional[str] = None,
        fingerprint: Optional["MessageFingerprint"] = None,
        attempts: Optional[int] = None,
    ):
        super().__init__(message)
        self.transaction_id = transaction_id
        self.fingerprint = fingerprint
        self.attempts = attempts

    def context(self) -> dict:
        """Get the error context as a dictionary (for logs and the journal)."""
        return {
            "error_type": type(self).__name__,
            "message": str(self),
            "transaction_id": self.transaction_id,
            "fingerprint": self.fingerprint.vaa_id if self.fingerprint else None,
            "attempts": self.attempts,
        }


class InvalidInputError(RelayError):
    """Raised when the payload or an address is malformed. Not retried."""
    pass


class TransactionBuildError(RelayError):
    """Raised when a transaction cannot be constructed (e.g. no operations)."""
    pass


class SignerUnavailableError(RelayError):
    """Raised when the signer is not connected or cannot be reached."""
    pass


class UserRejected(RelayError):
    """Raised when the signer's owner declines to sign."""
    pass


class TransientSubmissionError(RelayError):
    """Raised for submission failures that may succeed on a later attempt."""
    pass


class PermanentSubmissionError(RelayError):
    """Raised for submission failures that will fail again if resent."""

    def __init__(self, message: str, error_code: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.error_code = error_code


class SubmissionExhaustedError(RelayError):
    """Raised when every submission attempt failed transiently."""
    pass


class ChainConnectionError(RelayError):
    """Raised when the ledger RPC endpoint cannot be reached or misbehaves."""
    pass


class FinalityError(RelayError):
    """Base class for terminal finality outcomes other than success."""

    def __init__(self, message: str, record: "FinalityRecord", **kwargs):
        kwargs.setdefault("transaction_id", record.transaction_id)
        super().__init__(message, **kwargs)
        self.record = record


class FinalityExpiredError(FinalityError):
    """
    Raised when a freshness token expired before the transaction finalized.

    The signed transaction can never land; the caller must rebuild with a
    new freshness token and resubmit.
    """
    pass


class ChainRejectedError(FinalityError):
    """Raised when the ledger reports a definitive execution error."""
    pass


class FingerprintNotFoundError(RelayError):
    """Raised when a finalized transaction carries no relayed message."""
    pass


class AttestationServiceError(RelayError):
    """Raised when the attestation service cannot answer a poll."""
    pass


class AttestationTimeoutError(RelayError):
    """
    Raised when no attestation arrived within the timeout.

    Safe to recover from by polling again with the same fingerprint.
    """
    pass
