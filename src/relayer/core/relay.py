"""
Relay record model.

Tracks one relay invocation through the pipeline stages.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

from relayer.core.errors import RelayError
from relayer.core.types import (
    AttestationArtifact,
    MessageFingerprint,
    SubmissionResult,
    utcnow,
)


class RelayStage(str, Enum):
    """Stage of a relay."""
    BUILDING = "building"                               # Constructing transactions
    SIGNING = "signing"                                 # Waiting for the signer
    SUBMITTING = "submitting"                           # Sending to the ledger
    CONFIRMING = "confirming"                           # Waiting for finality
    EXTRACTING_FINGERPRINT = "extracting_fingerprint"   # Reading the emitted message
    AWAITING_ATTESTATION = "awaiting_attestation"       # Polling the attestation network
    DONE = "done"                                       # Attestation received
    FAILED = "failed"                                   # Aborted

    @property
    def is_terminal(self) -> bool:
        return self in (RelayStage.DONE, RelayStage.FAILED)


@dataclass
class RelayRecord:
    """
    Progress of a single relay invocation.

    Owned by one `relay` call; never shared between invocations.

    Attributes:
        relay_id: Unique identifier for the relay
        destination: Destination address
        payload: Message bytes
        stage: Current stage
        transaction_ids: Ids of the submitted transactions
        submission_attempts: Total send attempts across the batch
        fingerprint: Message fingerprint once extracted
        artifact: Attestation once received
        error_type: Class name of the terminal error
        error_message: Terminal error text
    """

    destination: str
    payload: bytes
    relay_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    stage: RelayStage = RelayStage.BUILDING

    transaction_ids: List[str] = field(default_factory=list)
    submission_attempts: int = 0
    fingerprint: Optional[MessageFingerprint] = None
    artifact: Optional[AttestationArtifact] = None

    # Timestamps
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    # Error tracking
    failed_stage: Optional[RelayStage] = None
    error_type: Optional[str] = None
    error_message: Optional[str] = None

    def __post_init__(self):
        if isinstance(self.stage, str):
            self.stage = RelayStage(self.stage)

    def advance(self, stage: RelayStage) -> None:
        """Move to the next stage."""
        self.stage = stage
        self.updated_at = utcnow()

    def add_submission(self, result: SubmissionResult) -> None:
        """Record one transaction as soon as the ledger accepts it."""
        self.transaction_ids.append(result.transaction_id)
        self.submission_attempts += result.attempts
        self.updated_at = utcnow()

    def mark_submitted(self, results: List[SubmissionResult]) -> None:
        """Record the accepted transaction ids in batch order."""
        self.transaction_ids = [r.transaction_id for r in results]
        self.submission_attempts = sum(r.attempts for r in results)
        self.updated_at = utcnow()

    def mark_fingerprint(self, fingerprint: MessageFingerprint) -> None:
        self.fingerprint = fingerprint
        self.updated_at = utcnow()

    def mark_done(self, artifact: AttestationArtifact) -> None:
        """Mark relay as done with its attestation."""
        self.artifact = artifact
        self.advance(RelayStage.DONE)

    def mark_failed(self, error: BaseException) -> None:
        """Mark relay as failed, remembering where it stopped."""
        self.failed_stage = self.stage
        self.error_type = type(error).__name__
        self.error_message = str(error) or self.error_type
        if self.stage == RelayStage.SUBMITTING and isinstance(error, RelayError) and error.attempts:
            self.submission_attempts += error.attempts
        self.advance(RelayStage.FAILED)

    @property
    def last_transaction_id(self) -> Optional[str]:
        return self.transaction_ids[-1] if self.transaction_ids else None

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "relay_id": self.relay_id,
            "stage": self.stage.value,
            "destination": self.destination,
            "payload_hex": self.payload.hex(),
            "transaction_ids": self.transaction_ids,
            "submission_attempts": self.submission_attempts,
            "fingerprint": self.fingerprint.vaa_id if self.fingerprint else None,
            "artifact_hex": self.artifact.hex if self.artifact else None,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "failed_stage": self.failed_stage.value if self.failed_stage else None,
            "error_type": self.error_type,
            "error_message": self.error_message,
        }

    def __repr__(self) -> str:
        return f"RelayRecord(id={self.relay_id[:8]}..., stage={self.stage.value})"


@dataclass(frozen=True)
class RelayResult:
    """
    Outcome of a relay: an artifact or a terminal RelayError.

    Attributes:
        record: Final state of the relay record
        artifact: Attestation on success
        error: Terminal error on failure
    """

    record: RelayRecord
    artifact: Optional[AttestationArtifact] = None
    error: Optional[RelayError] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.artifact is not None

    def unwrap(self) -> AttestationArtifact:
        """Return the artifact or raise the terminal error."""
        if self.error is not None:
            raise self.error
        return self.artifact
