"""
Abstract interfaces for the external capabilities the relayer drives.

Defines the contract for ledger access and attestation polling that all
adapters must implement.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from relayer.core.types import (
    AttestationArtifact,
    FreshnessToken,
    MessageFingerprint,
    SignedTransaction,
    TransactionStatus,
)


class ChainClient(ABC):
    """
    Abstract interface for source ledger access.

    Implementations must be safe for concurrent use by several in-flight
    relays; they hold connection handles only, never per-relay state.
    """

    async def connect(self) -> None:
        """Establish connection to the ledger endpoint."""
        pass

    async def disconnect(self) -> None:
        """Close connection to the ledger endpoint."""
        pass

    @abstractmethod
    async def latest_freshness_token(self) -> FreshnessToken:
        """
        Get a freshness token addressed to the current chain tip.

        Returns:
            Recent blockhash with its validity window
        """
        pass

    @abstractmethod
    async def send_raw(
        self,
        tx: SignedTransaction,
        skip_simulation: bool = True,
    ) -> str:
        """
        Send a signed transaction.

        Args:
            tx: Signed transaction to send
            skip_simulation: Send without preflight simulation

        Returns:
            Transaction id assigned by the ledger

        Raises:
            TransientSubmissionError: If the send may succeed when retried
            PermanentSubmissionError: If the ledger refused the transaction
            ChainConnectionError: If the endpoint could not be reached
        """
        pass

    @abstractmethod
    async def get_status(
        self,
        transaction_id: str,
        freshness_token: Optional[FreshnessToken] = None,
    ) -> TransactionStatus:
        """
        Get the status of a submitted transaction.

        Args:
            transaction_id: Id returned by send_raw
            freshness_token: Token the transaction was signed with, used to
                report EXPIRED once the ledger passed its validity window

        Returns:
            Current status report
        """
        pass

    @abstractmethod
    async def get_messages(self, transaction_id: str) -> List[MessageFingerprint]:
        """
        Get the messages published by a finalized transaction.

        Args:
            transaction_id: Finalized transaction id

        Returns:
            Fingerprints of the messages it emitted (may be empty)
        """
        pass


class AttestationService(ABC):
    """Abstract interface for the off-chain attestation network."""

    async def connect(self) -> None:
        """Establish connection to the attestation API."""
        pass

    async def disconnect(self) -> None:
        """Close connection to the attestation API."""
        pass

    @abstractmethod
    async def poll(self, fingerprint: MessageFingerprint) -> Optional[AttestationArtifact]:
        """
        Look up the attestation for a message.

        Args:
            fingerprint: Message to look up

        Returns:
            The signed artifact once quorum is reached, None while pending

        Raises:
            AttestationServiceError: If the service could not answer
        """
        pass
