"""
Relay orchestrator.

Sequences building, signing, submission, finality, fingerprint extraction
and attestation into one relay operation. This is the only component a UI
or CLI talks to.
"""

import asyncio
from typing import Callable, List, Optional

import structlog

from relayer.config import RelayConfig, get_config
from relayer.core.errors import (
    FingerprintNotFoundError,
    InvalidInputError,
    RelayError,
    SignerUnavailableError,
    TransactionBuildError,
)
from relayer.core.relay import RelayRecord, RelayResult, RelayStage
from relayer.core.types import AttestationArtifact, MessageFingerprint
from relayer.engine.attestation import AttestationWaiter
from relayer.engine.confirmation import ConfirmationWaiter
from relayer.node.guardian import GuardianAttestationService
from relayer.node.interface import AttestationService, ChainClient
from relayer.node.solana import SolanaRpcClient
from relayer.state.journal import RelayJournal
from relayer.tx.builder import TransactionBuilder
from relayer.tx.signer import Signer, SigningCoordinator
from relayer.tx.submitter import SubmissionRetrier

logger = structlog.get_logger(__name__)


class RelayOrchestrator:
    """
    Main relay orchestrator.

    Stages: BUILDING -> SIGNING -> SUBMITTING -> CONFIRMING ->
    EXTRACTING_FINGERPRINT -> AWAITING_ATTESTATION -> DONE, or FAILED.
    A failing stage aborts the relay; nothing is retried across stages, so
    an expired transaction is reported instead of being resubmitted.

    Several relays may run concurrently on one orchestrator; each call owns
    its record, retry counters and timers.

    Usage:
        ```python
        orchestrator = RelayOrchestrator(config)
        await orchestrator.initialize()
        result = await orchestrator.relay(b"hello", destination, signer)
        artifact = result.unwrap()
        ```
    """

    def __init__(
        self,
        config: Optional[RelayConfig] = None,
        chain: Optional[ChainClient] = None,
        attestation: Optional[AttestationService] = None,
        journal: Optional[RelayJournal] = None,
        builder: Optional[TransactionBuilder] = None,
        coordinator: Optional[SigningCoordinator] = None,
        submitter: Optional[SubmissionRetrier] = None,
        confirmer: Optional[ConfirmationWaiter] = None,
        attester: Optional[AttestationWaiter] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            config: Relay configuration
            chain: Ledger access (SolanaRpcClient if not provided)
            attestation: Attestation network (GuardianAttestationService if not provided)
            journal: Optional relay journal
            builder, coordinator, submitter, confirmer, attester: Stage overrides
        """
        self.config = config or get_config()
        self.chain = chain or SolanaRpcClient(self.config)
        self.attestation = attestation or GuardianAttestationService(self.config)
        self.journal = journal

        self.builder = builder or TransactionBuilder(self.config)
        self.coordinator = coordinator or SigningCoordinator(self.chain, self.config)
        self.submitter = submitter or SubmissionRetrier(self.chain, config=self.config)
        self.confirmer = confirmer or ConfirmationWaiter(self.chain, config=self.config)
        self.attester = attester or AttestationWaiter(self.attestation, config=self.config)

        # Callbacks
        self._on_stage_change: List[Callable[[RelayRecord], None]] = []

    async def initialize(self) -> None:
        """Connect the ledger, attestation and journal handles."""
        await self.chain.connect()
        await self.attestation.connect()
        if self.journal:
            await self.journal.connect()
        logger.info("relayer_initialized", network=self.config.network.value)

    async def shutdown(self) -> None:
        """Close all handles."""
        if self.journal:
            await self.journal.disconnect()
        await self.attestation.disconnect()
        await self.chain.disconnect()
        logger.info("relayer_shutdown")

    def on_stage_change(self, callback: Callable[[RelayRecord], None]) -> None:
        """Register callback for stage transitions (progress reporting)."""
        self._on_stage_change.append(callback)

    async def _notify(self, record: RelayRecord) -> None:
        """Publish the record's current stage to callbacks and the journal."""
        for callback in self._on_stage_change:
            callback(record)
        if self.journal:
            await self.journal.save_record(record)

    async def _enter(self, record: RelayRecord, stage: RelayStage) -> None:
        record.advance(stage)
        logger.debug("relay_stage", relay_id=record.relay_id[:8] + "...", stage=stage.value)
        await self._notify(record)

    async def _connect_signer(self, signer: Signer) -> str:
        try:
            return await signer.connect()
        except RelayError:
            raise
        except Exception as e:
            raise SignerUnavailableError(f"Signer connection failed: {e}") from e

    async def _extract_fingerprint(self, transaction_id: str) -> MessageFingerprint:
        messages = await self.chain.get_messages(transaction_id)
        if not messages:
            raise FingerprintNotFoundError(
                "Finalized transaction carries no message",
                transaction_id=transaction_id,
            )
        return messages[0]

    async def relay(
        self,
        payload: bytes,
        destination: str,
        signer: Signer,
        nonce: Optional[int] = None,
        consistency_level: Optional[int] = None,
    ) -> RelayResult:
        """
        Relay a payload end to end.

        Args:
            payload: Message bytes
            destination: Destination address
            signer: Wallet capability paying for and signing the transaction
            nonce: Message nonce override
            consistency_level: Finality level override

        Returns:
            RelayResult holding the attestation or the terminal RelayError
        """
        record = RelayRecord(
            destination=destination if isinstance(destination, str) else "",
            payload=bytes(payload) if isinstance(payload, (bytes, bytearray)) else b"",
        )
        log = logger.bind(relay_id=record.relay_id[:8] + "...")

        try:
            await self._enter(record, RelayStage.BUILDING)
            self.builder.validate(payload, destination)
            fee_payer = await self._connect_signer(signer)
            unsigned = self.builder.build(
                payload,
                fee_payer=fee_payer,
                destination=destination,
                nonce=nonce,
                consistency_level=consistency_level,
            )
            log.info("relay_built", transactions=len(unsigned), fee_payer=fee_payer)

            await self._enter(record, RelayStage.SIGNING)
            signed = await self.coordinator.sign(unsigned, signer)
            tokens = [tx.freshness_token for tx in signed]
            if any(token is None for token in tokens):
                raise TransactionBuildError("Signer returned a transaction without freshness token")

            await self._enter(record, RelayStage.SUBMITTING)
            submissions = await self.submitter.submit_all(
                signed, on_accepted=record.add_submission
            )
            record.mark_submitted(submissions)

            await self._enter(record, RelayStage.CONFIRMING)
            await self.confirmer.await_all(submissions, tokens)

            await self._enter(record, RelayStage.EXTRACTING_FINGERPRINT)
            fingerprint = await self._extract_fingerprint(record.last_transaction_id)
            record.mark_fingerprint(fingerprint)

            await self._enter(record, RelayStage.AWAITING_ATTESTATION)
            artifact = await self.attester.await_attestation(fingerprint)

            record.mark_done(artifact)
            await self._notify(record)
            log.info(
                "relay_done",
                transaction_ids=record.transaction_ids,
                vaa_id=fingerprint.vaa_id,
            )
            return RelayResult(record=record, artifact=artifact)

        except RelayError as e:
            record.mark_failed(e)
            await self._notify(record)
            log.error("relay_failed", stage=record.failed_stage.value, **e.context())
            return RelayResult(record=record, error=e)

        except asyncio.CancelledError:
            # submitted transactions stay on the ledger
            record.mark_failed(asyncio.CancelledError("relay cancelled"))
            if self.journal:
                await self.journal.save_record(record)
            log.warning(
                "relay_cancelled",
                stage=record.failed_stage.value,
                transaction_ids=record.transaction_ids,
            )
            raise

        except Exception as e:
            record.mark_failed(e)
            await self._notify(record)
            log.exception("relay_crashed", stage=record.failed_stage.value)
            raise

    async def attest(
        self,
        fingerprint: MessageFingerprint,
        timeout: Optional[float] = None,
    ) -> AttestationArtifact:
        """
        Poll again for the attestation of an earlier relay.

        Raises:
            AttestationTimeoutError: If nothing arrived in time
        """
        return await self.attester.await_attestation(fingerprint, timeout)

    async def resume_attestation(
        self,
        relay_id: str,
        timeout: Optional[float] = None,
    ) -> RelayResult:
        """
        Resume a journaled relay whose attestation did not arrive in time.

        Args:
            relay_id: Journaled relay id
            timeout: Seconds to wait

        Returns:
            RelayResult for the resumed relay

        Raises:
            InvalidInputError: If the journal has no such relay
            FingerprintNotFoundError: If the relay never produced a fingerprint
        """
        if not self.journal:
            raise RuntimeError("Relay journal not configured")

        record = await self.journal.load_record(relay_id)
        if record is None:
            raise InvalidInputError(f"Unknown relay id: {relay_id}")
        if record.artifact is not None:
            return RelayResult(record=record, artifact=record.artifact)
        if record.fingerprint is None:
            raise FingerprintNotFoundError(
                f"Relay {relay_id} never reached a message fingerprint",
                transaction_id=record.last_transaction_id,
            )

        record.failed_stage = None
        record.error_type = None
        record.error_message = None
        await self._enter(record, RelayStage.AWAITING_ATTESTATION)

        try:
            artifact = await self.attester.await_attestation(record.fingerprint, timeout)
        except RelayError as e:
            record.mark_failed(e)
            await self._notify(record)
            return RelayResult(record=record, error=e)

        record.mark_done(artifact)
        await self._notify(record)
        return RelayResult(record=record, artifact=artifact)
