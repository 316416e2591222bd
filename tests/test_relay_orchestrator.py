"""
Test suite for the relay orchestrator.

Runs the full pipeline against the mock ledger, signer and attestation network.
"""

import asyncio

import pytest
import pytest_asyncio
from solders.signature import Signature

from relayer.core.errors import (
    AttestationTimeoutError,
    FingerprintNotFoundError,
    FinalityExpiredError,
    InvalidInputError,
    PermanentSubmissionError,
    SignerUnavailableError,
    SubmissionExhaustedError,
    TransientSubmissionError,
    UserRejected,
)
from relayer.core.orchestrator import RelayOrchestrator
from relayer.core.relay import RelayRecord, RelayResult, RelayStage
from relayer.core.types import TxState
from relayer.state.journal import RelayJournal
from relayer.tx.builder import TransactionBuilder

from conftest import (
    DESTINATION,
    MockAttestationService,
    StubSigner,
    generate_test_fingerprint,
)


ALL_STAGES = [
    "building",
    "signing",
    "submitting",
    "confirming",
    "extracting_fingerprint",
    "awaiting_attestation",
    "done",
]


def expected_tx_id(signer: StubSigner) -> str:
    """Transaction id the stub signer produces for the first transaction."""
    return str(Signature.from_bytes(bytes([1]) * 64))


@pytest_asyncio.fixture
async def orchestrator(test_config, mock_chain, mock_attestation):
    orch = RelayOrchestrator(test_config, chain=mock_chain, attestation=mock_attestation)
    await orch.initialize()
    yield orch
    await orch.shutdown()


def track_stages(orchestrator: RelayOrchestrator) -> list:
    stages = []
    orchestrator.on_stage_change(lambda record: stages.append(record.stage.value))
    return stages


# ============================================================================
# Test Successful Relay
# ============================================================================

class TestRelaySuccess:
    """Tests for the happy path."""

    @pytest.mark.asyncio
    async def test_relay_hello(self, orchestrator, mock_chain, mock_attestation, stub_signer):
        stages = track_stages(orchestrator)

        result = await orchestrator.relay(b"hello", DESTINATION, stub_signer)

        assert result.ok
        assert result.error is None
        assert result.artifact.fingerprint == generate_test_fingerprint()
        assert result.unwrap() is result.artifact
        assert stages == ALL_STAGES

        record = result.record
        assert record.stage == RelayStage.DONE
        assert record.transaction_ids == [expected_tx_id(stub_signer)]
        assert record.submission_attempts == 1
        assert record.fingerprint == generate_test_fingerprint()
        assert len(mock_chain.send_calls) == 1
        assert mock_attestation.poll_calls == [generate_test_fingerprint()]

    @pytest.mark.asyncio
    async def test_message_parameters_reach_transaction(self, orchestrator, mock_chain, stub_signer):
        result = await orchestrator.relay(
            b"hello", DESTINATION, stub_signer, nonce=5, consistency_level=0,
        )

        assert result.ok
        data = mock_chain.send_calls[0].unsigned.operations[-1].data
        assert data[1:5] == (5).to_bytes(4, "little")
        assert data[-1] == 0

    @pytest.mark.asyncio
    async def test_relay_after_transient_send_failure(self, orchestrator, mock_chain, stub_signer):
        mock_chain.send_failures = [TransientSubmissionError("busy")]

        result = await orchestrator.relay(b"hello", DESTINATION, stub_signer)

        assert result.ok
        assert result.record.submission_attempts == 2

    @pytest.mark.asyncio
    async def test_attestation_after_pending_polls(self, test_config, mock_chain, stub_signer):
        attestation = MockAttestationService(pending_polls=3)
        orch = RelayOrchestrator(test_config, chain=mock_chain, attestation=attestation)

        result = await orch.relay(b"hello", DESTINATION, stub_signer)

        assert result.ok
        assert len(attestation.poll_calls) == 4

    @pytest.mark.asyncio
    async def test_concurrent_relays_are_independent(self, orchestrator, mock_chain, fee_payer):
        signers = [StubSigner(address=fee_payer) for _ in range(3)]

        results = await asyncio.gather(*[
            orchestrator.relay(b"msg-%d" % i, DESTINATION, signer)
            for i, signer in enumerate(signers)
        ])

        assert all(r.ok for r in results)
        assert len({r.record.relay_id for r in results}) == 3
        assert [r.record.payload for r in results] == [b"msg-0", b"msg-1", b"msg-2"]
        assert len(mock_chain.send_calls) == 3


# ============================================================================
# Test Failed Relays
# ============================================================================

class TestRelayFailures:
    """Tests for each stage's terminal failure."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload,destination", [
        (b"hello", ""),
        (b"hello", "not-an-address"),
        (b"", DESTINATION),
    ])
    async def test_invalid_input_before_any_network_call(
        self, orchestrator, mock_chain, stub_signer, payload, destination
    ):
        result = await orchestrator.relay(payload, destination, stub_signer)

        assert not result.ok
        assert isinstance(result.error, InvalidInputError)
        assert result.record.failed_stage == RelayStage.BUILDING
        assert stub_signer.connected is False
        assert mock_chain.token_calls == 0
        assert mock_chain.send_calls == []

    @pytest.mark.asyncio
    async def test_user_rejected(self, orchestrator, mock_chain, mock_attestation, fee_payer):
        signer = StubSigner(address=fee_payer, reject=True)

        result = await orchestrator.relay(b"hello", DESTINATION, signer)

        assert isinstance(result.error, UserRejected)
        assert result.record.stage == RelayStage.FAILED
        assert result.record.failed_stage == RelayStage.SIGNING
        assert mock_chain.send_calls == []
        assert mock_attestation.poll_calls == []

    @pytest.mark.asyncio
    async def test_signer_connect_failure(self, orchestrator, mock_chain, fee_payer):
        signer = StubSigner(address=fee_payer, connect_error=RuntimeError("wallet locked"))

        result = await orchestrator.relay(b"hello", DESTINATION, signer)

        assert isinstance(result.error, SignerUnavailableError)
        assert "wallet locked" in str(result.error)
        assert mock_chain.token_calls == 0

    @pytest.mark.asyncio
    async def test_submission_exhausted(self, orchestrator, mock_chain, stub_signer, test_config):
        mock_chain.send_failures = [TransientSubmissionError("busy")] * 5

        result = await orchestrator.relay(b"hello", DESTINATION, stub_signer)

        assert isinstance(result.error, SubmissionExhaustedError)
        assert result.record.failed_stage == RelayStage.SUBMITTING
        assert result.record.submission_attempts == test_config.max_submit_attempts
        assert len(mock_chain.send_calls) == test_config.max_submit_attempts
        assert mock_chain.status_calls == {}

    @pytest.mark.asyncio
    async def test_permanent_submission_error(self, orchestrator, mock_chain, stub_signer):
        mock_chain.send_failures = [PermanentSubmissionError("insufficient funds")]

        result = await orchestrator.relay(b"hello", DESTINATION, stub_signer)

        assert isinstance(result.error, PermanentSubmissionError)
        assert result.record.submission_attempts == 1
        assert len(mock_chain.send_calls) == 1

    @pytest.mark.asyncio
    async def test_accepted_sibling_recorded_when_batch_fails(
        self, test_config, mock_chain, mock_attestation, stub_signer
    ):
        """A transaction the ledger accepted stays on the record after a sibling fails."""

        class TwoTransactionBuilder(TransactionBuilder):
            def build(self, payload, fee_payer, destination, **kwargs):
                return [
                    super(TwoTransactionBuilder, self).build(part, fee_payer, destination, **kwargs)[0]
                    for part in (payload[:1], payload[1:])
                ]

        second_id = str(Signature.from_bytes(bytes([2]) * 64))

        async def send_raw(tx, skip_simulation=True):
            mock_chain.send_calls.append(tx)
            if tx.primary_signature == second_id:
                raise PermanentSubmissionError("account in use")
            return tx.primary_signature

        mock_chain.send_raw = send_raw
        orchestrator = RelayOrchestrator(
            test_config,
            chain=mock_chain,
            attestation=mock_attestation,
            builder=TwoTransactionBuilder(test_config),
        )

        result = await orchestrator.relay(b"hello", DESTINATION, stub_signer)

        assert isinstance(result.error, PermanentSubmissionError)
        assert result.record.failed_stage == RelayStage.SUBMITTING
        assert result.record.transaction_ids == [expected_tx_id(stub_signer)]
        assert result.record.submission_attempts == 2
        assert len(mock_chain.send_calls) == 2

    @pytest.mark.asyncio
    async def test_expired_before_finality(
        self, orchestrator, mock_chain, mock_attestation, stub_signer
    ):
        tx_id = expected_tx_id(stub_signer)
        mock_chain.script_status(tx_id, TxState.PENDING, TxState.PENDING, TxState.EXPIRED)

        result = await orchestrator.relay(b"hello", DESTINATION, stub_signer)

        assert isinstance(result.error, FinalityExpiredError)
        assert result.error.transaction_id == tx_id
        assert result.error.record.polls == 3
        assert result.record.failed_stage == RelayStage.CONFIRMING
        assert result.record.transaction_ids == [tx_id]
        assert len(mock_chain.send_calls) == 1
        assert mock_attestation.poll_calls == []

    @pytest.mark.asyncio
    async def test_no_message_in_transaction(self, orchestrator, mock_chain, stub_signer):
        mock_chain.default_messages = []

        result = await orchestrator.relay(b"hello", DESTINATION, stub_signer)

        assert isinstance(result.error, FingerprintNotFoundError)
        assert result.record.failed_stage == RelayStage.EXTRACTING_FINGERPRINT
        assert result.error.transaction_id == expected_tx_id(stub_signer)

    @pytest.mark.asyncio
    async def test_attestation_timeout(self, test_config, mock_chain, stub_signer):
        attestation = MockAttestationService(pending_polls=10_000)
        orch = RelayOrchestrator(test_config, chain=mock_chain, attestation=attestation)

        result = await orch.relay(b"hello", DESTINATION, stub_signer)

        assert isinstance(result.error, AttestationTimeoutError)
        assert result.error.fingerprint == generate_test_fingerprint()
        assert result.record.fingerprint == generate_test_fingerprint()
        assert result.record.failed_stage == RelayStage.AWAITING_ATTESTATION

        with pytest.raises(AttestationTimeoutError):
            result.unwrap()

    @pytest.mark.asyncio
    async def test_attest_again_after_timeout(self, test_config, mock_chain, stub_signer):
        attestation = MockAttestationService(pending_polls=10_000)
        orch = RelayOrchestrator(test_config, chain=mock_chain, attestation=attestation)
        result = await orch.relay(b"hello", DESTINATION, stub_signer)
        assert isinstance(result.error, AttestationTimeoutError)

        attestation.pending_polls = 0
        artifact = await orch.attest(result.record.fingerprint, timeout=1)

        assert artifact.fingerprint == result.record.fingerprint
        assert len(mock_chain.send_calls) == 1

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, test_config, mock_chain, stub_signer):
        attestation = MockAttestationService(pending_polls=10_000)
        orch = RelayOrchestrator(test_config, chain=mock_chain, attestation=attestation)
        stages = track_stages(orch)

        task = asyncio.ensure_future(orch.relay(b"hello", DESTINATION, stub_signer))
        while "awaiting_attestation" not in stages:
            await asyncio.sleep(0.005)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert len(mock_chain.send_calls) == 1

    @pytest.mark.asyncio
    async def test_unexpected_error_propagates(self, orchestrator, mock_chain, stub_signer):
        mock_chain.send_failures = [KeyError("bug")]
        stages = track_stages(orchestrator)

        with pytest.raises(KeyError):
            await orchestrator.relay(b"hello", DESTINATION, stub_signer)

        assert stages[-1] == "failed"


# ============================================================================
# Test Journaled Relays
# ============================================================================

class TestJournaledRelay:
    """Tests for relays persisted to the journal."""

    @pytest.fixture
    def journal(self, test_config, tmp_path):
        return RelayJournal(test_config, database_url=f"sqlite+aiosqlite:///{tmp_path}/relays.db")

    @pytest.mark.asyncio
    async def test_successful_relay_is_journaled(
        self, test_config, mock_chain, mock_attestation, stub_signer, journal
    ):
        orch = RelayOrchestrator(
            test_config, chain=mock_chain, attestation=mock_attestation, journal=journal,
        )
        await orch.initialize()
        try:
            result = await orch.relay(b"hello", DESTINATION, stub_signer)
            stored = await journal.load_record(result.record.relay_id)
        finally:
            await orch.shutdown()

        assert stored.stage == RelayStage.DONE
        assert stored.payload == b"hello"
        assert stored.transaction_ids == result.record.transaction_ids
        assert stored.artifact == result.artifact

    @pytest.mark.asyncio
    async def test_resume_attestation(self, test_config, mock_chain, stub_signer, journal):
        attestation = MockAttestationService(pending_polls=10_000)
        orch = RelayOrchestrator(
            test_config, chain=mock_chain, attestation=attestation, journal=journal,
        )
        await orch.initialize()
        try:
            first = await orch.relay(b"hello", DESTINATION, stub_signer)
            assert isinstance(first.error, AttestationTimeoutError)

            attestation.pending_polls = 0
            resumed = await orch.resume_attestation(first.record.relay_id, timeout=1)
            stored = await journal.load_record(first.record.relay_id)
        finally:
            await orch.shutdown()

        assert resumed.ok
        assert resumed.record.failed_stage is None
        assert stored.stage == RelayStage.DONE
        assert stored.error_type is None
        assert len(mock_chain.send_calls) == 1

    @pytest.mark.asyncio
    async def test_resume_without_fingerprint(self, test_config, mock_chain, mock_attestation, journal):
        orch = RelayOrchestrator(
            test_config, chain=mock_chain, attestation=mock_attestation, journal=journal,
        )
        await orch.initialize()
        try:
            failed = await orch.relay(b"hello", DESTINATION, StubSigner(reject=True))

            with pytest.raises(FingerprintNotFoundError):
                await orch.resume_attestation(failed.record.relay_id)
            with pytest.raises(InvalidInputError, match="Unknown relay id"):
                await orch.resume_attestation("missing")
        finally:
            await orch.shutdown()

    @pytest.mark.asyncio
    async def test_resume_requires_journal(self, orchestrator):
        with pytest.raises(RuntimeError):
            await orchestrator.resume_attestation("anything")


# ============================================================================
# Test Relay Record
# ============================================================================

class TestRelayRecord:
    """Tests for the relay record model."""

    def test_mark_failed(self):
        record = RelayRecord(destination=DESTINATION, payload=b"x")
        record.advance(RelayStage.SUBMITTING)

        record.mark_failed(SubmissionExhaustedError("gave up", attempts=3))

        assert record.stage == RelayStage.FAILED
        assert record.failed_stage == RelayStage.SUBMITTING
        assert record.error_type == "SubmissionExhaustedError"
        assert record.submission_attempts == 3
        assert record.stage.is_terminal

    def test_to_dict(self):
        record = RelayRecord(destination=DESTINATION, payload=b"hi")
        record.mark_fingerprint(generate_test_fingerprint())

        data = record.to_dict()

        assert data["payload_hex"] == "6869"
        assert data["fingerprint"] == generate_test_fingerprint().vaa_id
        assert data["stage"] == "building"

    def test_result_without_artifact_is_not_ok(self):
        result = RelayResult(record=RelayRecord(destination=DESTINATION, payload=b"x"))
        assert not result.ok
