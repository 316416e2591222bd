"""
Pytest configuration and shared fixtures for the test suite.
"""

from datetime import timedelta
from typing import Dict, List, Optional, Sequence, Union

import pytest
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction

from relayer.config import NetworkType, RelayConfig
from relayer.core.errors import SignerUnavailableError, UserRejected
from relayer.core.types import (
    AttestationArtifact,
    FreshnessToken,
    MessageFingerprint,
    SignedTransaction,
    TransactionStatus,
    TxState,
    UnsignedTransaction,
    utcnow,
)
from relayer.node.interface import AttestationService, ChainClient
from relayer.tx.signer import Signer


DESTINATION = "11111111111111111111111111111111"


# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def test_config() -> RelayConfig:
    """Create a test configuration with fast timings."""
    return RelayConfig(
        network=NetworkType.DEVNET,
        max_submit_attempts=3,
        submit_backoff_ms=0,
        finality_poll_ms=10,
        status_retry_attempts=2,
        attestation_poll_ms=10,
        attestation_timeout_ms=300,
        database_url=None,
        log_level="DEBUG",
    )


# ============================================================================
# Test Data Generators
# ============================================================================

def generate_test_address(index: int = 1) -> str:
    """Generate a deterministic base58 address."""
    return str(Pubkey(bytes([index]) * 32))


def generate_test_token(index: int = 7, expires_in: float = 60.0, age: float = 0.0) -> FreshnessToken:
    """Generate a freshness token issued ``age`` seconds ago."""
    issued_at = utcnow() - timedelta(seconds=age)
    return FreshnessToken(
        value=generate_test_address(index),
        last_valid_height=1_000 + index,
        issued_at=issued_at,
        expires_at=utcnow() + timedelta(seconds=expires_in),
    )


def stub_signed(tx: UnsignedTransaction, marker: int = 1) -> SignedTransaction:
    """Attach a fixed fake fee payer signature to a tokened transaction."""
    signature = Signature.from_bytes(bytes([marker]) * 64)
    return SignedTransaction(
        unsigned=tx,
        transaction=Transaction.populate(tx.message(), [signature]),
    )


def generate_test_fingerprint(sequence: int = 42) -> MessageFingerprint:
    return MessageFingerprint(chain_id=1, emitter="ab" * 32, sequence=sequence)


@pytest.fixture
def fee_payer() -> str:
    return generate_test_address(9)


@pytest.fixture
def fresh_token() -> FreshnessToken:
    return generate_test_token()


@pytest.fixture
def sample_fingerprint() -> MessageFingerprint:
    return generate_test_fingerprint()


# ============================================================================
# Mock Ledger
# ============================================================================

StatusScript = Sequence[Union[TxState, TransactionStatus]]


class MockChainClient(ChainClient):
    """Scriptable ledger for testing."""

    def __init__(self):
        self.token_calls = 0
        self.send_calls: List[SignedTransaction] = []
        self.send_failures: List[Exception] = []
        self.status_scripts: Dict[str, List[Union[TxState, TransactionStatus, Exception]]] = {}
        self.status_calls: Dict[str, int] = {}
        self.messages: Dict[str, List[MessageFingerprint]] = {}
        self.default_messages: List[MessageFingerprint] = [generate_test_fingerprint()]
        self.token = generate_test_token()
        self._connected = False

    async def connect(self) -> None:
        self._connected = True

    async def disconnect(self) -> None:
        self._connected = False

    async def latest_freshness_token(self) -> FreshnessToken:
        self.token_calls += 1
        return self.token

    async def send_raw(self, tx: SignedTransaction, skip_simulation: bool = True) -> str:
        self.send_calls.append(tx)
        if self.send_failures:
            raise self.send_failures.pop(0)
        return tx.primary_signature or f"sig{len(self.send_calls)}"

    async def get_status(
        self,
        transaction_id: str,
        freshness_token: Optional[FreshnessToken] = None,
    ) -> TransactionStatus:
        self.status_calls[transaction_id] = self.status_calls.get(transaction_id, 0) + 1
        script = self.status_scripts.get(transaction_id)
        if not script:
            return TransactionStatus(TxState.FINALIZED, slot=100)

        step = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(step, Exception):
            raise step
        if isinstance(step, TxState):
            return TransactionStatus(step)
        return step

    async def get_messages(self, transaction_id: str) -> List[MessageFingerprint]:
        return self.messages.get(transaction_id, self.default_messages)

    def script_status(self, transaction_id: str, *steps) -> None:
        """Queue status responses; the last one repeats."""
        self.status_scripts[transaction_id] = list(steps)


@pytest.fixture
def mock_chain() -> MockChainClient:
    return MockChainClient()


# ============================================================================
# Mock Attestation Network
# ============================================================================

class MockAttestationService(AttestationService):
    """Returns None for ``pending_polls`` polls, then the artifact."""

    def __init__(self, pending_polls: int = 0, vaa_bytes: bytes = b"\x01signed-vaa"):
        self.pending_polls = pending_polls
        self.vaa_bytes = vaa_bytes
        self.poll_calls: List[MessageFingerprint] = []
        self.failures: List[Exception] = []

    async def poll(self, fingerprint: MessageFingerprint) -> Optional[AttestationArtifact]:
        self.poll_calls.append(fingerprint)
        if self.failures:
            raise self.failures.pop(0)
        if len(self.poll_calls) <= self.pending_polls:
            return None
        return AttestationArtifact(fingerprint=fingerprint, vaa_bytes=self.vaa_bytes)


@pytest.fixture
def mock_attestation() -> MockAttestationService:
    return MockAttestationService()


# ============================================================================
# Stub Signer
# ============================================================================

class StubSigner(Signer):
    """Signer that produces deterministic fake signatures."""

    def __init__(
        self,
        address: Optional[str] = None,
        reject: bool = False,
        connect_error: Optional[Exception] = None,
    ):
        self.address = address or generate_test_address(9)
        self.reject = reject
        self.connect_error = connect_error
        self.connected = False
        self.sign_calls: List[List[UnsignedTransaction]] = []

    @property
    def is_connected(self) -> bool:
        return self.connected

    async def connect(self) -> str:
        if self.connect_error:
            raise self.connect_error
        self.connected = True
        return self.address

    async def sign_all(self, txs: List[UnsignedTransaction]) -> List[SignedTransaction]:
        self.sign_calls.append(list(txs))
        if not self.connected:
            raise SignerUnavailableError("not connected")
        if self.reject:
            raise UserRejected("User rejected the request")
        return [stub_signed(tx, marker=i + 1) for i, tx in enumerate(txs)]


@pytest.fixture
def stub_signer(fee_payer) -> StubSigner:
    return StubSigner(address=fee_payer)
