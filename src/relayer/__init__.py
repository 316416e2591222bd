"""
Cross-chain Message Relayer

Publishes application payloads as messages on a source ledger, waits for
finality, then collects the attestation network's signed proof (VAA).
"""

__version__ = "0.1.0"

from relayer.core.orchestrator import RelayOrchestrator
from relayer.core.relay import RelayRecord, RelayResult, RelayStage
from relayer.core.types import AttestationArtifact, MessageFingerprint

__all__ = [
    "RelayOrchestrator",
    "RelayRecord",
    "RelayResult",
    "RelayStage",
    "AttestationArtifact",
    "MessageFingerprint",
]
