"""
Node Integration Layer.

Provides abstracted access to the source ledger and the attestation network.
"""

from relayer.node.interface import AttestationService, ChainClient
from relayer.node.solana import SolanaRpcClient
from relayer.node.guardian import GuardianAttestationService

__all__ = [
    "AttestationService",
    "ChainClient",
    "SolanaRpcClient",
    "GuardianAttestationService",
]
