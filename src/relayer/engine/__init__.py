"""
Wait engines.

Poll the ledger for finality and the attestation network for signed VAAs.
"""

from relayer.engine.confirmation import ConfirmationWaiter
from relayer.engine.attestation import AttestationWaiter

__all__ = [
    "ConfirmationWaiter",
    "AttestationWaiter",
]
