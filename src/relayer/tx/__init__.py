"""
Transaction module.

Handles transaction construction, signing, and submission.
"""

from relayer.tx.builder import TransactionBuilder
from relayer.tx.signer import KeypairSigner, Signer, SigningCoordinator
from relayer.tx.submitter import SubmissionRetrier

__all__ = [
    "TransactionBuilder",
    "KeypairSigner",
    "Signer",
    "SigningCoordinator",
    "SubmissionRetrier",
]
