"""
State management module.

Persists relay records for later inspection and attestation resumption.
"""

from relayer.state.journal import RelayJournal

__all__ = [
    "RelayJournal",
]
