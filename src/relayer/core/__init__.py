"""
Core relay models and orchestration.
"""

from relayer.core.errors import RelayError
from relayer.core.relay import RelayRecord, RelayResult, RelayStage
from relayer.core.retry import RetryPolicy

__all__ = [
    "RelayError",
    "RelayRecord",
    "RelayResult",
    "RelayStage",
    "RetryPolicy",
]
