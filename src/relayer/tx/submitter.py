"""
Submission Retrier - sends signed transactions with bounded retry.

Resending the same SignedTransaction is idempotent: the ledger deduplicates
by signature, so every attempt targets the same transaction id. A transaction
whose freshness token expired cannot be fixed here; it needs a rebuild.
"""

from typing import Callable, List, Optional

import structlog

from relayer.config import RelayConfig, get_config
from relayer.core.errors import (
    ChainConnectionError,
    RelayError,
    SubmissionExhaustedError,
    TransientSubmissionError,
)
from relayer.core.retry import RetryExhausted, RetryPolicy, TransientPredicate, gather_or_cancel, retry_async
from relayer.core.types import SignedTransaction, SubmissionResult, utcnow
from relayer.node.interface import ChainClient

logger = structlog.get_logger(__name__)


def is_transient_submission_error(error: BaseException) -> bool:
    """Default classification: typed transient errors and connection failures."""
    return isinstance(error, (TransientSubmissionError, ChainConnectionError))


class SubmissionRetrier:
    """
    Submits signed transactions, retrying transient failures.

    Simulation trade-off: with ``skip_simulation=True`` (default) the ledger
    accepts the transaction without a preflight run, which saves a round trip
    but means execution errors only show up as REJECTED during confirmation.
    Set it to False to detect those errors at submission time instead.
    """

    def __init__(
        self,
        chain: ChainClient,
        policy: Optional[RetryPolicy] = None,
        is_transient: TransientPredicate = is_transient_submission_error,
        skip_simulation: Optional[bool] = None,
        config: Optional[RelayConfig] = None,
    ):
        """
        Initialize the retrier.

        Args:
            chain: Ledger access
            policy: Attempt budget and backoff (defaults from config)
            is_transient: Predicate separating retryable failures
            skip_simulation: Override for config.skip_simulation
            config: Relay configuration
        """
        self.config = config or get_config()
        self.chain = chain
        self.policy = policy or RetryPolicy(
            max_attempts=self.config.max_submit_attempts,
            backoff_seconds=self.config.submit_backoff_seconds,
        )
        self.is_transient = is_transient
        self.skip_simulation = (
            self.config.skip_simulation if skip_simulation is None else skip_simulation
        )

    async def submit(self, tx: SignedTransaction) -> SubmissionResult:
        """
        Send a signed transaction.

        Args:
            tx: Transaction to send

        Returns:
            SubmissionResult with the ledger's transaction id

        Raises:
            SubmissionExhaustedError: After max_attempts transient failures
            RelayError: Any permanent failure, immediately
        """
        attempts = 0

        async def attempt_send(attempt: int) -> str:
            nonlocal attempts
            attempts = attempt
            return await self.chain.send_raw(tx, skip_simulation=self.skip_simulation)

        try:
            transaction_id = await retry_async(
                attempt_send,
                self.policy,
                self.is_transient,
                label="submit_transaction",
            )
        except RelayError as e:
            if e.attempts is None:
                e.attempts = attempts
            logger.error(
                "submission_failed",
                signature=(tx.primary_signature or "")[:16] + "...",
                attempts=attempts,
                error=str(e),
            )
            raise
        except RetryExhausted as e:
            logger.error(
                "submission_exhausted",
                signature=(tx.primary_signature or "")[:16] + "...",
                attempts=e.attempts,
                error=str(e.last_error),
            )
            raise SubmissionExhaustedError(
                f"Submission failed after {e.attempts} attempts: {e.last_error}",
                transaction_id=tx.primary_signature,
                attempts=e.attempts,
            ) from e.last_error

        result = SubmissionResult(
            transaction_id=transaction_id,
            submitted_at=utcnow(),
            attempts=attempts,
        )
        logger.info(
            "transaction_submitted",
            transaction_id=transaction_id,
            attempts=attempts,
        )
        return result

    async def submit_all(
        self,
        txs: List[SignedTransaction],
        on_accepted: Optional[Callable[[SubmissionResult], None]] = None,
    ) -> List[SubmissionResult]:
        """
        Submit every transaction concurrently, each with its own retry budget.

        ``on_accepted`` is called as soon as each transaction is accepted, so
        callers learn about transactions already on the ledger even when a
        sibling fails and the batch is cancelled.
        """
        async def submit_one(tx: SignedTransaction) -> SubmissionResult:
            result = await self.submit(tx)
            if on_accepted is not None:
                on_accepted(result)
            return result

        return await gather_or_cancel(submit_one(tx) for tx in txs)
