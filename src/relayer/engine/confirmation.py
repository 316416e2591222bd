"""
Confirmation Waiter - polls the ledger until a transaction is final.

The wait is bounded by the transaction's freshness token: once the token has
expired without the transaction landing, it never will.
"""

import asyncio
from datetime import datetime, timedelta
from typing import List, Optional

import structlog

from relayer.config import RelayConfig, get_config
from relayer.core.errors import (
    ChainConnectionError,
    ChainRejectedError,
    FinalityExpiredError,
)
from relayer.core.retry import RetryExhausted, RetryPolicy, TransientPredicate, gather_or_cancel, retry_async
from relayer.core.types import (
    FinalityRecord,
    FreshnessToken,
    SubmissionResult,
    TransactionStatus,
    TxState,
    utcnow,
)
from relayer.node.interface import ChainClient

logger = structlog.get_logger(__name__)


def is_transient_query_error(error: BaseException) -> bool:
    return isinstance(error, ChainConnectionError)


class ConfirmationWaiter:
    """
    Waits for ledger finality.

    Terminal outcomes: FINALIZED (returned), REJECTED (ChainRejectedError),
    EXPIRED or deadline passed (FinalityExpiredError). The waiter never
    resubmits anything.
    """

    def __init__(
        self,
        chain: ChainClient,
        poll_interval: Optional[float] = None,
        finality_timeout: Optional[float] = None,
        query_policy: Optional[RetryPolicy] = None,
        is_transient: TransientPredicate = is_transient_query_error,
        config: Optional[RelayConfig] = None,
    ):
        """
        Initialize the waiter.

        Args:
            chain: Ledger access
            poll_interval: Seconds between status polls
            finality_timeout: Optional cap in seconds; the token expiry always applies
            query_policy: Retry budget for failing status queries
            is_transient: Predicate for retryable query errors
            config: Relay configuration
        """
        self.config = config or get_config()
        self.chain = chain
        self.poll_interval = (
            self.config.finality_poll_seconds if poll_interval is None else poll_interval
        )
        self.finality_timeout = (
            self.config.finality_timeout_seconds if finality_timeout is None else finality_timeout
        )
        self.query_policy = query_policy or RetryPolicy(
            max_attempts=self.config.status_retry_attempts,
            backoff_seconds=self.poll_interval,
        )
        self.is_transient = is_transient

    def _deadline(self, token: FreshnessToken) -> datetime:
        deadline = token.expires_at
        if self.finality_timeout is not None:
            deadline = min(deadline, utcnow() + timedelta(seconds=self.finality_timeout))
        return deadline

    async def _query(self, transaction_id: str, token: FreshnessToken) -> TransactionStatus:
        try:
            return await retry_async(
                lambda attempt: self.chain.get_status(transaction_id, token),
                self.query_policy,
                self.is_transient,
                label="get_status",
            )
        except RetryExhausted as e:
            raise ChainConnectionError(
                f"Status unavailable after {e.attempts} attempts: {e.last_error}",
                transaction_id=transaction_id,
                attempts=e.attempts,
            ) from e.last_error

    async def await_final(
        self,
        transaction_id: str,
        freshness_token: FreshnessToken,
    ) -> FinalityRecord:
        """
        Poll until the transaction is finalized.

        Args:
            transaction_id: Id returned at submission
            freshness_token: Token the transaction was signed with

        Returns:
            FinalityRecord with finalized=True

        Raises:
            FinalityExpiredError: Token expired before finalization (rebuild needed)
            ChainRejectedError: Ledger reported an execution error
            ChainConnectionError: Status queries kept failing
        """
        deadline = self._deadline(freshness_token)
        polls = 0

        logger.info(
            "awaiting_finality",
            transaction_id=transaction_id[:16] + "...",
            deadline=deadline.isoformat(),
        )

        while True:
            status = await self._query(transaction_id, freshness_token)
            polls += 1

            if status.state == TxState.FINALIZED:
                record = FinalityRecord(
                    transaction_id=transaction_id,
                    finalized=True,
                    polls=polls,
                    slot=status.slot,
                )
                logger.info(
                    "transaction_finalized",
                    transaction_id=transaction_id[:16] + "...",
                    polls=polls,
                    slot=status.slot,
                )
                return record

            if status.state == TxState.REJECTED:
                record = FinalityRecord(
                    transaction_id=transaction_id,
                    error=status.error or "rejected",
                    polls=polls,
                    slot=status.slot,
                )
                logger.error(
                    "transaction_rejected",
                    transaction_id=transaction_id[:16] + "...",
                    error=record.error,
                )
                raise ChainRejectedError(f"Transaction rejected: {record.error}", record)

            if status.state == TxState.EXPIRED or utcnow() >= deadline:
                record = FinalityRecord(
                    transaction_id=transaction_id,
                    error="expired",
                    polls=polls,
                )
                logger.warning(
                    "transaction_expired",
                    transaction_id=transaction_id[:16] + "...",
                    polls=polls,
                    reported_by_ledger=status.state == TxState.EXPIRED,
                )
                raise FinalityExpiredError(
                    "Freshness token expired before finalization; rebuild and resubmit",
                    record,
                )

            await asyncio.sleep(self.poll_interval)

    async def await_all(
        self,
        submissions: List[SubmissionResult],
        tokens: List[FreshnessToken],
    ) -> List[FinalityRecord]:
        """Wait until every transaction of a batch is finalized."""
        if len(submissions) != len(tokens):
            raise ValueError("Each submission needs its freshness token")
        return await gather_or_cancel(
            self.await_final(result.transaction_id, token)
            for result, token in zip(submissions, tokens)
        )
