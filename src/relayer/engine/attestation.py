"""
Attestation Waiter - polls the attestation network for a signed VAA.

Polling is read-only: waiting again for the same fingerprint after a
timeout has no effect on the finalized transaction.
"""

import asyncio
from typing import Optional

import structlog

from relayer.config import RelayConfig, get_config
from relayer.core.errors import AttestationServiceError, AttestationTimeoutError
from relayer.core.types import AttestationArtifact, MessageFingerprint
from relayer.node.interface import AttestationService

logger = structlog.get_logger(__name__)


class AttestationWaiter:
    """Waits until the attestation for a message is available."""

    def __init__(
        self,
        service: AttestationService,
        poll_interval: Optional[float] = None,
        timeout: Optional[float] = None,
        config: Optional[RelayConfig] = None,
    ):
        self.config = config or get_config()
        self.service = service
        self.poll_interval = (
            self.config.attestation_poll_seconds if poll_interval is None else poll_interval
        )
        self.timeout = self.config.attestation_timeout_seconds if timeout is None else timeout

    async def await_attestation(
        self,
        fingerprint: MessageFingerprint,
        timeout: Optional[float] = None,
    ) -> AttestationArtifact:
        """
        Poll until the attestation is available.

        Args:
            fingerprint: Message to wait for
            timeout: Seconds to wait (defaults to the configured timeout)

        Returns:
            The signed attestation artifact

        Raises:
            AttestationTimeoutError: If nothing arrived in time
        """
        timeout = self.timeout if timeout is None else timeout
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        polls = 0

        logger.info("awaiting_attestation", vaa_id=fingerprint.vaa_id, timeout_seconds=timeout)

        while True:
            polls += 1
            try:
                artifact = await self.service.poll(fingerprint)
            except AttestationServiceError as e:
                logger.warning(
                    "attestation_poll_failed",
                    vaa_id=fingerprint.vaa_id,
                    poll=polls,
                    error=str(e),
                )
                artifact = None

            if artifact is not None:
                logger.info("attestation_received", vaa_id=fingerprint.vaa_id, polls=polls)
                return artifact

            remaining = deadline - loop.time()
            if remaining <= 0:
                logger.error(
                    "attestation_timeout",
                    vaa_id=fingerprint.vaa_id,
                    polls=polls,
                    timeout_seconds=timeout,
                )
                raise AttestationTimeoutError(
                    f"No attestation for {fingerprint.vaa_id} after {timeout}s",
                    fingerprint=fingerprint,
                    attempts=polls,
                )

            await asyncio.sleep(min(self.poll_interval, remaining))
