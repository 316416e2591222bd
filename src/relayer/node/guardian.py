"""
Guardian API adapter for attestation polling.

Looks up signed VAAs through the attestation network's REST API.
"""

import base64
from typing import Optional

import httpx
import structlog

from relayer.config import RelayConfig, get_config
from relayer.core.errors import AttestationServiceError
from relayer.core.types import AttestationArtifact, MessageFingerprint
from relayer.node.interface import AttestationService

logger = structlog.get_logger(__name__)


class GuardianAttestationService(AttestationService):
    """
    Guardian REST adapter.

    Implements the AttestationService using ``/v1/signed_vaa``. A 404 means
    quorum has not been reached yet.
    """

    def __init__(
        self,
        config: Optional[RelayConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the guardian adapter.

        Args:
            config: Relay configuration. Uses global config if not provided.
            transport: Custom httpx transport (tests)
        """
        self.config = config or get_config()
        self.base_url = self.config.attestation_url
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def connect(self) -> None:
        """Create the HTTP client."""
        if self._client is not None:
            return

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=15.0,
            transport=self._transport,
        )
        logger.info("guardian_api_connected", base_url=self.base_url)

    async def disconnect(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info("guardian_api_disconnected")

    async def poll(self, fingerprint: MessageFingerprint) -> Optional[AttestationArtifact]:
        """Fetch the signed VAA for a message, or None while pending."""
        if not self._client:
            await self.connect()

        path = f"/v1/signed_vaa/{fingerprint.vaa_id}"
        try:
            response = await self._client.get(path)
        except httpx.RequestError as e:
            raise AttestationServiceError(
                f"Attestation request failed: {e}",
                fingerprint=fingerprint,
            )

        if response.status_code == 404:
            return None

        if response.status_code != 200:
            logger.warning(
                "guardian_request_failed",
                vaa_id=fingerprint.vaa_id,
                status=response.status_code,
            )
            raise AttestationServiceError(
                f"Attestation API HTTP {response.status_code}",
                fingerprint=fingerprint,
            )

        try:
            body = response.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            logger.warning("guardian_response_malformed", vaa_id=fingerprint.vaa_id)
            raise AttestationServiceError(
                "Malformed attestation response: not a JSON object",
                fingerprint=fingerprint,
            )

        encoded = body.get("vaaBytes")
        if not encoded:
            return None

        try:
            vaa_bytes = base64.b64decode(encoded, validate=True)
        except (ValueError, TypeError) as e:
            raise AttestationServiceError(
                f"Malformed VAA encoding: {e}",
                fingerprint=fingerprint,
            )

        logger.info("vaa_fetched", vaa_id=fingerprint.vaa_id, size=len(vaa_bytes))
        return AttestationArtifact(fingerprint=fingerprint, vaa_bytes=vaa_bytes)
