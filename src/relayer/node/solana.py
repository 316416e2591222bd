"""
Solana JSON-RPC adapter for ledger access.

Provides blockhash retrieval, transaction submission, status polling and
message extraction over the ledger's HTTP JSON-RPC interface.
"""

import base64
import itertools
import json
import re
from datetime import timedelta
from typing import Any, List, Optional

import httpx
import structlog
from solders.hash import Hash
from solders.pubkey import Pubkey

from relayer.config import RelayConfig, get_config
from relayer.core.errors import (
    ChainConnectionError,
    PermanentSubmissionError,
    TransientSubmissionError,
)
from relayer.core.types import (
    FreshnessToken,
    MessageFingerprint,
    SignedTransaction,
    TransactionStatus,
    TxState,
    utcnow,
)
from relayer.node.interface import ChainClient

logger = structlog.get_logger(__name__)

SEQUENCE_LOG = re.compile(r"^Program log: Sequence: (\d+)$")

# JSON-RPC error codes worth resending on: node behind, block or slot not
# yet available, min context slot not reached.
TRANSIENT_RPC_CODES = frozenset({-32004, -32005, -32007, -32009, -32014, -32016})

MALFORMED_RESULT = (AttributeError, KeyError, IndexError, TypeError, ValueError)


class RpcError(Exception):
    """JSON-RPC level error returned by the node."""

    def __init__(self, code: int, message: str, data: Any = None):
        super().__init__(f"RPC error {code}: {message}")
        self.code = code
        self.data = data


class SolanaRpcClient(ChainClient):
    """
    Solana JSON-RPC adapter.

    Implements the ChainClient using the node's HTTP JSON-RPC API. A single
    httpx client is shared by all relays using the adapter.
    """

    def __init__(
        self,
        config: Optional[RelayConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the RPC adapter.

        Args:
            config: Relay configuration. Uses global config if not provided.
            transport: Custom httpx transport (tests)
        """
        self.config = config or get_config()
        self.rpc_url = self.config.ledger_rpc_url
        self.bridge_program_id = self.config.bridge_program_id
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._ids = itertools.count(1)

    async def connect(self) -> None:
        """Create the HTTP client and check node health."""
        if self._client is not None:
            return

        self._client = httpx.AsyncClient(
            base_url=self.rpc_url,
            headers={"Content-Type": "application/json"},
            timeout=30.0,
            transport=self._transport,
        )

        try:
            health = await self._rpc("getHealth")
        except (RpcError, ChainConnectionError) as e:
            await self.disconnect()
            raise ChainConnectionError(f"Ledger health check failed: {e}")
        if health != "ok":
            await self.disconnect()
            raise ChainConnectionError(f"Ledger node unhealthy: {health}")

        logger.info("ledger_connected", rpc_url=self.rpc_url)

    async def disconnect(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info("ledger_disconnected")

    async def _rpc(self, method: str, params: Optional[list] = None) -> Any:
        """Make a JSON-RPC call."""
        if not self._client:
            await self.connect()

        request = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params or [],
        }

        try:
            response = await self._client.post("", json=request)
        except httpx.RequestError as e:
            logger.error("ledger_request_error", method=method, error=str(e))
            raise ChainConnectionError(f"Ledger request failed: {e}")

        if response.status_code != 200:
            logger.error(
                "ledger_request_failed",
                method=method,
                status=response.status_code,
                error=response.text[:200],
            )
            # Rate limiting and server faults can clear up; other statuses
            # mean the node refused this request.
            if response.status_code == 429 or response.status_code >= 500:
                raise ChainConnectionError(
                    f"Ledger RPC HTTP {response.status_code} for {method}"
                )
            raise RpcError(response.status_code, f"HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            logger.error("ledger_response_malformed", method=method, body=response.text[:200])
            raise ChainConnectionError(f"Malformed {method} response: not a JSON object")

        if data.get("error"):
            error = data["error"]
            if not isinstance(error, dict):
                raise RpcError(0, str(error))
            raise RpcError(error.get("code", 0), error.get("message", ""), error.get("data"))

        return data.get("result")

    async def _call(self, method: str, params: Optional[list] = None) -> Any:
        """Make a JSON-RPC call where any RPC error means the node misbehaved."""
        try:
            return await self._rpc(method, params)
        except RpcError as e:
            raise ChainConnectionError(f"{method} failed: {e}")

    async def latest_freshness_token(self) -> FreshnessToken:
        """Get the latest finalized blockhash."""
        result = await self._call("getLatestBlockhash", [{"commitment": "finalized"}])
        try:
            value = result["value"]
            blockhash = value["blockhash"]
            last_valid_height = int(value["lastValidBlockHeight"])
            Hash.from_string(blockhash)
        except MALFORMED_RESULT as e:
            raise ChainConnectionError(f"Malformed getLatestBlockhash response: {e!r}")

        issued_at = utcnow()
        return FreshnessToken(
            value=blockhash,
            last_valid_height=last_valid_height,
            issued_at=issued_at,
            expires_at=issued_at + timedelta(seconds=self.config.token_ttl_seconds),
        )

    async def get_block_height(self) -> int:
        """Get the current block height."""
        result = await self._call("getBlockHeight", [{"commitment": "confirmed"}])
        try:
            return int(result)
        except MALFORMED_RESULT as e:
            raise ChainConnectionError(f"Malformed getBlockHeight response: {e!r}")

    async def send_raw(
        self,
        tx: SignedTransaction,
        skip_simulation: bool = True,
    ) -> str:
        """Send a signed transaction (base64 wire encoding)."""
        encoded = base64.b64encode(tx.serialize()).decode()
        options = {
            "encoding": "base64",
            "skipPreflight": skip_simulation,
            "preflightCommitment": "confirmed",
            # resends are owned by SubmissionRetrier
            "maxRetries": 0,
        }

        try:
            signature = await self._rpc("sendTransaction", [encoded, options])
        except ChainConnectionError as e:
            raise TransientSubmissionError(str(e), transaction_id=tx.primary_signature)
        except RpcError as e:
            logger.warning(
                "tx_send_rejected",
                code=e.code,
                error=str(e),
                signature=(tx.primary_signature or "")[:16] + "...",
            )
            if e.code in TRANSIENT_RPC_CODES:
                raise TransientSubmissionError(str(e), transaction_id=tx.primary_signature)
            raise PermanentSubmissionError(
                str(e),
                error_code=e.code,
                transaction_id=tx.primary_signature,
            )

        logger.info("tx_sent", signature=signature, skip_simulation=skip_simulation)
        return signature

    async def get_status(
        self,
        transaction_id: str,
        freshness_token: Optional[FreshnessToken] = None,
    ) -> TransactionStatus:
        """Get signature status, reporting EXPIRED past the token's last valid height."""
        result = await self._call(
            "getSignatureStatuses",
            [[transaction_id], {"searchTransactionHistory": True}],
        )
        try:
            status = (result.get("value") or [None])[0]
            if status is not None:
                slot = status.get("slot")
                err = status.get("err")
                confirmation = status.get("confirmationStatus")
        except MALFORMED_RESULT as e:
            raise ChainConnectionError(f"Malformed getSignatureStatuses response: {e!r}")

        if status is None:
            if freshness_token is not None:
                height = await self.get_block_height()
                if height > freshness_token.last_valid_height:
                    return TransactionStatus(TxState.EXPIRED)
            return TransactionStatus.pending()

        if err is not None:
            return TransactionStatus(TxState.REJECTED, error=json.dumps(err), slot=slot)
        if confirmation == "finalized":
            return TransactionStatus(TxState.FINALIZED, slot=slot)
        return TransactionStatus(TxState.PENDING, slot=slot)

    async def get_messages(self, transaction_id: str) -> List[MessageFingerprint]:
        """Extract core bridge messages from a finalized transaction."""
        result = await self._call(
            "getTransaction",
            [
                transaction_id,
                {
                    "encoding": "json",
                    "commitment": "finalized",
                    "maxSupportedTransactionVersion": 0,
                },
            ],
        )
        if not result:
            return []

        try:
            message = result["transaction"]["message"]
            account_keys = message["accountKeys"]
            logs = (result.get("meta") or {}).get("logMessages") or []

            emitters = [
                account_keys[ix["accounts"][0]]
                for ix in message.get("instructions", [])
                if account_keys[ix["programIdIndex"]] == self.bridge_program_id
                and ix.get("accounts")
            ]
            sequences = [
                int(match.group(1))
                for match in (SEQUENCE_LOG.match(line) for line in logs if isinstance(line, str))
                if match
            ]

            fingerprints = [
                MessageFingerprint(
                    chain_id=self.config.chain_id,
                    emitter=bytes(Pubkey.from_string(emitter)).hex(),
                    sequence=sequence,
                )
                for emitter, sequence in zip(emitters, sequences)
            ]
        except MALFORMED_RESULT as e:
            raise ChainConnectionError(f"Malformed getTransaction response: {e!r}")

        logger.debug(
            "tx_messages_parsed",
            signature=transaction_id[:16] + "...",
            count=len(fingerprints),
        )
        return fingerprints
