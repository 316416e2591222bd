"""
Transaction Signer - signer capability and signing coordination.

The Signer is the wallet boundary: the relayer never holds keys itself
unless a KeypairSigner is configured explicitly.
"""

import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional

import structlog
from solders.keypair import Keypair
from solders.transaction import Transaction

from relayer.config import RelayConfig, get_config
from relayer.core.errors import SignerUnavailableError, TransactionBuildError
from relayer.core.types import (
    SignedTransaction,
    UnsignedTransaction,
    utcnow,
)
from relayer.node.interface import ChainClient

logger = structlog.get_logger(__name__)


class Signer(ABC):
    """
    Abstract wallet capability.

    Implementations raise UserRejected when the owner declines and
    SignerUnavailableError when the wallet cannot be reached.
    """

    @abstractmethod
    async def connect(self) -> str:
        """
        Connect to the wallet.

        Returns:
            Address of the signing identity
        """
        pass

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Check if the wallet is connected."""
        pass

    @abstractmethod
    async def sign_all(self, txs: List[UnsignedTransaction]) -> List[SignedTransaction]:
        """
        Sign a batch of transactions in a single round (all-or-nothing).

        Args:
            txs: Transactions to sign

        Returns:
            Signed transactions in the same order
        """
        pass


class KeypairSigner(Signer):
    """
    Signer backed by a local ed25519 keypair.

    Supports loading keys from:
    - A JSON keypair file (array of 64 bytes, the ledger CLI format)
    - A base58-encoded secret key (for environment variable configuration)

    Security note: In production, prefer a hardware or browser wallet.
    """

    def __init__(self, keypair: Optional[Keypair] = None):
        self._keypair = keypair
        self._connected = False

    @classmethod
    def from_file(cls, key_path: str) -> "KeypairSigner":
        """
        Load a keypair from a JSON file.

        Args:
            key_path: Path to the keypair file
        """
        path = Path(key_path)
        if not path.exists():
            raise FileNotFoundError(f"Keypair file not found: {key_path}")

        secret = bytes(json.loads(path.read_text()))
        signer = cls(Keypair.from_bytes(secret))
        logger.info("keypair_loaded", path=key_path, address=signer.address)
        return signer

    @classmethod
    def from_base58(cls, secret: str) -> "KeypairSigner":
        """
        Load a keypair from a base58 secret key.

        Args:
            secret: Base58-encoded 64-byte secret key
        """
        signer = cls(Keypair.from_base58_string(secret))
        logger.info("keypair_loaded_from_base58", address=signer.address)
        return signer

    @classmethod
    def from_config(cls, config: Optional[RelayConfig] = None) -> "KeypairSigner":
        """Load the keypair named by the configuration."""
        config = config or get_config()
        try:
            if config.keypair_path:
                return cls.from_file(config.keypair_path)
            if config.keypair_base58:
                return cls.from_base58(config.keypair_base58)
        except (OSError, ValueError) as e:
            raise SignerUnavailableError(f"Cannot load keypair: {e}")
        raise SignerUnavailableError("No keypair configured")

    @classmethod
    def generate(cls) -> "KeypairSigner":
        """
        Generate a new random keypair.

        WARNING: Do not use in production. The key is not persisted.
        """
        signer = cls(Keypair())
        logger.warning("test_keypair_generated", address=signer.address)
        return signer

    @property
    def address(self) -> Optional[str]:
        """Get the signer's address."""
        return str(self._keypair.pubkey()) if self._keypair else None

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> str:
        if self._keypair is None:
            raise SignerUnavailableError("No keypair loaded")
        self._connected = True
        return self.address

    async def sign_all(self, txs: List[UnsignedTransaction]) -> List[SignedTransaction]:
        if not self._connected:
            raise SignerUnavailableError("Signer not connected")

        signed = []
        for tx in txs:
            if tx.fee_payer != self.address:
                raise SignerUnavailableError(
                    f"Keypair {self.address} cannot sign for fee payer {tx.fee_payer}"
                )
            if tx.freshness_token is None:
                raise TransactionBuildError("Transaction has no freshness token")
            transaction = Transaction(
                [self._keypair], tx.message(), tx.freshness_token.blockhash
            )
            signed.append(SignedTransaction(unsigned=tx, transaction=transaction))

        logger.debug("transactions_signed", count=len(signed))
        return signed


class SigningCoordinator:
    """
    Binds fresh freshness tokens and requests one batched signature round.

    Signing failures are terminal for the attempt and are never retried here.
    """

    def __init__(
        self,
        chain: ChainClient,
        config: Optional[RelayConfig] = None,
        max_token_age_seconds: Optional[float] = None,
    ):
        """
        Initialize the coordinator.

        Args:
            chain: Ledger access for freshness tokens
            config: Relay configuration
            max_token_age_seconds: Tokens older than this are refreshed
        """
        self.chain = chain
        self.config = config or get_config()
        self.max_token_age_seconds = (
            max_token_age_seconds
            if max_token_age_seconds is not None
            else self.config.max_token_age_seconds
        )

    def _needs_refresh(self, tx: UnsignedTransaction) -> bool:
        token = tx.freshness_token
        if token is None:
            return True
        now = utcnow()
        return token.is_expired(now) or token.age_seconds(now) > self.max_token_age_seconds

    async def refresh_tokens(self, batch: List[UnsignedTransaction]) -> List[UnsignedTransaction]:
        """
        Rebind stale or missing freshness tokens.

        One token is fetched per batch, and only if at least one transaction
        needs it.
        """
        if not any(self._needs_refresh(tx) for tx in batch):
            return list(batch)

        token = await self.chain.latest_freshness_token()
        logger.debug(
            "freshness_token_refreshed",
            blockhash=token.value[:12] + "...",
            last_valid_height=token.last_valid_height,
        )
        return [tx.with_freshness(token) if self._needs_refresh(tx) else tx for tx in batch]

    async def sign(
        self,
        batch: List[UnsignedTransaction],
        signer: Signer,
    ) -> List[SignedTransaction]:
        """
        Sign a batch of transactions.

        Args:
            batch: Unsigned transactions from the builder
            signer: Wallet capability

        Returns:
            Signed transactions exactly as returned by the signer

        Raises:
            TransactionBuildError: If the batch is empty
            SignerUnavailableError: If the signer is not connected
            UserRejected: If the owner declined
        """
        if not batch:
            raise TransactionBuildError("Cannot sign an empty batch")

        if not signer.is_connected:
            raise SignerUnavailableError("Signer not connected")

        fresh = await self.refresh_tokens(batch)

        logger.info("signing_batch", count=len(fresh))
        signed = await signer.sign_all(fresh)
        logger.info("batch_signed", count=len(signed))
        return signed
