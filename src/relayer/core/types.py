"""
Relay value objects.

Each pipeline stage produces one of these immutable objects and hands it to
the next stage: payload -> UnsignedTransaction -> SignedTransaction ->
SubmissionResult -> FinalityRecord -> MessageFingerprint -> AttestationArtifact.

Ledger encoding (instructions, messages, wire transactions) is done by solders.
"""

import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Tuple

from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.message import Message
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction

from relayer.core.errors import InvalidInputError, TransactionBuildError

BASE58_ADDRESS = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def is_valid_address(address: str) -> bool:
    """Check that an address is base58 text naming a 32-byte public key."""
    if not isinstance(address, str) or not BASE58_ADDRESS.match(address):
        return False
    try:
        Pubkey.from_string(address)
    except ValueError:
        return False
    return True


def to_pubkey(address: str) -> Pubkey:
    """
    Parse a base58 address.

    Raises:
        InvalidInputError: If the address is not a well-formed key
    """
    if not is_valid_address(address):
        raise InvalidInputError(f"Malformed address: {address!r}")
    return Pubkey.from_string(address)


class TxState(str, Enum):
    """Ledger-reported state of a submitted transaction."""
    PENDING = "pending"           # Not yet at the requested commitment
    FINALIZED = "finalized"       # Will not be reverted
    EXPIRED = "expired"           # Freshness window elapsed without landing
    REJECTED = "rejected"         # Executed with a definitive error


@dataclass(frozen=True)
class AccountRef:
    """An account touched by an operation."""
    address: str
    is_signer: bool = False
    is_writable: bool = False

    def to_meta(self) -> AccountMeta:
        return AccountMeta(
            pubkey=to_pubkey(self.address),
            is_signer=self.is_signer,
            is_writable=self.is_writable,
        )


@dataclass(frozen=True)
class Operation:
    """A single chain-specific instruction."""
    program_id: str
    accounts: Tuple[AccountRef, ...]
    data: bytes

    @classmethod
    def from_instruction(cls, ix: Instruction) -> "Operation":
        return cls(
            program_id=str(ix.program_id),
            accounts=tuple(
                AccountRef(str(meta.pubkey), meta.is_signer, meta.is_writable)
                for meta in ix.accounts
            ),
            data=bytes(ix.data),
        )

    def to_instruction(self) -> Instruction:
        return Instruction(
            program_id=to_pubkey(self.program_id),
            data=self.data,
            accounts=[account.to_meta() for account in self.accounts],
        )


@dataclass(frozen=True)
class FreshnessToken:
    """
    Recent block reference that authorizes a transaction.

    Attributes:
        value: Recent blockhash (base58)
        last_valid_height: Last block height at which the blockhash is accepted
        issued_at: When the token was fetched
        expires_at: Wall-clock estimate of when the ledger stops accepting it
    """
    value: str
    last_valid_height: int
    issued_at: datetime
    expires_at: datetime

    @property
    def blockhash(self) -> Hash:
        return Hash.from_string(self.value)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= self.expires_at

    def age_seconds(self, now: Optional[datetime] = None) -> float:
        return ((now or utcnow()) - self.issued_at).total_seconds()

    def remaining_seconds(self, now: Optional[datetime] = None) -> float:
        return (self.expires_at - (now or utcnow())).total_seconds()


@dataclass(frozen=True)
class UnsignedTransaction:
    """
    Transaction ready for signing.

    Attributes:
        operations: Ordered, non-empty instructions
        fee_payer: Address paying fees and signing
        freshness_token: Recent block reference (filled in before signing)
    """
    operations: Tuple[Operation, ...]
    fee_payer: str
    freshness_token: Optional[FreshnessToken] = None

    def __post_init__(self):
        if not self.operations:
            raise TransactionBuildError("Transaction must contain at least one operation")
        if not isinstance(self.operations, tuple):
            object.__setattr__(self, "operations", tuple(self.operations))

    def with_freshness(self, token: FreshnessToken) -> "UnsignedTransaction":
        """Return a copy bound to another freshness token."""
        return replace(self, freshness_token=token)

    def message(self) -> Message:
        """Compile into a ledger message bound to the freshness token."""
        if self.freshness_token is None:
            raise TransactionBuildError("Transaction has no freshness token")
        try:
            return Message.new_with_blockhash(
                [op.to_instruction() for op in self.operations],
                to_pubkey(self.fee_payer),
                self.freshness_token.blockhash,
            )
        except ValueError as e:
            raise TransactionBuildError(f"Cannot compile transaction: {e}")

    def message_bytes(self) -> bytes:
        """Canonical bytes covered by the signatures."""
        return bytes(self.message())


@dataclass(frozen=True)
class SignedTransaction:
    """An UnsignedTransaction together with the signed ledger transaction."""
    unsigned: UnsignedTransaction
    transaction: Transaction

    @property
    def freshness_token(self) -> Optional[FreshnessToken]:
        return self.unsigned.freshness_token

    @property
    def fee_payer(self) -> str:
        return self.unsigned.fee_payer

    @property
    def signatures(self) -> List[Signature]:
        return list(self.transaction.signatures)

    @property
    def primary_signature(self) -> Optional[str]:
        """Base58 fee payer signature, which the ledger uses as transaction id."""
        signatures = self.transaction.signatures
        if not signatures or signatures[0] == Signature.default():
            return None
        return str(signatures[0])

    def serialize(self) -> bytes:
        """Ledger wire format."""
        return bytes(self.transaction)


@dataclass(frozen=True)
class SubmissionResult:
    """Outcome of a successful send."""
    transaction_id: str
    submitted_at: datetime = field(default_factory=utcnow)
    attempts: int = 1


@dataclass(frozen=True)
class TransactionStatus:
    """Status report for a transaction, as returned by a ChainClient."""
    state: TxState
    error: Optional[str] = None
    slot: Optional[int] = None

    @classmethod
    def pending(cls) -> "TransactionStatus":
        return cls(TxState.PENDING)


@dataclass(frozen=True)
class FinalityRecord:
    """
    Terminal finality outcome of a transaction.

    Terminal once finalized is True or error is set.
    """
    transaction_id: str
    finalized: bool = False
    error: Optional[str] = None
    polls: int = 0
    slot: Optional[int] = None

    @property
    def is_terminal(self) -> bool:
        return self.finalized or self.error is not None


@dataclass(frozen=True)
class MessageFingerprint:
    """(emitter, sequence) pair identifying one relayed message."""
    chain_id: int
    emitter: str      # 32-byte emitter address, hex
    sequence: int

    @property
    def vaa_id(self) -> str:
        return f"{self.chain_id}/{self.emitter}/{self.sequence}"

    @classmethod
    def parse(cls, vaa_id: str) -> "MessageFingerprint":
        """Parse a ``chain/emitter/sequence`` string."""
        try:
            chain, emitter, sequence = vaa_id.split("/")
            fingerprint = cls(int(chain), emitter.lower(), int(sequence))
            bytes.fromhex(fingerprint.emitter)
        except ValueError:
            raise InvalidInputError(f"Malformed message id: {vaa_id!r}")
        return fingerprint


@dataclass(frozen=True)
class AttestationArtifact:
    """Signed attestation (VAA) proving quorum observation of a message."""
    fingerprint: MessageFingerprint
    vaa_bytes: bytes

    @property
    def hex(self) -> str:
        return self.vaa_bytes.hex()
