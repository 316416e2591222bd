"""
Relay journal for persistent relay records.

Uses SQLAlchemy for async database operations with SQLite by default. The
journal lets an interrupted or timed-out relay be inspected and its
attestation polled again later.
"""

import json
from typing import List, Optional

import structlog
from sqlalchemy import Column, DateTime, Integer, String, Text, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from relayer.config import RelayConfig, get_config
from relayer.core.relay import RelayRecord, RelayStage
from relayer.core.types import AttestationArtifact, MessageFingerprint

logger = structlog.get_logger(__name__)

Base = declarative_base()


class RelayRow(Base):
    """Database model for relay records."""

    __tablename__ = "relays"

    relay_id = Column(String(50), primary_key=True)
    stage = Column(String(32), nullable=False, default="building")

    destination = Column(String(64), nullable=False)
    payload_hex = Column(Text, nullable=False)

    transaction_ids_json = Column(Text, nullable=True)  # JSON encoded
    submission_attempts = Column(Integer, default=0)

    fingerprint = Column(String(120), nullable=True)   # chain/emitter/sequence
    artifact_hex = Column(Text, nullable=True)

    failed_stage = Column(String(32), nullable=True)
    error_type = Column(String(64), nullable=True)
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True))
    updated_at = Column(DateTime(timezone=True))


class RelayJournal:
    """
    Async journal of relay records.

    Safe to share between concurrent relays: every call uses its own session.
    """

    def __init__(self, config: Optional[RelayConfig] = None, database_url: Optional[str] = None):
        """
        Initialize the journal.

        Args:
            config: Relay configuration
            database_url: Override for config.database_url
        """
        self.config = config or get_config()
        self.database_url = database_url or self.config.database_url
        self._engine = None
        self._session_factory = None

    async def connect(self) -> None:
        """Initialize database connection and create tables."""
        self._engine = create_async_engine(self.database_url, echo=False)

        self._session_factory = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        logger.info("journal_connected", url=self.database_url.split("///")[0])

    async def disconnect(self) -> None:
        """Close database connection."""
        if self._engine:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
            logger.info("journal_disconnected")

    def _get_session(self) -> AsyncSession:
        if not self._session_factory:
            raise RuntimeError("Journal not connected")
        return self._session_factory()

    async def save_record(self, record: RelayRecord) -> None:
        """Save or update a relay record."""
        async with self._get_session() as session:
            row = await session.get(RelayRow, record.relay_id)

            if row is None:
                row = RelayRow(
                    relay_id=record.relay_id,
                    destination=record.destination,
                    payload_hex=record.payload.hex(),
                    created_at=record.created_at,
                )
                session.add(row)

            row.stage = record.stage.value
            row.transaction_ids_json = json.dumps(record.transaction_ids)
            row.submission_attempts = record.submission_attempts
            row.fingerprint = record.fingerprint.vaa_id if record.fingerprint else None
            row.artifact_hex = record.artifact.hex if record.artifact else None
            row.failed_stage = record.failed_stage.value if record.failed_stage else None
            row.error_type = record.error_type
            row.error_message = record.error_message
            row.updated_at = record.updated_at

            await session.commit()

    async def load_record(self, relay_id: str) -> Optional[RelayRecord]:
        """Load a relay record by ID."""
        async with self._get_session() as session:
            row = await session.get(RelayRow, relay_id)
            if not row:
                return None
            return self._row_to_record(row)

    async def load_recent(self, limit: int = 20) -> List[RelayRecord]:
        """Load the most recently updated relay records."""
        async with self._get_session() as session:
            result = await session.execute(
                select(RelayRow).order_by(RelayRow.updated_at.desc()).limit(limit)
            )
            return [self._row_to_record(row) for row in result.scalars().all()]

    async def load_by_stage(self, stage: RelayStage) -> List[RelayRecord]:
        """Load all relay records currently at a stage."""
        async with self._get_session() as session:
            result = await session.execute(
                select(RelayRow).where(RelayRow.stage == stage.value)
            )
            return [self._row_to_record(row) for row in result.scalars().all()]

    def _row_to_record(self, row: RelayRow) -> RelayRecord:
        """Convert database row to RelayRecord."""
        fingerprint = MessageFingerprint.parse(row.fingerprint) if row.fingerprint else None
        artifact = None
        if row.artifact_hex and fingerprint:
            artifact = AttestationArtifact(fingerprint, bytes.fromhex(row.artifact_hex))

        return RelayRecord(
            relay_id=row.relay_id,
            destination=row.destination,
            payload=bytes.fromhex(row.payload_hex),
            stage=RelayStage(row.stage),
            transaction_ids=json.loads(row.transaction_ids_json or "[]"),
            submission_attempts=row.submission_attempts or 0,
            fingerprint=fingerprint,
            artifact=artifact,
            created_at=row.created_at,
            updated_at=row.updated_at,
            failed_stage=RelayStage(row.failed_stage) if row.failed_stage else None,
            error_type=row.error_type,
            error_message=row.error_message,
        )


async def init_journal(config: Optional[RelayConfig] = None) -> RelayJournal:
    """
    Initialize and connect the relay journal.

    Args:
        config: Relay configuration

    Returns:
        Connected RelayJournal instance
    """
    journal = RelayJournal(config)
    await journal.connect()
    return journal
