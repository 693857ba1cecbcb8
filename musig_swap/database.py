"""
Swap journal.

One row per (escrow address, role). The signed batch is kept in the
JSON blob, so the refund path can still be taken after a restart.
"""

from datetime import datetime, timezone

import structlog
from sqlalchemy import Column, DateTime, Index, Integer, String, Text, text
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from .config import config
from .models import JournalEntry, SwapState

logger = structlog.get_logger()
Base = declarative_base()


class SwapAttemptRecord(Base):
    """
    SQLite table schema for swap attempts.

    Normalized columns for querying plus the complete entry as JSON.
    """

    __tablename__ = "swap_attempts"

    swap_address = Column(String, primary_key=True)
    role = Column(String, primary_key=True)

    state = Column(String, nullable=False)
    salt = Column(String, nullable=False)
    timeout = Column(Integer, nullable=False)

    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)

    full_entry_json = Column(Text, nullable=False)

    __table_args__ = (
        Index("idx_attempt_state", "state"),
        Index("idx_attempt_updated", "updated_at"),
    )


class SwapJournal:
    """Async storage of swap attempts."""

    def __init__(self, database_url: str | None = None):
        """Initialize database connection."""
        self.engine = create_async_engine(
            database_url or config.database_url, echo=False, pool_pre_ping=True
        )
        self.async_session = sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )

    async def init(self):
        """Initialize database schema."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Swap journal initialized")

    async def close(self):
        """Close database connection."""
        await self.engine.dispose()

    async def save_entry(self, entry: JournalEntry):
        """Save or update an attempt."""
        async with self.async_session() as session:
            record = SwapAttemptRecord(
                swap_address=entry.swap_address,
                role=entry.role,
                state=entry.state.value,
                salt=entry.salt,
                timeout=entry.timeout,
                created_at=entry.created_at,
                updated_at=entry.updated_at,
                full_entry_json=entry.model_dump_json(),
            )

            await session.merge(record)
            await session.commit()

    async def get_entry(self, swap_address: str, role: str) -> JournalEntry | None:
        async with self.async_session() as session:
            result = await session.get(SwapAttemptRecord, (swap_address, role))
            if result:
                return JournalEntry.model_validate_json(result.full_entry_json)
            return None

    async def get_recent_entries(self, limit: int = 10) -> list[JournalEntry]:
        async with self.async_session() as session:
            result = await session.execute(
                text(
                    "SELECT full_entry_json FROM swap_attempts ORDER BY updated_at DESC LIMIT :limit"
                ),
                {"limit": limit},
            )
            return [JournalEntry.model_validate_json(row[0]) for row in result]

    async def update_state(self, swap_address: str, role: str, state: SwapState) -> JournalEntry:
        """Record a new state for a journaled attempt."""
        entry = await self.get_entry(swap_address, role)
        if entry is None:
            raise KeyError(f"no {role} attempt for {swap_address}")
        updated = entry.model_copy(
            update={"state": state, "updated_at": datetime.now(timezone.utc)}
        )
        await self.save_entry(updated)
        return updated

    async def load_transactions(self, swap_address: str, role: str) -> list:
        """Signed batch of an attempt; empty if it was never signed."""
        entry = await self.get_entry(swap_address, role)
        if entry is None:
            return []
        return entry.transactions
