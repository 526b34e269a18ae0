from typing import Optional, List

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy import Column, String, Integer, Boolean, Text, JSON, DateTime
from sqlalchemy.future import select
from sqlalchemy.sql import func

from sentinel_boundary.models import JournalEntry

Base = declarative_base()

DEFAULT_DSN = "sqlite+aiosqlite:///./journal.db"


class JournalEntryRecord(Base):
    """
    Durable copy of a DecisionJournal entry.

    Rows are inserted once and never updated. ``sequence`` is the gate's
    insertion order and breaks ties between equal ``created_at`` values.
    """
    __tablename__ = "journal_entries"
    id = Column(Integer, primary_key=True, autoincrement=True)
    sequence = Column(Integer, nullable=False, index=True)
    decision_id = Column(String, nullable=False, index=True)
    policy_id = Column(String, nullable=False)
    target = Column(String, nullable=False, index=True)
    signal_type = Column(String, nullable=False)
    signal_value = Column(Integer, nullable=False)
    action_computed = Column(String, nullable=False)
    action_executed = Column(String, nullable=False)
    shadow_action = Column(String, nullable=True)
    execution_mode = Column(String, nullable=False)
    reason = Column(Text)
    success = Column(Boolean, nullable=False, default=True)
    meta = Column(JSON, nullable=True)
    advice = Column(JSON, nullable=True)
    created_at = Column(Integer, nullable=False, index=True)
    recorded_at = Column(DateTime, default=func.now())


def _row_to_dict(rec: JournalEntryRecord) -> dict:
    return {c.name: getattr(rec, c.name) for c in JournalEntryRecord.__table__.columns}


def record_to_entry(row: dict) -> JournalEntry:
    return JournalEntry.from_dict(row)


async def create_engine_and_sessionmaker(dsn=None):
    dsn = dsn or DEFAULT_DSN
    engine = create_async_engine(dsn, echo=False, future=True)
    async_session = sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    return engine, async_session


async def init_models(engine):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def insert_journal_entry(sessionmaker, entry: JournalEntry) -> int:
    """
    Persist one journal entry.

    Returns:
        Row id of the inserted record
    """
    data = entry.to_dict()
    async with sessionmaker() as session:
        rec = JournalEntryRecord(
            sequence=data["sequence"],
            decision_id=data["decision_id"],
            policy_id=data["policy_id"],
            target=data["target"],
            signal_type=data["signal_type"],
            signal_value=data["signal_value"],
            action_computed=data["action_computed"],
            action_executed=data["action_executed"],
            shadow_action=data["shadow_action"],
            execution_mode=data["execution_mode"],
            reason=data["reason"],
            success=data["success"],
            meta=data["meta"],
            advice=data["advice"],
            created_at=data["created_at"],
        )
        session.add(rec)
        await session.commit()
        await session.refresh(rec)
        return rec.id


async def query_journal_entries(
    sessionmaker,
    range_start: Optional[int] = None,
    range_end: Optional[int] = None,
    limit: int = 100,
    target: Optional[str] = None,
) -> List[dict]:
    """
    Chronological range query, ordered by created_at then sequence.

    Returns:
        List of row dicts (at most ``limit``)
    """
    async with sessionmaker() as session:
        query = select(JournalEntryRecord)
        if target:
            query = query.where(JournalEntryRecord.target == target)
        if range_start is not None:
            query = query.where(JournalEntryRecord.created_at >= range_start)
        if range_end is not None:
            query = query.where(JournalEntryRecord.created_at <= range_end)
        query = query.order_by(
            JournalEntryRecord.created_at.asc(),
            JournalEntryRecord.sequence.asc(),
            JournalEntryRecord.id.asc(),
        ).limit(limit)
        result = await session.execute(query)
        return [_row_to_dict(rec) for rec in result.scalars().all()]


async def get_journal_entry_by_decision_id(sessionmaker, decision_id: str) -> Optional[dict]:
    async with sessionmaker() as session:
        result = await session.execute(
            select(JournalEntryRecord)
            .where(JournalEntryRecord.decision_id == decision_id)
            .order_by(JournalEntryRecord.id.asc())
            .limit(1)
        )
        rec = result.scalar_one_or_none()
        if not rec:
            return None
        return _row_to_dict(rec)


async def load_all_journal_entries(sessionmaker, target: Optional[str] = None) -> List[JournalEntry]:
    """All persisted entries in insertion order, for journal restore at startup."""
    async with sessionmaker() as session:
        query = select(JournalEntryRecord)
        if target:
            query = query.where(JournalEntryRecord.target == target)
        result = await session.execute(query.order_by(JournalEntryRecord.sequence.asc(), JournalEntryRecord.id.asc()))
        return [record_to_entry(_row_to_dict(rec)) for rec in result.scalars().all()]
