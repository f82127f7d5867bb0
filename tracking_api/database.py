"""
SQLAlchemy models and async engine setup for the usage-tracking store.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, Text, Integer, DateTime, ForeignKey, JSON, Index
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def generate_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    """A research subject, keyed by their A-number."""

    __tablename__ = "users"

    id = Column(String(64), primary_key=True)
    request_count = Column(Integer, nullable=False, default=0)
    max_requests = Column(Integer, nullable=False, default=50)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    last_active = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class Interaction(Base):
    """One prompt/response exchange. Written once, never updated."""

    __tablename__ = "interactions"

    id = Column(String(36), primary_key=True, default=generate_id)
    user_id = Column(String(64), ForeignKey("users.id"), nullable=False)
    session_id = Column(String(128), nullable=False)
    type = Column(String(32), nullable=False, default="prompt-response")
    prompt = Column(Text, nullable=False)
    response = Column(Text, nullable=False)
    model = Column(String(100), nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    conversation_history = Column(JSON, nullable=False)
    response_time = Column(Integer, nullable=False)
    token_count = Column(Integer, nullable=True)

    __table_args__ = (
        Index("idx_interactions_user_id", "user_id"),
        Index("idx_interactions_session_id", "session_id"),
    )


class Event(Base):
    """One observed UI or lifecycle occurrence. Append-only."""

    __tablename__ = "events"

    id = Column(String(36), primary_key=True, default=generate_id)
    user_id = Column(String(64), ForeignKey("users.id"), nullable=False)
    session_id = Column(String(128), nullable=False)
    event_type = Column(String(32), nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    data = Column(JSON, nullable=False)

    __table_args__ = (
        Index("idx_events_user_id", "user_id"),
        Index("idx_events_session_id", "session_id"),
        Index("idx_events_event_type", "event_type"),
    )


def create_engine(database_url: str) -> AsyncEngine:
    """Create the async engine; pool settings only apply to server databases."""
    if database_url.startswith("sqlite"):
        return create_async_engine(database_url, echo=False)
    return create_async_engine(
        database_url,
        echo=False,  # Set to True for SQL query logging
        pool_pre_ping=True,
        pool_recycle=300,
    )


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False
    )


async def create_tables(engine: AsyncEngine):
    """Create all tables and indexes if they do not exist."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
