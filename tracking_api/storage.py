"""
Persistence adapter for users, interactions and events.

The gateway only talks to the `StorageAdapter` protocol. `SQLStorageAdapter`
implements it on SQLAlchemy's asyncio engine and serves both the embedded
SQLite file store and PostgreSQL.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tracking_api.config import Settings
from tracking_api.database import (
    User,
    Interaction,
    Event,
    create_engine,
    create_session_maker,
    create_tables,
    utcnow,
)
from tracking_api.errors import NotFound, StorageFailure

logger = logging.getLogger(__name__)

UPDATABLE_USER_FIELDS = frozenset({"request_count", "max_requests", "last_active"})


class StorageAdapter(Protocol):
    async def initialize(self) -> None: ...

    async def get_user(self, user_id: str) -> Optional[User]: ...

    async def create_user(self, user_id: str, max_requests: int) -> User: ...

    async def update_user(self, user_id: str, **fields: Any) -> None: ...

    async def increment_request_count(self, user_id: str) -> int: ...

    async def create_interaction(
        self,
        *,
        user_id: str,
        session_id: str,
        prompt: str,
        response: str,
        model: str,
        conversation_history: List[Dict[str, str]],
        response_time: int,
        token_count: Optional[int] = None,
        timestamp: Optional[datetime] = None,
    ) -> str: ...

    async def record_submission(
        self,
        *,
        user_id: str,
        session_id: str,
        prompt: str,
        response: str,
        model: str,
        conversation_history: List[Dict[str, str]],
        response_time: int,
        token_count: Optional[int] = None,
    ) -> Tuple[int, str]: ...

    async def create_event(
        self,
        *,
        user_id: str,
        session_id: str,
        event_type: str,
        data: Dict[str, Any],
        timestamp: Optional[datetime] = None,
    ) -> str: ...

    async def list_interactions(
        self, user_id: Optional[str] = None, session_id: Optional[str] = None
    ) -> List[Interaction]: ...

    async def list_events(
        self,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
        event_type: Optional[str] = None,
    ) -> List[Event]: ...

    async def close(self) -> None: ...


class SQLStorageAdapter:
    """StorageAdapter backed by an async SQLAlchemy engine."""

    def __init__(self, database_url: str):
        self.database_url = database_url
        self.engine = create_engine(database_url)
        self.session_maker = create_session_maker(self.engine)

    @asynccontextmanager
    async def _session(self):
        """Yield a session inside a transaction; driver errors become StorageFailure."""
        async with self.session_maker() as session:
            try:
                async with session.begin():
                    yield session
            except SQLAlchemyError as e:
                logger.error(f"Storage error: {e}", exc_info=True)
                raise StorageFailure(str(e)) from e

    async def initialize(self):
        try:
            await create_tables(self.engine)
        except SQLAlchemyError as e:
            logger.error(f"Could not create tables: {e}", exc_info=True)
            raise StorageFailure(str(e)) from e

    async def get_user(self, user_id: str) -> Optional[User]:
        async with self._session() as session:
            return await _fetch_user(session, user_id)

    async def create_user(self, user_id: str, max_requests: int) -> User:
        """Insert a fresh user with a zero request count and the given ceiling."""
        now = utcnow()
        user = User(
            id=user_id,
            request_count=0,
            max_requests=max_requests,
            created_at=now,
            last_active=now,
        )
        async with self._session() as session:
            session.add(user)
        logger.info(f"Created user {user_id} with ceiling {max_requests}")
        return user

    async def update_user(self, user_id: str, **fields: Any):
        unknown = set(fields) - UPDATABLE_USER_FIELDS
        if unknown:
            raise ValueError(f"Cannot update user fields: {sorted(unknown)}")
        if not fields:
            return
        async with self._session() as session:
            await session.execute(update(User).where(User.id == user_id).values(**fields))

    async def increment_request_count(self, user_id: str) -> int:
        """Atomically bump the request count, touch last-active and return the new count."""
        async with self._session() as session:
            return await _increment(session, user_id)

    async def record_submission(
        self,
        *,
        user_id: str,
        session_id: str,
        prompt: str,
        response: str,
        model: str,
        conversation_history: List[Dict[str, str]],
        response_time: int,
        token_count: Optional[int] = None,
    ) -> Tuple[int, str]:
        """Count one successful submission and store its interaction in a single transaction.

        Either both land or neither does. Returns the new request count and the
        interaction id.
        """
        interaction = Interaction(
            user_id=user_id,
            session_id=session_id,
            type="prompt-response",
            prompt=prompt,
            response=response,
            model=model,
            timestamp=utcnow(),
            conversation_history=conversation_history,
            response_time=response_time,
            token_count=token_count,
        )
        async with self._session() as session:
            new_count = await _increment(session, user_id)
            session.add(interaction)
            await session.flush()
            return new_count, interaction.id

    async def create_interaction(
        self,
        *,
        user_id: str,
        session_id: str,
        prompt: str,
        response: str,
        model: str,
        conversation_history: List[Dict[str, str]],
        response_time: int,
        token_count: Optional[int] = None,
        timestamp: Optional[datetime] = None,
    ) -> str:
        interaction = Interaction(
            user_id=user_id,
            session_id=session_id,
            type="prompt-response",
            prompt=prompt,
            response=response,
            model=model,
            timestamp=timestamp or utcnow(),
            conversation_history=conversation_history,
            response_time=response_time,
            token_count=token_count,
        )
        async with self._session() as session:
            session.add(interaction)
            await session.flush()
            return interaction.id

    async def create_event(
        self,
        *,
        user_id: str,
        session_id: str,
        event_type: str,
        data: Dict[str, Any],
        timestamp: Optional[datetime] = None,
    ) -> str:
        event = Event(
            user_id=user_id,
            session_id=session_id,
            event_type=event_type,
            timestamp=timestamp or utcnow(),
            data=data,
        )
        async with self._session() as session:
            session.add(event)
            await session.flush()
            return event.id

    async def list_interactions(
        self, user_id: Optional[str] = None, session_id: Optional[str] = None
    ) -> List[Interaction]:
        query = select(Interaction).order_by(Interaction.timestamp)
        if user_id is not None:
            query = query.where(Interaction.user_id == user_id)
        if session_id is not None:
            query = query.where(Interaction.session_id == session_id)
        async with self._session() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def list_events(
        self,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
        event_type: Optional[str] = None,
    ) -> List[Event]:
        query = select(Event).order_by(Event.timestamp)
        if user_id is not None:
            query = query.where(Event.user_id == user_id)
        if session_id is not None:
            query = query.where(Event.session_id == session_id)
        if event_type is not None:
            query = query.where(Event.event_type == event_type)
        async with self._session() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def close(self):
        await self.engine.dispose()


async def _fetch_user(session: AsyncSession, user_id: str) -> Optional[User]:
    result = await session.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def _increment(session: AsyncSession, user_id: str) -> int:
    result = await session.execute(
        update(User)
        .where(User.id == user_id)
        .values(request_count=User.request_count + 1, last_active=utcnow())
    )
    if result.rowcount == 0:
        raise NotFound(f"User {user_id} not found")
    count = await session.execute(select(User.request_count).where(User.id == user_id))
    return count.scalar_one()


def build_storage(settings: Settings) -> StorageAdapter:
    """Select the storage backend named by the settings."""
    backend = settings.storage_backend.strip().lower()
    if backend == "sqlite":
        db_path = Path(settings.sqlite_db_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        logger.info(f"Using SQLite database at {db_path}")
        return SQLStorageAdapter(f"sqlite+aiosqlite:///{db_path}")
    if backend == "postgres":
        if not settings.database_url:
            raise ValueError("DATABASE_URL is required for the postgres backend")
        logger.info("Using PostgreSQL database")
        return SQLStorageAdapter(settings.database_url)
    if backend == "cosmosdb":
        raise NotImplementedError("Cosmos DB adapter not yet implemented. Use sqlite for local development.")
    raise ValueError(f"Unknown storage backend: {settings.storage_backend}")
