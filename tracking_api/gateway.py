"""
Rate-limited chat gateway: allow-list check, per-user request ceiling, and the
single request/response cycle with the tutor model.
"""

import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional

from tracking_api.agents import ChatModel
from tracking_api.config import Settings
from tracking_api.database import User
from tracking_api.errors import (
    CapacityExceeded,
    GatewayError,
    NotFound,
    Unauthorized,
    UpstreamFailure,
    ValidationError,
)
from tracking_api.events import EVENT_TYPE_NAMES, EventType
from tracking_api.session_store import ConversationSessionStore, ConversationTurn
from tracking_api.storage import StorageAdapter

logger = logging.getLogger(__name__)


@dataclass
class SubmitResult:
    response: str
    new_request_count: int
    max_cap: int
    token_count: Optional[int] = None


def _require(value: Optional[str], message: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(message)
    return value


def canonical_user_id(user_id: str) -> str:
    """One key per research subject: surrounding whitespace dropped, upper-cased."""
    return user_id.strip().upper()


def _session_or_new(session_id: Optional[str]) -> str:
    return session_id or str(uuid.uuid4())


class ChatGateway:
    """Orchestrates check-user, submit, reset and event logging."""

    def __init__(
        self,
        settings: Settings,
        storage: StorageAdapter,
        sessions: ConversationSessionStore,
        model: ChatModel,
    ):
        self.settings = settings
        self.storage = storage
        self.sessions = sessions
        self.model = model

    @property
    def max_cap(self) -> int:
        """Ceiling given to users created from now on."""
        return self.settings.max_requests_per_user

    def _authorize(self, user_id: str):
        if not self.settings.is_authorized(user_id):
            logger.info(f"Rejected unauthorized user id {user_id!r}")
            raise Unauthorized()

    async def check_user(self, user_id: Optional[str]) -> User:
        """Authorize a user, creating their record on first sight, and check remaining capacity."""
        user_id = canonical_user_id(_require(user_id, "UserID is required"))
        self._authorize(user_id)

        user = await self.storage.get_user(user_id)
        if user is None:
            user = await self.storage.create_user(user_id, self.max_cap)

        # The ceiling is fixed when the record is created.
        if user.request_count >= user.max_requests:
            raise CapacityExceeded(user.request_count, user.max_requests)
        return user

    async def submit(
        self,
        user_id: Optional[str],
        prompt: Optional[str],
        session_id: Optional[str] = None,
    ) -> SubmitResult:
        start = time.monotonic()
        if not user_id or not user_id.strip() or not prompt:
            raise ValidationError("Prompt and userID are required")
        user_id = canonical_user_id(user_id)
        self._authorize(user_id)

        async with self.sessions.lock_for(user_id):
            user = await self.storage.get_user(user_id)
            if user is None:
                raise NotFound()
            if user.request_count >= user.max_requests:
                raise CapacityExceeded(user.request_count, user.max_requests)

            self.sessions.append_turn(user_id, ConversationTurn("user", prompt))
            try:
                reply = await self.model.generate(self.sessions.get_context(user_id))
            except GatewayError:
                raise
            except Exception as e:
                logger.error(f"Unexpected model failure for {user_id}: {e}", exc_info=True)
                raise UpstreamFailure(str(e)) from e
            self.sessions.append_turn(user_id, ConversationTurn("assistant", reply.text))
            response_time = int((time.monotonic() - start) * 1000)

            new_count, _ = await self.storage.record_submission(
                user_id=user_id,
                session_id=_session_or_new(session_id),
                prompt=prompt,
                response=reply.text,
                model=reply.model,
                conversation_history=[t.to_message() for t in self.sessions.get_context(user_id)],
                response_time=response_time,
                token_count=reply.token_count,
            )

        logger.info(f"UserID: {user_id}, Response generated in {response_time}ms")
        return SubmitResult(
            response=reply.text,
            new_request_count=new_count,
            max_cap=user.max_requests,
            token_count=reply.token_count,
        )

    async def reset(self, user_id: Optional[str], session_id: Optional[str] = None):
        """Clear the user's conversation window and record a contextReset event."""
        user_id = canonical_user_id(_require(user_id, "UserID is required"))
        self._authorize(user_id)

        self.sessions.reset(user_id)
        await self.storage.create_event(
            user_id=user_id,
            session_id=_session_or_new(session_id),
            event_type=EventType.CONTEXT_RESET.value,
            data={},
        )

    async def log_event(
        self,
        user_id: Optional[str],
        event_type: Optional[str],
        data: Optional[Dict[str, Any]] = None,
        session_id: Optional[str] = None,
    ) -> str:
        if not user_id or not user_id.strip() or not event_type:
            raise ValidationError("UserID and eventType are required")
        if event_type not in EVENT_TYPE_NAMES:
            raise ValidationError(f"Unknown eventType: {event_type}")

        return await self.storage.create_event(
            user_id=canonical_user_id(user_id),
            session_id=_session_or_new(session_id),
            event_type=event_type,
            data=data or {},
        )
