import asyncio
import sqlite3
from typing import List, Optional

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from tracking_api.agents import ModelReply
from tracking_api.config import Settings
from tracking_api.errors import UpstreamFailure
from tracking_api.gateway import ChatGateway
from tracking_api.main import create_app
from tracking_api.session_store import ConversationSessionStore, ConversationTurn
from tracking_api.storage import SQLStorageAdapter

USER_ID = "A01234567"


class FakeTutor:
    """Stand-in for the Azure tutor agent. Records every history it is given."""

    model_name = "fake-tutor"

    def __init__(self, token_count: Optional[int] = 42, delay: float = 0.0):
        self.token_count = token_count
        self.delay = delay
        self.fail_with: Optional[Exception] = None
        self.calls: List[List[ConversationTurn]] = []

    async def generate(self, history: List[ConversationTurn]) -> ModelReply:
        self.calls.append(list(history))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with
        return ModelReply(
            text=f"reply {len(self.calls)}",
            token_count=self.token_count,
            model=self.model_name,
        )


def count_rows(db_path, table: str, **filters) -> int:
    query = f"SELECT COUNT(*) FROM {table}"
    if filters:
        query += " WHERE " + " AND ".join(f"{column} = ?" for column in filters)
    with sqlite3.connect(db_path) as conn:
        return conn.execute(query, tuple(filters.values())).fetchone()[0]


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "tracking.db"


@pytest.fixture
def settings(db_path):
    return Settings(
        authorized_userids=f" {USER_ID} , B12345678",
        max_requests_per_user=2,
        storage_backend="sqlite",
        sqlite_db_path=str(db_path),
        azure_openai_endpoint=None,
        azure_openai_key=None,
    )


@pytest.fixture
def fake_model():
    return FakeTutor()


@pytest.fixture
def client(settings, fake_model):
    app = create_app(settings, model=fake_model)
    with TestClient(app) as test_client:
        yield test_client


@pytest_asyncio.fixture
async def storage(db_path):
    adapter = SQLStorageAdapter(f"sqlite+aiosqlite:///{db_path}")
    await adapter.initialize()
    yield adapter
    await adapter.close()


@pytest.fixture
def sessions():
    return ConversationSessionStore(max_turns=5)


@pytest.fixture
def gateway(settings, storage, sessions, fake_model):
    return ChatGateway(settings, storage, sessions, fake_model)


@pytest.fixture
def failing_model(fake_model):
    fake_model.fail_with = UpstreamFailure("model down")
    return fake_model
