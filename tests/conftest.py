"""Shared fixtures: isolated storage, registry, a scripted model client and an API client."""

import asyncio
from typing import List, Optional

import pytest
from fastapi import FastAPI
from httpx import AsyncClient, ASGITransport

from intake.api.v1 import conversations, tools, users
from intake.clients.base import BaseModelClient
from intake.config import Settings
from intake.db import DatabaseConnection, UserRepository
from intake.db.database_models import UserDO
from intake.errors import ExternalCallError
from intake.services import AttachmentStore, DocumentStore, QuotaLedger, SessionManager, ToolAggregator


EMAIL = "ada@example.com"
OTHER_EMAIL = "grace.hopper@example.org"


class FakeModelClient(BaseModelClient):
    """Scripted model client.

    Replies are served from ``replies`` in order, then ``default_reply``.
    Setting ``gate`` holds every ``send_turn`` until the event is set.
    """

    def __init__(self, replies: Optional[List[str]] = None, title: str = "Monthly Budget Reconciliation"):
        self.replies = list(replies or [])
        self.default_reply = "Thanks. Can you walk me through that step by step?"
        self.title = title
        self.fail_turn = False
        self.fail_title = False
        self.gate: Optional[asyncio.Event] = None
        self.turn_calls = []
        self.title_calls = []

    async def send_turn(self, history, system_context):
        self.turn_calls.append((history, system_context))
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_turn:
            raise ExternalCallError("model unavailable")
        return self.replies.pop(0) if self.replies else self.default_reply

    async def derive_title(self, first_user_message):
        self.title_calls.append(first_user_message)
        if self.fail_title:
            raise ExternalCallError("title unavailable")
        return self.title


@pytest.fixture
def config(tmp_path):
    """Provide settings rooted in tmp_path."""
    return Settings(
        data_dir=str(tmp_path / "data"),
        database_path=str(tmp_path / "intake.db"),
        log_level="WARNING",
        log_file=None,
        organization_name="Acme Corp"
    )


@pytest.fixture
def db_conn(config):
    """Provide a fresh database connection."""
    db = DatabaseConnection(config.database_path)
    yield db
    db.close()


@pytest.fixture
def user_repo(db_conn):
    return UserRepository(db_conn.conn)


@pytest.fixture
def store(config):
    return DocumentStore(config.conversations_dir)


@pytest.fixture
def ledger(user_repo, config):
    return QuotaLedger(user_repo, quota_mb=config.storage_quota_mb)


@pytest.fixture
def attachments(store, ledger, config):
    return AttachmentStore(
        store,
        ledger,
        allowed_media_types=config.get_allowed_media_types(),
        max_bytes=config.max_attachment_bytes
    )


@pytest.fixture
def model_client():
    return FakeModelClient()


@pytest.fixture
def manager(store, attachments, user_repo, model_client, config):
    return SessionManager(store, attachments, user_repo, model_client, config)


@pytest.fixture
def user(user_repo):
    """Register the default test user."""
    record = UserDO(email=EMAIL, name="Ada", role="Analyst")
    user_repo.create(record)
    return record


@pytest.fixture
async def onboarded(user, manager):
    """Default test user with onboarding completed."""
    await manager.create_onboarding(EMAIL)
    await manager.append_onboarding_message(EMAIL, "I am a financial analyst.")
    await manager.complete_onboarding(EMAIL, "Analyst who lives in Excel and Slack.")
    return user


@pytest.fixture
async def client(db_conn, manager, store):
    """Create async HTTP client over a test app wired to the fixtures."""
    conversations.session_manager = manager
    users.db_conn = db_conn
    users.session_manager = manager
    tools.aggregator = ToolAggregator(store)

    # Test app without lifespan
    test_app = FastAPI(title="Intake Test")
    test_app.include_router(conversations.router)
    test_app.include_router(tools.router)
    test_app.include_router(users.router)

    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    conversations.session_manager = None
    users.db_conn = None
    users.session_manager = None
    tools.aggregator = None
