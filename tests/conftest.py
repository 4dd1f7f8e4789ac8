import dataclasses
import os
import sqlite3
import uuid
from datetime import UTC, datetime

import httpx
import pytest
from dotenv import load_dotenv
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.db import Base

load_dotenv(os.path.join(os.getcwd(), ".env"))

# Register UUID adapter for SQLite - store as string
sqlite3.register_adapter(uuid.UUID, lambda u: str(u))

# Monkey-patch SQLAlchemy's UUID type for SQLite compatibility
# This must happen before any models are imported
from sqlalchemy.sql import sqltypes  # noqa: E402

_original_uuid_bind_processor = sqltypes.Uuid.bind_processor
_original_uuid_result_processor = sqltypes.Uuid.result_processor


def _sqlite_uuid_bind_processor(self, dialect):
    if dialect.name == "sqlite":
        def process(value):
            if value is not None:
                if isinstance(value, uuid.UUID):
                    return str(value)
                return str(uuid.UUID(value)) if value else None
            return None
        return process
    return _original_uuid_bind_processor(self, dialect)


def _sqlite_uuid_result_processor(self, dialect, coltype):
    if dialect.name == "sqlite":
        def process(value):
            if value is not None:
                if isinstance(value, uuid.UUID):
                    return value
                return uuid.UUID(value) if value else None
            return None
        return process
    return _original_uuid_result_processor(self, dialect, coltype)


sqltypes.Uuid.bind_processor = _sqlite_uuid_bind_processor
sqltypes.Uuid.result_processor = _sqlite_uuid_result_processor

from app import config as app_config  # noqa: E402
from app.models.social import (  # noqa: E402
    MessageDirection,
    MessageKind,
    MessageStatus,
    SocialConnection,
    SocialPlatform,
)
from app.models.webhook_dead_letter import WebhookDeadLetter  # noqa: E402,F401
from app.services.social import conversations as conversation_service  # noqa: E402
from app.services.social.messages import persist_message  # noqa: E402
from app.services.social.normalizers import MessageContent  # noqa: E402
from app.services.social.platform_client import MetaPlatformClient  # noqa: E402
from app.services.social.signature import compute_signature  # noqa: E402

APP_SECRET = "test-app-secret"
VERIFY_TOKEN = "test-verify-token"
OWN_APP_ID = "111111111111111"
PAGE_INBOX_APP_ID = "263902037430900"
PAGE_ID = "100200300400500"
IG_ACCOUNT_ID = "17841400000000000"


@pytest.fixture(scope="session")
def engine():
    database_url = os.getenv("TEST_DATABASE_URL")
    if database_url:
        engine = create_engine(database_url)
    else:
        engine = create_engine(
            "sqlite+pysqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

        # pysqlite needs to hand transaction control to SQLAlchemy for SAVEPOINT
        @event.listens_for(engine, "connect")
        def _sqlite_connect(dbapi_connection, _connection_record):
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(engine, "begin")
        def _sqlite_begin(conn):
            conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    return engine


@pytest.fixture()
def db_session(engine):
    """Session whose commits release savepoints inside one outer transaction."""
    connection = engine.connect()
    transaction = connection.begin()
    SessionLocal = sessionmaker(
        bind=connection,
        autoflush=False,
        autocommit=False,
        join_transaction_mode="create_savepoint",
    )
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


@pytest.fixture()
def override_settings(monkeypatch):
    """Replace the frozen settings object in every module that imported it."""
    from app.services.social import dispatcher, platform_client, rate_limit, thread_control
    from app.tasks import social as social_tasks
    from app.web.public import social_webhooks

    modules = [app_config, dispatcher, platform_client, rate_limit, thread_control, social_tasks, social_webhooks]

    def _apply(**changes):
        patched = dataclasses.replace(app_config.settings, **changes)
        for module in modules:
            monkeypatch.setattr(module, "settings", patched)
        return patched

    return _apply


@pytest.fixture(autouse=True)
def social_settings(override_settings):
    return override_settings(
        meta_app_secret=APP_SECRET,
        meta_webhook_verify_token=VERIFY_TOKEN,
        meta_app_id=OWN_APP_ID,
        meta_page_inbox_app_id=PAGE_INBOX_APP_ID,
        meta_graph_base_url="https://graph.test/v19.0",
        instagram_hourly_send_limit=200,
    )


class FakePlatformClient:
    """Records platform calls and answers them without any network."""

    def __init__(self, *, handover_ok: bool = True, send_error: Exception | None = None, profile=None):
        self.sent: list[tuple[str, dict]] = []
        self.handover_calls: list[tuple[str, str, str | None]] = []
        self.profile_calls: list[str] = []
        self.handover_ok = handover_ok
        self.send_error = send_error
        self.profile = profile
        self._counter = 0

    def send_message(self, connection, recipient_id, payload, **kwargs):
        if self.send_error is not None:
            raise self.send_error
        self._counter += 1
        self.sent.append((recipient_id, payload))
        from app.services.social.platform_client import SendResult

        return SendResult(recipient_id=recipient_id, message_id=f"m_out_{self._counter}")

    def get_user_profile(self, connection, user_id):
        self.profile_calls.append(user_id)
        if self.profile is None:
            raise RuntimeError("profile unavailable")
        return self.profile

    def pass_thread_control(self, connection, recipient_id, target_app_id=None, metadata=None):
        self.handover_calls.append(("pass", recipient_id, target_app_id))
        return self.handover_ok

    def take_thread_control(self, connection, recipient_id, target_app_id=None, metadata=None):
        self.handover_calls.append(("take", recipient_id, target_app_id))
        return self.handover_ok

    def request_thread_control(self, connection, recipient_id, target_app_id=None, metadata=None):
        self.handover_calls.append(("request", recipient_id, target_app_id))
        return self.handover_ok


@pytest.fixture()
def fake_client():
    return FakePlatformClient()


def mock_platform_client(handler) -> MetaPlatformClient:
    """Real client over an ``httpx.MockTransport``; sleeps are skipped."""
    http_client = httpx.Client(transport=httpx.MockTransport(handler))
    return MetaPlatformClient(
        base_url="https://graph.test/v19.0",
        http_client=http_client,
        sleep=lambda _seconds: None,
    )


@pytest.fixture()
def organization_id():
    return uuid.uuid4()


@pytest.fixture()
def messenger_connection(db_session, organization_id):
    connection = SocialConnection(
        organization_id=organization_id,
        platform=SocialPlatform.messenger,
        account_id=PAGE_ID,
        page_id=PAGE_ID,
        account_name="Test Page",
        app_id=OWN_APP_ID,
        access_token="page-token",
        is_active=True,
    )
    db_session.add(connection)
    db_session.commit()
    db_session.refresh(connection)
    return connection


@pytest.fixture()
def instagram_connection(db_session, organization_id):
    connection = SocialConnection(
        organization_id=organization_id,
        platform=SocialPlatform.instagram,
        account_id=IG_ACCOUNT_ID,
        page_id=PAGE_ID,
        account_name="test_shop",
        app_id=OWN_APP_ID,
        access_token="ig-token",
        is_active=True,
    )
    db_session.add(connection)
    db_session.commit()
    db_session.refresh(connection)
    return connection


@pytest.fixture()
def messenger_conversation(db_session, messenger_connection):
    conversation = conversation_service.resolve(
        db_session,
        messenger_connection,
        "PSID_USER_1",
        inbound=False,
        timestamp=datetime(2026, 1, 1, 12, 0, tzinfo=UTC),
    )
    db_session.commit()
    return conversation


@pytest.fixture()
def instagram_conversation(db_session, instagram_connection):
    conversation = conversation_service.resolve(
        db_session,
        instagram_connection,
        "IGSID_USER_1",
        inbound=False,
        timestamp=datetime(2026, 1, 1, 12, 0, tzinfo=UTC),
    )
    db_session.commit()
    return conversation


def add_outbound(db_session, conversation, message_id: str, timestamp_ms: int, text: str = "hi"):
    """Insert an outbound message with ``status=sent`` at ``timestamp_ms``."""
    result = persist_message(
        db_session,
        conversation,
        platform_message_id=message_id,
        direction=MessageDirection.outbound,
        sender_id=conversation.connection.page_id or conversation.connection.account_id,
        recipient_id=conversation.participant_id,
        content=MessageContent(kind=MessageKind.text, text=text),
        timestamp=datetime.fromtimestamp(timestamp_ms / 1000, tz=UTC),
        status=MessageStatus.sent,
    )
    db_session.commit()
    return result.message


def signed_headers(body: bytes, secret: str = APP_SECRET) -> dict:
    return {
        "Content-Type": "application/json",
        "X-Hub-Signature-256": compute_signature(body, secret),
    }


def messenger_payload(*events: dict, page_id: str = PAGE_ID, standby: list[dict] | None = None) -> dict:
    entry = {"id": page_id, "time": 1767268800000, "messaging": list(events)}
    if standby:
        entry["standby"] = standby
    return {"object": "page", "entry": [entry]}


def instagram_payload(*, messaging: list[dict] | None = None, changes: list[dict] | None = None) -> dict:
    entry = {"id": IG_ACCOUNT_ID, "time": 1767268800}
    if messaging:
        entry["messaging"] = messaging
    if changes:
        entry["changes"] = changes
    return {"object": "instagram", "entry": [entry]}


def text_event(mid: str, text: str = "Hello", sender: str = "PSID_USER_1", timestamp: int = 1767268800000) -> dict:
    return {
        "sender": {"id": sender},
        "recipient": {"id": PAGE_ID},
        "timestamp": timestamp,
        "message": {"mid": mid, "text": text},
    }
