import os
import sqlite3
from datetime import UTC, datetime, timedelta

import pytest
from dotenv import load_dotenv
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.db import Base
from app.models.inbox import Agent, Channel, Conversation, ConversationStatus, Message, MessageSender

load_dotenv(os.path.join(os.getcwd(), ".env"))


@pytest.fixture(scope="session")
def engine():
    database_url = os.getenv("TEST_DATABASE_URL")
    if database_url:
        engine = create_engine(database_url)
    else:
        engine = create_engine(
            "sqlite+pysqlite://",
            connect_args={
                "check_same_thread": False,
                "detect_types": sqlite3.PARSE_DECLTYPES | sqlite3.PARSE_COLNAMES,
            },
            poolclass=StaticPool,
        )

        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, _connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    Base.metadata.create_all(engine)
    return engine


@pytest.fixture()
def db_session(engine):
    connection = engine.connect()
    transaction = connection.begin()
    SessionLocal = sessionmaker(bind=connection, autoflush=False, autocommit=False)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


@pytest.fixture(autouse=True)
def broadcasts(monkeypatch):
    """Capture live events instead of pushing them to sockets."""
    from app.websocket import broadcaster

    events: list[tuple[str, str | None, str, object]] = []

    def _room(room, event_type, data):
        events.append(("room", room, str(event_type), data))

    def _connection(connection_id, event_type, data):
        events.append(("connection", connection_id, str(event_type), data))

    def _all(event_type, data):
        events.append(("all", None, str(event_type), data))

    monkeypatch.setattr(broadcaster, "emit_to_room", _room)
    monkeypatch.setattr(broadcaster, "emit_to_connection", _connection)
    monkeypatch.setattr(broadcaster, "emit_all", _all)
    return events


@pytest.fixture(autouse=True)
def _no_notifications(monkeypatch):
    from app.services.inbox import notifications

    monkeypatch.setattr(notifications, "notify_new_message", lambda *args, **kwargs: None)


@pytest.fixture(autouse=True)
def _fresh_connection_manager(monkeypatch):
    from app.websocket import manager

    monkeypatch.setattr(manager, "_manager", None)


# ============================================================================
# Inbox Fixtures
# ============================================================================


def _make_channel(db_session, name="telegram", channel_type=None):
    channel = db_session.query(Channel).filter(Channel.name == name).first()
    if channel:
        return channel
    channel = Channel(name=name, type=channel_type or name)
    db_session.add(channel)
    db_session.commit()
    db_session.refresh(channel)
    return channel


def _make_agent(db_session, name="agent-a", online=True, socket_id="sock-a"):
    agent = Agent(name=name, online=online, socket_id=socket_id)
    db_session.add(agent)
    db_session.commit()
    db_session.refresh(agent)
    return agent


def _make_conversation(
    db_session,
    channel,
    external_id="ext-1",
    customer_name="Customer",
    status=ConversationStatus.open,
    assigned_agent_id=None,
    contact_id=None,
    created_at=None,
):
    created_at = created_at or datetime.now(UTC)
    conversation = Conversation(
        channel_id=channel.id,
        customer_external_id=external_id,
        customer_contact_id=contact_id,
        customer_name=customer_name,
        status=status,
        assigned_agent_id=assigned_agent_id,
        created_at=created_at,
        last_activity_at=created_at,
    )
    db_session.add(conversation)
    db_session.commit()
    db_session.refresh(conversation)
    return conversation


def _make_message(db_session, conversation, content="Hello", sender=MessageSender.customer, created_at=None):
    message = Message(
        conversation_id=conversation.id,
        username=conversation.customer_name,
        content=content,
        sender=sender,
        created_at=created_at or datetime.now(UTC),
    )
    db_session.add(message)
    db_session.commit()
    db_session.refresh(message)
    return message


@pytest.fixture()
def make_channel(db_session):
    return lambda *args, **kwargs: _make_channel(db_session, *args, **kwargs)


@pytest.fixture()
def make_agent(db_session):
    return lambda *args, **kwargs: _make_agent(db_session, *args, **kwargs)


@pytest.fixture()
def make_conversation(db_session):
    return lambda *args, **kwargs: _make_conversation(db_session, *args, **kwargs)


@pytest.fixture()
def make_message(db_session):
    return lambda *args, **kwargs: _make_message(db_session, *args, **kwargs)


@pytest.fixture()
def telegram_channel(db_session):
    return _make_channel(db_session, "telegram")


@pytest.fixture()
def instagram_channel(db_session):
    return _make_channel(db_session, "instagram")


@pytest.fixture()
def timeline():
    """Timestamps that increase with each call, oldest first."""
    start = datetime.now(UTC) - timedelta(hours=1)
    counter = iter(range(10_000))
    return lambda: start + timedelta(seconds=next(counter))


@pytest.fixture()
def client(db_session):
    from fastapi.testclient import TestClient

    from app.api.deps import get_db
    from app.main import app

    def _override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
