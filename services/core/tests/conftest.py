"""Pytest configuration and fixtures for Chase Core tests.

This module provides fixtures for:
- Database: SQLite in-memory engine built from the ORM metadata
- HTTP client: AsyncClient for FastAPI testing
- Mocks: channel senders
"""

from collections.abc import AsyncGenerator, Generator
from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy import StaticPool, create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from chase_core.config import Settings
from chase_core.domain.models import Base
from chase_core.providers.base import ChatSender, EmailSender, SendResult


# -----------------------------------------------------------------------------
# Test Settings
# -----------------------------------------------------------------------------


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings with safe defaults."""
    return Settings(
        mysql_url="sqlite+pysqlite:///:memory:",
        celery_broker_url="memory://",
        celery_result_backend="cache+memory://",
        base_url="https://chase.test",
        unsubscribe_secret="test-unsubscribe-secret-do-not-use",
        ops_api_token="test-ops-token",
        resend_api_key="re_test",
        twilio_account_sid="ACtest",
        twilio_auth_token="test-twilio-token",
        provider_timeout_seconds=2.0,
        log_json=False,
    )


# -----------------------------------------------------------------------------
# Synchronous Database Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def sync_engine():
    """Create a synchronous SQLite in-memory engine for testing."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # Enable foreign key support and let SQLAlchemy own transactions, so
    # SAVEPOINTs (audit logging) behave as they do on MySQL
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        dbapi_conn.isolation_level = None
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    # Temporarily override BigInteger to compile as INTEGER for SQLite
    # This is needed because SQLite only supports autoincrement on INTEGER PRIMARY KEY
    from sqlalchemy.dialects import sqlite
    original_visit = sqlite.dialect.type_compiler_cls.visit_BIGINT
    sqlite.dialect.type_compiler_cls.visit_BIGINT = lambda self, type_, **kw: "INTEGER"

    # Create all tables
    Base.metadata.create_all(bind=engine)

    # Restore original behavior
    sqlite.dialect.type_compiler_cls.visit_BIGINT = original_visit

    yield engine

    # Cleanup
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def sync_session_factory(sync_engine) -> sessionmaker[Session]:
    """Create a synchronous session factory."""
    return sessionmaker(
        bind=sync_engine,
        autocommit=False,
        autoflush=False,
    )


@pytest.fixture
def db_session(sync_session_factory) -> Generator[Session, None, None]:
    """Create a synchronous database session for testing."""
    session = sync_session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# -----------------------------------------------------------------------------
# FastAPI Test Client Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def test_app(test_settings, sync_engine, sync_session_factory) -> FastAPI:
    """Create a FastAPI test application with test settings and DB override."""
    from chase_core.api.deps import get_db
    from chase_core.main import app

    # Override settings
    app.state.settings = test_settings

    # Override the database dependency to use test database
    def override_get_db():
        session = sync_session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db

    yield app

    # Clean up overrides
    app.dependency_overrides.clear()
    app.state.settings = None


@pytest.fixture
async def client(test_app, db_session) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client for testing FastAPI endpoints.

    Note: The db_session fixture is included to ensure the test database
    is set up before the client is created.
    """
    async with AsyncClient(
        transport=ASGITransport(app=test_app),
        base_url="http://test",
    ) as ac:
        yield ac


# -----------------------------------------------------------------------------
# Mock Fixtures for Channel Senders
# -----------------------------------------------------------------------------


@pytest.fixture
def mock_email_sender() -> AsyncMock:
    """Email sender that accepts every message."""
    sender = AsyncMock(spec=EmailSender)
    sender.send_email.return_value = SendResult(
        success=True,
        external_message_id="email_123",
    )
    return sender


@pytest.fixture
def mock_chat_sender() -> AsyncMock:
    """Chat sender that accepts every message."""
    sender = AsyncMock(spec=ChatSender)
    sender.send_chat_message.return_value = SendResult(
        success=True,
        external_message_id="SM123",
    )
    return sender
