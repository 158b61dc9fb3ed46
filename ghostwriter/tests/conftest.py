"""
Shared test configuration.

Settings are cached on first use and the engine is created at import time, so
the environment is prepared before anything from ghostwriter is imported.
"""
import os

from cryptography.fernet import Fernet

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("CELERY_BROKER_URL", "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")
os.environ.setdefault("OPENAI_API_KEY", "test-openai-key")
os.environ.setdefault("TWITTER_BEARER_TOKEN", "test-app-bearer")
os.environ.setdefault("TOKEN_ENCRYPTION_KEY", Fernet.generate_key().decode())

from unittest.mock import Mock

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ghostwriter.core.credentials import TokenCipher
from ghostwriter.db.database import Base
from ghostwriter.services.job_queue import JobQueue
from ghostwriter.tests.fixtures.redis_fixtures import fake_redis, fake_redis_decoded, rate_limit_gate  # noqa: F401


def _sqlite_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite needs explicit BEGIN for SAVEPOINT (begin_nested) to work
    @event.listens_for(engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


@pytest.fixture
def db_engine():
    engine = _sqlite_engine()
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def token_cipher():
    return TokenCipher(Fernet.generate_key().decode())


@pytest.fixture
def mock_job_queue():
    queue = Mock(spec=JobQueue)
    queue.enqueue.return_value = "job-1"
    queue.claim.return_value = True
    return queue

