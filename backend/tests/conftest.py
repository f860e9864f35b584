from __future__ import annotations

import json
import os
import sys
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app import models  # noqa: F401
from app.core.config import Settings
from app.db import Base


@pytest.fixture
def sample_events_payload() -> list[dict[str, object]]:
    path = Path(__file__).parent / "data" / "sample_events.json"
    return json.loads(path.read_text(encoding="utf-8"))


@pytest.fixture
def fixed_now() -> datetime:
    return datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def test_settings(monkeypatch) -> Settings:
    settings = Settings(
        database_url="sqlite://",
        ingestion_page_size=5,
        ingestion_filters={},
        alert_dedup_window_minutes=60,
        service_role_key="service-secret",
        internal_jwt_secret="jwt-secret",
        internal_jwt_issuer="https://auth.example.test",
        internal_trusted_roles="service_role,scheduler",
        auth_base_url="https://auth.example.test",
        auth_api_key="anon-key",
        pesapal_consumer_key="consumer-key",
        pesapal_consumer_secret="consumer-secret",
    )
    monkeypatch.setattr("app.core.config.get_settings", lambda: settings)
    monkeypatch.setattr("app.core.config.settings", settings)
    return settings


@pytest.fixture
def session_maker():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autoflush=True, autocommit=False, future=True)
    yield factory
    engine.dispose()


@pytest.fixture
def session_factory(session_maker):
    """Commit-or-rollback scope bound to a private in-memory database."""

    @contextmanager
    def scope():
        session = session_maker()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    return scope


@pytest.fixture
def db_session(session_maker):
    session = session_maker()
    yield session
    session.close()
