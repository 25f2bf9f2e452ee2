from __future__ import annotations

from contextlib import contextmanager

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from fleetsync.storage import models  # noqa: F401  registers mappers
from fleetsync.storage import provider_logs, repository
from fleetsync.storage.database import Base
from fleetsync.telemetry import events


@pytest.fixture
def in_memory_db(monkeypatch):
    """Swap every storage module onto one isolated in-memory database."""

    engine = create_engine("sqlite:///:memory:", future=True)
    TestingSession = sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
        future=True,
    )
    Base.metadata.create_all(engine)

    @contextmanager
    def session_scope():
        session = TestingSession()
        try:
            yield session
            session.commit()
        except Exception:  # pragma: no cover - defensive
            session.rollback()
            raise
        finally:
            session.close()

    for module in (repository, provider_logs, events):
        monkeypatch.setattr(module, "session_scope", session_scope)

    yield session_scope

    engine.dispose()
