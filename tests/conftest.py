from __future__ import annotations

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from setup_sheet.api import app, get_db
from setup_sheet.database import Base


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture()
def memory_db(monkeypatch):
    """In-memory engine wired into the API through a ``get_db`` override."""
    engine = create_engine(
        "sqlite://",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Session = sessionmaker(bind=engine, expire_on_commit=False, future=True)
    Base.metadata.create_all(engine)

    def override_get_db():
        db = Session()
        try:
            yield db
        finally:
            db.close()

    # Any non-empty bearer token is accepted unless a test sets the allow-list.
    monkeypatch.delenv("SETUP_SHEET_API_TOKENS", raising=False)
    app.dependency_overrides[get_db] = override_get_db
    try:
        yield Session
    finally:
        app.dependency_overrides.clear()
        engine.dispose()
