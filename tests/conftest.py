import os
import sys
from typing import Callable, Iterator

# Ensure project root is on sys.path when pytest runs from a different CWD.
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if project_root not in sys.path:
    sys.path.insert(0, project_root)

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from country_api import models  # noqa: E402
from country_api.config import settings  # noqa: E402
from country_api.database import get_db, get_session_factory  # noqa: E402
from country_api.main import app  # noqa: E402
from country_api.services.gateway import get_gateway  # noqa: E402


class FakeGateway:
    """Stands in for ExternalDataGateway.fetch_all."""

    def __init__(self, countries=None, rates=None, error=None):
        self.countries = countries or []
        self.rates = rates or {}
        self.error = error
        self.calls = 0

    async def fetch_all(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.countries), dict(self.rates)


class FixedRng:
    """randint() always returns the same multiplier."""

    def __init__(self, value: int = 1500):
        self.value = value
        self.calls = []

    def randint(self, a, b):
        self.calls.append((a, b))
        return self.value


def make_test_db():
    # Use StaticPool to keep a single in-memory DB across threads/requests
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    models.Base.metadata.create_all(bind=engine)
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    return engine, SessionLocal


def override_get_db(SessionLocal) -> Callable[[], Iterator]:
    def _get_db():
        db = SessionLocal()
        try:
            yield db
        finally:
            db.close()

    return _get_db


@pytest.fixture
def session_factory():
    engine, SessionLocal = make_test_db()
    yield SessionLocal
    engine.dispose()


@pytest.fixture
def cache_dir(tmp_path, monkeypatch):
    path = tmp_path / "cache"
    monkeypatch.setattr(settings, "CACHE_DIR", path)
    return path


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def client(session_factory, cache_dir, gateway):
    app.dependency_overrides[get_db] = override_get_db(session_factory)
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_gateway] = lambda: gateway
    yield TestClient(app)
    app.dependency_overrides.clear()
