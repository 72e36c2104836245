from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("API_ACCESS_KEY", "test-access-key")
os.environ.setdefault("API_ACCESS_TOKEN", "test-access-token")
os.environ.setdefault("DASHBOARD_ORIGIN", "http://dashboard.local")
os.environ.setdefault("HEALTH_MAX_TIMEOUT", "300000")
os.environ.setdefault("APP_ENV", "test")

from pulsewatch.config import get_settings

get_settings.cache_clear()

from pulsewatch.database import Base, engine  # noqa: E402
from pulsewatch.main import app  # noqa: E402


@pytest.fixture(autouse=True)
def clean_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db_session():
    from pulsewatch.database import SessionLocal

    with SessionLocal() as session:
        yield session


@pytest.fixture
def client():
    from fastapi.testclient import TestClient
    with TestClient(app) as test_client:
        yield test_client
