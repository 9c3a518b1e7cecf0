from collections.abc import Iterator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from studyguide.config import get_settings
from studyguide.db import Base, get_engine
from studyguide.main import app, get_progress_reporter


@pytest.fixture(autouse=True)
def reset_api_caches() -> Iterator[None]:
    get_settings.cache_clear()
    get_engine.cache_clear()
    get_progress_reporter.cache_clear()
    yield
    get_settings.cache_clear()
    get_engine.cache_clear()
    get_progress_reporter.cache_clear()


@pytest.fixture
def client(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Iterator[TestClient]:
    sqlite_db_path = tmp_path / "api-tests.db"
    monkeypatch.setenv("API_DATABASE_URL", f"sqlite+pysqlite:///{sqlite_db_path}")
    monkeypatch.setenv("API_DB_ECHO", "false")

    engine = get_engine()
    Base.metadata.create_all(bind=engine)

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
    engine.dispose()
