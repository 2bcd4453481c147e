from collections.abc import Iterator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from study_api.config import get_settings
from study_api.db import Base, get_engine
from study_api.main import app


@pytest.fixture(autouse=True)
def reset_api_caches() -> Iterator[None]:
    get_settings.cache_clear()
    get_engine.cache_clear()
    yield
    get_settings.cache_clear()
    get_engine.cache_clear()


@pytest.fixture
def sqlite_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    sqlite_db_path = tmp_path / "study-tests.db"
    upload_dir = tmp_path / "uploads"
    monkeypatch.setenv("STUDY_DATABASE_URL", f"sqlite+pysqlite:///{sqlite_db_path}")
    monkeypatch.setenv("STUDY_DB_ECHO", "false")
    monkeypatch.setenv("STUDY_UPLOAD_DIR", str(upload_dir))
    return upload_dir


@pytest.fixture
def db_session(sqlite_env: Path) -> Iterator[Session]:
    engine = get_engine()
    Base.metadata.create_all(bind=engine)

    with Session(engine) as session:
        yield session

    engine.dispose()


@pytest.fixture
def client(sqlite_env: Path) -> Iterator[TestClient]:
    engine = get_engine()
    Base.metadata.create_all(bind=engine)

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
    engine.dispose()
