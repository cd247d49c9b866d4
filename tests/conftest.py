from __future__ import annotations

import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    # Keep a developer's .env out of the configuration under test.
    monkeypatch.setenv("ENV_PATH", str(tmp_path / "missing.env"))
    yield


@pytest.fixture()
def database_path(tmp_path) -> Path:
    return tmp_path / "documents.db"


@pytest.fixture()
def pool(database_path):
    from docstore.utils import db
    from docstore.utils.pool import initialize

    connection_pool = initialize(f"sqlite:///{database_path}", 4, timeout=0.5)
    db.init_db(connection_pool)
    try:
        yield connection_pool
    finally:
        connection_pool.close()


@pytest.fixture()
def store(pool):
    from docstore.utils.documents import DocumentStore

    return DocumentStore(pool)


