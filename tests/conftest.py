"""Root conftest: every test gets a fresh database and config file under tmp_path."""

import pytest

import config
import database


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Point config.json at tmp_path so tests never read or write the real one."""
    monkeypatch.setattr(config, "CONFIG_PATH", tmp_path / "config.json")
    return tmp_path / "config.json"


@pytest.fixture(autouse=True)
def db(tmp_path, isolated_config):
    """Fresh SQLite database per test; closed afterwards."""
    database.close_database()
    path = database.init_database(tmp_path / "test.db", legacy_store_path=tmp_path / "missing.json")
    yield path
    database.close_database()


@pytest.fixture
def api_client():
    from fastapi.testclient import TestClient

    from web_app import app

    with TestClient(app) as client:
        yield client
