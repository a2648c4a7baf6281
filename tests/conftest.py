import pytest

import config
from config import SchedulerConfig
from db import database


@pytest.fixture
def config_dir(tmp_path, monkeypatch):
    config_dir = tmp_path / ".spares"
    config_dir.mkdir()
    monkeypatch.setattr(config, "CONFIG_DIR", config_dir)
    monkeypatch.setattr(config, "CONFIG_PATH", config_dir / "config.toml")
    monkeypatch.setattr(config, "INTERNAL_STATE_PATH", config_dir / "internal.json")
    monkeypatch.setattr(database, "CONFIG_DIR", config_dir)
    monkeypatch.setattr(database, "DB_PATH", config_dir / "spares.db")
    return config_dir


@pytest.fixture
def conn(config_dir):
    database.init_db()
    with database.get_conn() as conn:
        yield conn


@pytest.fixture
def settings():
    return SchedulerConfig()
