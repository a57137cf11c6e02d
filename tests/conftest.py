import os
from pathlib import Path

import pytest

from annocache.config import AppConfig


@pytest.fixture(autouse=True)
def _use_test_env(monkeypatch):
    """Keep a developer's .env and ANNOCACHE_* variables out of every test."""
    monkeypatch.setattr(
        AppConfig, "model_config", {**AppConfig.model_config, "env_file": ".env.test"}
    )
    for key in list(os.environ):
        if key.startswith("ANNOCACHE_"):
            monkeypatch.delenv(key)


@pytest.fixture
def cache_dir(tmp_path: Path) -> Path:
    """Isolated cache root."""
    return tmp_path / "cache"


@pytest.fixture
def test_config(cache_dir: Path, tmp_path: Path) -> AppConfig:
    return AppConfig(cache_dir=cache_dir, log_dir=tmp_path / "logs")
