"""Tests for SecurityConfig."""

from pathlib import Path

import pytest

from tradeguard.config import SecurityConfig, get_config, set_config


@pytest.fixture(autouse=True)
def reset_config():
    set_config(None)
    yield
    set_config(None)


def test_from_env_defaults(monkeypatch):
    for name in (
        "TRADEGUARD_DATA_DIR",
        "TRADEGUARD_AUDIT_LEVEL",
        "TRADEGUARD_AUDIT_SAMPLE_RATE",
        "TRADEGUARD_AUDIT_ENABLED",
    ):
        monkeypatch.delenv(name, raising=False)

    config = SecurityConfig.from_env()
    assert config.data_dir == Path.cwd() / ".tradeguard"
    assert config.audit_level == "INFO"
    assert config.audit_sample_rate == 0.1
    assert config.db_path.name == "trades.db"
    assert config.audit_path.name == "audit.jsonl"


def test_default_data_dir_follows_working_directory(monkeypatch, tmp_path):
    """Test the default data directory is resolved when the config is built."""
    first = SecurityConfig()
    monkeypatch.chdir(tmp_path)

    assert SecurityConfig().data_dir == tmp_path.resolve() / ".tradeguard"
    assert first.data_dir != tmp_path.resolve() / ".tradeguard"


def test_from_env_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("TRADEGUARD_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("TRADEGUARD_AUDIT_LEVEL", "warn")
    monkeypatch.setenv("TRADEGUARD_AUDIT_SAMPLE_RATE", "0.5")
    monkeypatch.setenv("TRADEGUARD_AUDIT_ENABLED", "false")

    config = SecurityConfig.from_env()
    assert config.data_dir == tmp_path
    assert config.db_path == tmp_path / "trades.db"
    assert config.audit_level == "WARN"
    assert config.audit_sample_rate == 0.5
    assert config.audit_path is None


def test_global_config(tmp_path):
    custom = SecurityConfig(data_dir=tmp_path)
    set_config(custom)
    assert get_config() is custom

    set_config(None)
    assert get_config() is not custom
