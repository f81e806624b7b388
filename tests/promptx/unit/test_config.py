"""
Unit tests for RuntimeConfig
"""

import os

import pytest

from backend.promptx.config import DEFAULT_DATABASE_URL, DEFAULT_MODEL, RuntimeConfig


def test_defaults():
    config = RuntimeConfig()
    config.validate()

    assert config.model == DEFAULT_MODEL
    assert config.database_url == DEFAULT_DATABASE_URL
    assert config.enable_event_logging is True


def test_from_env(monkeypatch, tmp_path):
    """Test environment variables override defaults"""
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")
    monkeypatch.setenv("PROMPTX_MODEL", "custom-model")
    monkeypatch.setenv("PROMPTX_MAX_TOKENS", "1024")
    monkeypatch.setenv("PROMPTX_DATABASE_URL", "")
    monkeypatch.setenv("PROMPTX_OBJECTS_DIR", str(tmp_path))
    monkeypatch.setenv("PROMPTX_ENABLE_EVENT_LOGGING", "false")

    config = RuntimeConfig.from_env(str(tmp_path / "missing.env"))

    assert config.anthropic_api_key == "sk-test"
    assert config.model == "custom-model"
    assert config.max_tokens == 1024
    assert config.database_url is None
    assert config.objects_dir == str(tmp_path)
    assert config.enable_event_logging is False


def test_from_env_reads_dotenv_file(monkeypatch, tmp_path):
    monkeypatch.delenv("PROMPTX_BUS_SUMMARY_LENGTH", raising=False)
    env_file = tmp_path / ".env"
    env_file.write_text("PROMPTX_BUS_SUMMARY_LENGTH=80\n")

    try:
        config = RuntimeConfig.from_env(str(env_file))
    finally:
        os.environ.pop("PROMPTX_BUS_SUMMARY_LENGTH", None)

    assert config.bus_summary_length == 80


@pytest.mark.parametrize(
    "overrides",
    [
        {"max_tokens": 0},
        {"max_tokens": 200000},
        {"temperature": -0.1},
        {"temperature": 2.5},
        {"bus_summary_length": 0},
        {"max_file_chars": 0},
        {"http_timeout": 0},
    ],
)
def test_validate_rejects_bad_values(overrides):
    with pytest.raises(ValueError):
        RuntimeConfig(**overrides).validate()
