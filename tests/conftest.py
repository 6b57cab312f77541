"""Pytest fixtures for tessy tests."""

import pytest

from helpers.logging import LoggerStub


@pytest.fixture
def logger() -> LoggerStub:
    """Provide a logger that discards all output."""
    return LoggerStub()


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch, tmp_path):
    """Keep developer config and environment overrides out of the tests."""
    monkeypatch.delenv("TESSY_JOBS", raising=False)
    monkeypatch.delenv("TESSY_STORE_PATH", raising=False)
    monkeypatch.setattr(
        "tessy.config.get_machine_config_path", lambda: tmp_path / "no-machine-config.yml"
    )
    monkeypatch.setattr(
        "tessy.config.get_user_config_path", lambda: tmp_path / "no-user-config.yml"
    )
