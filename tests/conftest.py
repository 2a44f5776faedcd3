"""Global test fixtures for reviewsync."""

from __future__ import annotations

import pytest

from reviewsync.config import Config, set_config
from reviewsync.github_api import reset_token


@pytest.fixture(autouse=True)
def _default_config():
    """Reset config to defaults before every test.

    A developer's own .reviewsync.toml must never leak into tests, so every
    test starts with a clean default config.
    """
    set_config(Config())
    yield
    set_config(Config())


@pytest.fixture
def gh_token(monkeypatch):
    """Provide a fake GitHub token and forget it afterwards."""
    reset_token()
    monkeypatch.setenv("GH_TOKEN", "tok_test")
    yield "tok_test"
    reset_token()
