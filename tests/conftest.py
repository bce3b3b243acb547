"""Shared fixtures."""

from __future__ import annotations

import pytest

_ENV_KEYS = ("HIPCHAT_USERNAME", "HIPCHAT_PASSWORD", "HIPCHAT_HOST", "HIPCHAT_TLS_VERIFY")


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Credentials from the developer's shell must not leak into tests."""
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
