"""Pytest configuration and fixtures for dslsync tests.

CRITICAL: Keeps tests away from the real ~/.dslsync directory and the real
browser profile.
"""

import pytest


@pytest.fixture(autouse=True)
def isolated_dslsync_home(tmp_path, monkeypatch):
    """Point every default dslsync location into tmp_path.

    Tests must never read or overwrite the operator's settings, credential
    cache or Chrome Local Storage.
    """
    from dslsync.config_manager import ConfigManager

    home = tmp_path / ".dslsync"
    monkeypatch.setattr(ConfigManager, "DEFAULT_CONFIG_DIR", home)
    monkeypatch.setattr(ConfigManager, "DEFAULT_CONFIG_FILE", home / "config.toml")
    monkeypatch.setattr(ConfigManager, "DEFAULT_CREDENTIAL_CACHE", home / "credentials.json")
    monkeypatch.setattr(
        "dslsync.credential_store.default_store_path", lambda: tmp_path / "no-browser-store"
    )
    monkeypatch.delenv("DSLSYNC_APP_PATH", raising=False)
    return home
