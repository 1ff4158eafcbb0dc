"""Configuration management module.

This module handles persistent configuration storage using TOML format.

Two files are involved:
- Global settings (~/.dslsync/config.toml): console URL, browser store
  location, credential cache location, protected application tags.
- Per-application config (<app_dir>/app.toml): remote application id and
  the application's test API key.

Security:
- Config file permissions: 0600 (owner read/write only)
- Atomic writes using temporary file
"""

import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

try:
    import tomli  # type: ignore[import]
except ImportError:
    # Fallback for older Python versions
    try:
        import tomllib as tomli  # type: ignore[import]
    except ImportError as e:
        raise ImportError("toml library not available. Install with: pip install tomli") from e

try:
    import tomlkit
except ImportError as e:
    raise ImportError("tomlkit library not available. Install with: pip install tomlkit") from e

from dslsync.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_PROTECTED_TAGS = ["PRODUCTION"]


@dataclass
class SyncSettings:
    """Global dslsync settings."""

    console_url: str | None = None
    browser_store_path: str | None = None
    credential_cache: str | None = None
    token_origin: str | None = None
    protected_tags: list[str] = field(default_factory=lambda: list(DEFAULT_PROTECTED_TAGS))

    @property
    def origin(self) -> str | None:
        """Origin marker used to find the console's tokens in the browser store."""
        if self.token_origin:
            return self.token_origin
        if self.console_url:
            return urlparse(self.console_url).netloc or None
        return None

    def require_console_url(self) -> str:
        """Return the console URL or fail before any network call is made."""
        if not self.console_url:
            raise ConfigurationError(
                "console_url is not configured.\n"
                f"Add it to {ConfigManager.DEFAULT_CONFIG_FILE}, for example:\n"
                '  console_url = "https://cloud.dify.ai"'
            )
        return self.console_url.rstrip("/")

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary, excluding None values."""
        data = asdict(self)
        # Filter out None values as TOML doesn't support them
        return {k: v for k, v in data.items() if v is not None}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SyncSettings":
        """Create from dictionary."""
        protected_tags = data.get("protected_tags", DEFAULT_PROTECTED_TAGS)
        if not isinstance(protected_tags, list):
            raise ConfigurationError("protected_tags must be a list of tag names")
        return cls(
            console_url=data.get("console_url"),
            browser_store_path=data.get("browser_store_path"),
            credential_cache=data.get("credential_cache"),
            token_origin=data.get("token_origin"),
            protected_tags=[str(tag) for tag in protected_tags],
        )


@dataclass
class AppConfig:
    """Per-application configuration."""

    app_id: str = ""
    test_api_key: str = ""
    protected: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AppConfig":
        """Create from dictionary.

        Raises:
            ConfigurationError: If protected is not a boolean
        """
        protected = data.get("protected", False)
        if not isinstance(protected, bool):
            raise ConfigurationError(
                f"protected must be true or false, got {protected!r}"
            )
        return cls(
            app_id=str(data.get("app_id", "")),
            test_api_key=str(data.get("test_api_key", "")),
            protected=protected,
        )


class ConfigManager:
    """Manage dslsync configuration files.

    Global settings are stored at ~/.dslsync/config.toml with secure permissions.
    Application config lives next to the application's artifacts as app.toml.
    """

    DEFAULT_CONFIG_DIR = Path.home() / ".dslsync"
    DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.toml"
    DEFAULT_CREDENTIAL_CACHE = DEFAULT_CONFIG_DIR / "credentials.json"
    APP_CONFIG_NAME = "app.toml"

    @classmethod
    def get_settings_path(cls, custom_path: str | None = None) -> Path:
        """Get global settings file path.

        Args:
            custom_path: Custom settings file path (optional)

        Returns:
            Path to settings file

        Raises:
            ConfigurationError: If a custom path was given but does not exist
        """
        if custom_path:
            path = Path(custom_path).expanduser().resolve()
            if not path.exists():
                raise ConfigurationError(f"Settings file not found: {path}")
            return path

        return cls.DEFAULT_CONFIG_FILE

    @classmethod
    def get_app_config_path(cls, app_dir: Path, custom_path: str | None = None) -> Path:
        """Get application config path.

        A relative custom path is resolved against the application directory,
        so `--config app.test.toml` picks an alternate file beside app.toml.
        """
        if custom_path:
            path = Path(custom_path).expanduser()
            if not path.is_absolute():
                path = app_dir / path
            return path.resolve()

        return app_dir / cls.APP_CONFIG_NAME

    @classmethod
    def _read_toml(cls, path: Path) -> dict[str, Any]:
        # Verify file permissions
        mode = path.stat().st_mode & 0o777
        if mode & 0o077:  # Check if group/other have any permissions
            logger.warning(f"Config file has insecure permissions: {oct(mode)}. Fixing to 0600...")
            os.chmod(path, 0o600)

        with open(path, "rb") as f:
            return tomli.load(f)  # type: ignore[attr-defined]

    @classmethod
    def load_settings(cls, custom_path: str | None = None) -> SyncSettings:
        """Load global settings from file.

        A missing default settings file yields default settings; network
        operations then fail on require_console_url().

        Raises:
            ConfigurationError: If the file cannot be parsed
        """
        settings_path = cls.get_settings_path(custom_path)

        if not settings_path.exists():
            logger.debug("Settings file not found, using defaults")
            return SyncSettings()

        try:
            data = cls._read_toml(settings_path)
        except Exception as e:
            raise ConfigurationError(f"Failed to load settings from {settings_path}: {e}") from e

        logger.debug(f"Loaded settings from: {settings_path}")
        return SyncSettings.from_dict(data)

    @classmethod
    def load_app_config(cls, app_dir: Path, custom_path: str | None = None) -> AppConfig:
        """Load application config.

        Raises:
            ConfigurationError: If the file is missing, unparseable or has no app_id
        """
        config_path = cls.get_app_config_path(app_dir, custom_path)

        if not config_path.exists():
            raise ConfigurationError(
                f"Application config not found: {config_path}\n"
                'Create it with at least:\n  app_id = "<application id>"'
            )

        try:
            data = cls._read_toml(config_path)
        except Exception as e:
            raise ConfigurationError(f"Failed to load app config from {config_path}: {e}") from e

        config = AppConfig.from_dict(data)
        if not config.app_id:
            raise ConfigurationError(f"app_id is missing in {config_path}")

        logger.debug(f"Loaded app config from: {config_path}")
        return config

    @classmethod
    def save_app_config(
        cls, app_dir: Path, config: AppConfig, custom_path: str | None = None
    ) -> Path:
        """Save application config, preserving comments and formatting.

        Raises:
            ConfigurationError: If saving fails
        """
        config_path = cls.get_app_config_path(app_dir, custom_path)
        temp_path = config_path.with_suffix(".tmp")
        try:
            config_path.parent.mkdir(parents=True, exist_ok=True)

            # Load existing file if it exists (preserves comments/formatting)
            if config_path.exists():
                with open(config_path) as f:
                    doc = tomlkit.load(f)
            else:
                doc = tomlkit.document()

            for key, value in config.to_dict().items():
                doc[key] = value

            with open(temp_path, "w") as f:
                tomlkit.dump(doc, f)

            # Set secure permissions before moving
            os.chmod(temp_path, 0o600)
            temp_path.replace(config_path)

            logger.debug(f"Saved app config to: {config_path}")
            return config_path

        except Exception as e:
            if temp_path.exists():
                temp_path.unlink()
            raise ConfigurationError(f"Failed to save app config: {e}") from e

    @classmethod
    def get_credential_cache_path(cls, settings: SyncSettings) -> Path:
        if settings.credential_cache:
            return Path(settings.credential_cache).expanduser()
        return cls.DEFAULT_CREDENTIAL_CACHE


def is_protected_app(app_dir: Path, app_config: AppConfig, protected_tags: list[str]) -> bool:
    """Check whether updates to an application must be refused.

    An application is protected when its config says so, or when its
    directory name carries a protected tag (e.g. "Bot-PRODUCTION-<id>").
    """
    if app_config.protected:
        return True
    name = app_dir.resolve().name
    return any(f"-{tag}-" in name for tag in protected_tags)


__all__ = [
    "AppConfig",
    "ConfigManager",
    "SyncSettings",
    "is_protected_app",
]
