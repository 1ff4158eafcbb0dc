"""Browser credential store extraction.

The console keeps its session in the browser's Local Storage, which Chrome
persists as a LevelDB directory. While Chrome runs, the directory is locked
by the browser, so it is never opened in place: the whole directory is
copied to a private scratch location, the copy is read, and the scratch copy
is deleted on every exit path.

Every failure (missing store, copy error, open error, missing token) is
reported as "no credential" rather than raised; the caller decides whether
that is fatal.

Example:
    >>> extractor = CredentialStoreExtractor(origin="cloud.dify.ai")
    >>> credential = extractor.extract()
    >>> credential is None or bool(credential.session_token)
    True
"""

import logging
import os
import platform
import shutil
import tempfile
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any, Protocol

from dslsync.credential_models import Credential, strip_control_prefix

logger = logging.getLogger(__name__)

SESSION_TOKEN_MARKER = "console_token"
REFRESH_TOKEN_MARKER = "refresh_token"


class StoreHandle(Protocol):
    """Minimal read interface of an opened key-value store."""

    def iterator(self) -> Iterator[tuple[bytes, bytes]]: ...

    def close(self) -> None: ...


StoreOpener = Callable[[Path], StoreHandle]


def default_store_path() -> Path:
    """Return the default Chrome Local Storage LevelDB path for this platform."""
    system = platform.system()
    home = Path.home()
    if system == "Darwin":
        base = home / "Library" / "Application Support" / "Google" / "Chrome"
    elif system == "Windows":
        local_app_data = os.environ.get("LOCALAPPDATA", str(home / "AppData" / "Local"))
        base = Path(local_app_data) / "Google" / "Chrome" / "User Data"
    else:
        base = home / ".config" / "google-chrome"
    return base / "Default" / "Local Storage" / "leveldb"


def open_leveldb(path: Path) -> StoreHandle:
    """Open a LevelDB directory with plyvel without creating anything."""
    import plyvel

    return plyvel.DB(str(path), create_if_missing=False)


def _decode(raw: Any) -> str:
    if isinstance(raw, bytes):
        return raw.decode("utf-8", errors="ignore")
    return str(raw)


class CredentialStoreExtractor:
    """Extract console tokens from a copy of the browser's Local Storage."""

    def __init__(
        self,
        store_path: Path | None = None,
        origin: str | None = None,
        session_marker: str = SESSION_TOKEN_MARKER,
        refresh_marker: str = REFRESH_TOKEN_MARKER,
        opener: StoreOpener | None = None,
    ):
        """Initialize extractor.

        Args:
            store_path: LevelDB directory (default: platform Chrome profile)
            origin: Text every relevant key contains, usually the console host
            session_marker: Key fragment identifying the session token
            refresh_marker: Key fragment identifying the refresh token
            opener: Callable opening a store directory (default: plyvel)
        """
        self.store_path = store_path or default_store_path()
        self.origin = origin
        self.session_marker = session_marker
        self.refresh_marker = refresh_marker
        self.opener = opener or open_leveldb

    def extract(self, source_path: Path | None = None) -> Credential | None:
        """Extract a credential from the store.

        Args:
            source_path: Store directory overriding the configured one

        Returns:
            Credential with both tokens, or None when unavailable
        """
        source = Path(source_path) if source_path else self.store_path
        if not self.origin:
            logger.warning("No console origin configured; cannot match browser storage keys")
            return None
        if not source.is_dir():
            logger.warning(f"Browser store not found: {source}")
            return None

        scratch_dir = Path(tempfile.mkdtemp(prefix="dslsync-store-"))
        try:
            snapshot = scratch_dir / "leveldb"
            shutil.copytree(source, snapshot)
            tokens = self._read_tokens(snapshot)
        except Exception as e:
            logger.warning(f"Failed to read browser store {source}: {e}")
            return None
        finally:
            shutil.rmtree(scratch_dir, ignore_errors=True)

        session_token = strip_control_prefix(tokens.get("session", ""))
        refresh_token = strip_control_prefix(tokens.get("refresh", ""))
        if not session_token or not refresh_token:
            logger.debug(f"Console tokens for {self.origin} not present in browser store")
            return None

        logger.debug(f"Extracted console tokens for {self.origin}")
        return Credential(session_token=session_token, refresh_token=refresh_token)

    def _read_tokens(self, snapshot: Path) -> dict[str, str]:
        tokens: dict[str, str] = {}
        db = self.opener(snapshot)
        try:
            for raw_key, raw_value in db.iterator():
                key = _decode(raw_key)
                if self.origin not in key:
                    continue
                if self.session_marker in key:
                    tokens["session"] = _decode(raw_value)
                if self.refresh_marker in key:
                    tokens["refresh"] = _decode(raw_value)
        finally:
            db.close()
        return tokens


__all__ = [
    "CredentialStoreExtractor",
    "default_store_path",
    "open_leveldb",
]
