"""Console credential caching, refresh and authenticated requests.

The credential lives in three places, consulted in this order:
1. memory (the CredentialManager instance)
2. a single JSON record on disk (~/.dslsync/credentials.json)
3. the browser's Local Storage (via CredentialStoreExtractor)

A request rejected with 401 drops the in-memory credential, re-extracts
from the browser and retries. When re-extraction returns the very same
session token the browser session has not moved on (logged out, or a frozen
snapshot), so the refresh is reported as a stale login instead of retrying
with a token that is known to be rejected.

Security:
- Cache file permissions: 0600 (owner read/write only)
- Atomic writes using temporary file
- Tokens never logged in clear

Example:
    >>> manager = CredentialManager(CredentialCache(path), extractor)
    >>> response = manager.request_with_retry("GET", url)
"""

import json
import logging
import os
from pathlib import Path
from typing import Any

import requests

from dslsync.credential_models import Credential
from dslsync.credential_store import CredentialStoreExtractor
from dslsync.exceptions import CredentialError, RemoteError
from dslsync.log_sanitizer import LogSanitizer

logger = logging.getLogger(__name__)

LOGIN_GUIDANCE = (
    "Open the console in Chrome, make sure you are logged in (reload the page "
    "once), then retry."
)


class CredentialCache:
    """Single-record credential cache on disk.

    Thread-safety: Not thread-safe. Use external locking if needed.
    """

    def __init__(self, cache_path: Path):
        self.cache_path = cache_path

    def load(self) -> Credential | None:
        """Load the cached credential.

        Returns:
            Credential, or None if the record is missing or invalid
        """
        if not self.cache_path.exists():
            logger.debug("Credential cache does not exist")
            return None

        try:
            mode = self.cache_path.stat().st_mode & 0o777
            if mode & 0o077:
                logger.warning(
                    f"Credential cache has insecure permissions: {oct(mode)}. Fixing to 0600..."
                )
                os.chmod(self.cache_path, 0o600)

            with open(self.cache_path, encoding="utf-8") as f:
                credential = Credential.from_dict(json.load(f))
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable credential cache {self.cache_path}: {e}")
            return None

        logger.debug(f"Loaded credential from {self.cache_path}")
        return credential

    def save(self, credential: Credential) -> None:
        """Persist a credential atomically.

        Raises:
            CredentialError: If the record cannot be written
        """
        temp_path = self.cache_path.with_suffix(".tmp")
        try:
            self.cache_path.parent.mkdir(parents=True, exist_ok=True)
            os.chmod(self.cache_path.parent, 0o700)

            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(credential.to_dict(), f)

            os.chmod(temp_path, 0o600)
            temp_path.replace(self.cache_path)
            logger.debug(f"Saved credential to {self.cache_path}")

        except OSError as e:
            if temp_path.exists():
                temp_path.unlink()
            raise CredentialError(f"Failed to write credential cache: {e}") from e

    def delete(self) -> bool:
        """Remove the cache record. Returns True if a record was removed."""
        if self.cache_path.exists():
            self.cache_path.unlink()
            return True
        return False


class CredentialManager:
    """Own the console credential for one process.

    Pass the instance to every component that talks to the console; there is
    no module-level credential state.
    """

    DEFAULT_MAX_RETRIES = 2
    REQUEST_TIMEOUT = 30

    def __init__(
        self,
        cache: CredentialCache,
        extractor: CredentialStoreExtractor,
        session: requests.Session | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ):
        self.cache = cache
        self.extractor = extractor
        self.session = session or requests.Session()
        self.max_retries = max_retries
        self._credential: Credential | None = None
        self._last_fingerprint: str | None = None

    @property
    def credential(self) -> Credential | None:
        """In-memory credential, without any lookup."""
        return self._credential

    def _remember(self, credential: Credential) -> None:
        self._credential = credential
        self._last_fingerprint = credential.fingerprint()

    def get_credential(self) -> Credential | None:
        """Return the current credential, extracting only when nothing is cached.

        Returns:
            Credential, or None if none could be obtained
        """
        if self._credential:
            return self._credential

        cached = self.cache.load()
        if cached:
            self._remember(cached)
            return cached

        return self.refresh()

    def refresh(self) -> Credential | None:
        """Re-extract the credential from the browser store.

        Returns:
            New credential, or None if extraction failed or the browser
            still holds the session token that was already known (stale login)
        """
        logger.info("Syncing console credential from browser storage...")
        credential = self.extractor.extract()
        if credential is None:
            logger.warning("No console credential found in browser storage")
            return None

        if self._last_fingerprint and credential.fingerprint() == self._last_fingerprint:
            logger.warning(
                "Browser storage still holds the same session token; "
                "the browser login looks stale"
            )
            return None

        self._remember(credential)
        self.cache.save(credential)
        logger.info("Console credential updated")
        return credential

    def invalidate(self) -> None:
        """Drop the in-memory credential; the disk record is left alone."""
        self._credential = None

    def clear_cache(self) -> bool:
        """Forget the credential everywhere. Returns True if a disk record was removed."""
        self._credential = None
        self._last_fingerprint = None
        return self.cache.delete()

    def request_with_retry(
        self,
        method: str,
        url: str,
        *,
        max_retries: int | None = None,
        **kwargs: Any,
    ) -> requests.Response:
        """Issue an authenticated request, refreshing the credential on 401.

        Args:
            method: HTTP method
            url: Absolute URL
            max_retries: Refresh-and-retry budget (default: manager budget)
            **kwargs: Passed to requests (json, params, data, headers)

        Returns:
            Successful response

        Raises:
            CredentialError: No credential, stale login, or still rejected
                after the retry budget is spent
            RemoteError: Non-2xx response other than 401, or transport failure
        """
        budget = self.max_retries if max_retries is None else max_retries
        credential = self.get_credential()
        if credential is None:
            raise CredentialError(f"No valid console credential available. {LOGIN_GUIDANCE}")

        headers = dict(kwargs.pop("headers", None) or {})
        kwargs.setdefault("timeout", self.REQUEST_TIMEOUT)

        for attempt in range(budget + 1):
            headers["Authorization"] = f"Bearer {credential.session_token}"
            logger.debug(
                f"{method} {url} (attempt {attempt + 1}) "
                f"headers={LogSanitizer.sanitize_headers(headers)}"
            )
            try:
                response = self.session.request(method, url, headers=headers, **kwargs)
            except requests.RequestException as e:
                raise RemoteError(
                    LogSanitizer.create_safe_error_message(e, f"{method} {url} failed")
                ) from e

            if response.status_code != 401:
                _raise_for_status(method, url, response)
                return response

            if attempt >= budget:
                break

            logger.warning(
                f"Console rejected the credential, refreshing (retry {attempt + 1}/{budget})"
            )
            self.invalidate()
            refreshed = self.refresh()
            if refreshed is None:
                raise CredentialError(f"Credential refresh failed. {LOGIN_GUIDANCE}")
            credential = refreshed

        raise CredentialError(
            f"Console still rejects the credential after {budget} refresh attempts. "
            f"{LOGIN_GUIDANCE}"
        )

    def exchange_refresh_token(self, url: str) -> Credential:
        """Trade the refresh token for a new credential at the console.

        Args:
            url: The console's refresh-token endpoint

        Returns:
            The new credential, already cached

        Raises:
            CredentialError: No refresh token, or the console did not issue tokens
            RemoteError: Non-2xx response or transport failure
        """
        current = self.get_credential()
        if current is None:
            raise CredentialError(f"No refresh token available. {LOGIN_GUIDANCE}")

        try:
            response = self.session.post(
                url,
                json={"refresh_token": current.refresh_token},
                timeout=self.REQUEST_TIMEOUT,
            )
        except requests.RequestException as e:
            raise RemoteError(
                LogSanitizer.create_safe_error_message(e, f"POST {url} failed")
            ) from e

        if response.status_code == 401:
            raise CredentialError(f"Refresh token was rejected. {LOGIN_GUIDANCE}")
        _raise_for_status("POST", url, response)

        try:
            payload = response.json()
        except ValueError as e:
            raise CredentialError("Refresh response is not JSON") from e
        if isinstance(payload, dict) and isinstance(payload.get("data"), dict):
            payload = payload["data"]

        try:
            credential = Credential(
                session_token=payload.get("access_token", ""),
                refresh_token=payload.get("refresh_token", ""),
            )
        except (AttributeError, ValueError) as e:
            raise CredentialError(f"Refresh response did not contain tokens: {e}") from e

        self._remember(credential)
        self.cache.save(credential)
        logger.info("Console credential renewed with refresh token")
        return credential


def _raise_for_status(method: str, url: str, response: requests.Response) -> None:
    if 200 <= response.status_code < 300:
        return
    raise RemoteError(
        f"{method} {url} failed with HTTP {response.status_code}",
        status_code=response.status_code,
        body=response.text,
    )


__all__ = [
    "CredentialCache",
    "CredentialManager",
    "LOGIN_GUIDANCE",
]
