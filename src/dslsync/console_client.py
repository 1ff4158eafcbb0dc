"""Console API client.

Thin wrapper over the console endpoints dslsync consumes. Every call goes
through CredentialManager.request_with_retry(), so authentication, refresh
on 401 and error mapping happen in one place.

Endpoints (relative to <console_url>/console/api):
    GET  /apps/{id}/export             DSL document text
    GET  /apps/{id}/api-keys           API key descriptors
    POST /apps/imports                 import DSL into an existing app
    POST /apps/{id}/workflows/publish  publish the draft workflow
    POST /refresh-token                exchange a refresh token
"""

import logging
from typing import Any

from dslsync.credential_manager import CredentialManager
from dslsync.exceptions import RemoteError

logger = logging.getLogger(__name__)

IMPORT_FAILED_STATUS = "failed"


class ConsoleClient:
    """Console API client bound to one console and one credential manager."""

    API_PREFIX = "/console/api"

    def __init__(self, console_url: str, credentials: CredentialManager):
        self.console_url = console_url.rstrip("/")
        self.credentials = credentials

    def api_url(self, path: str) -> str:
        return f"{self.console_url}{self.API_PREFIX}/{path.lstrip('/')}"

    @property
    def refresh_url(self) -> str:
        return self.api_url("/refresh-token")

    def _json(self, response: Any, what: str) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise RemoteError(
                f"{what}: console returned a non-JSON response",
                status_code=response.status_code,
                body=response.text,
            ) from e

    def export_app(self, app_id: str) -> str:
        """Download an application's DSL document.

        Returns:
            DSL document text
        """
        response = self.credentials.request_with_retry(
            "GET",
            self.api_url(f"/apps/{app_id}/export"),
            params={"include_secret": "false"},
        )
        content_type = response.headers.get("Content-Type", "")
        if "json" not in content_type:
            return response.text

        payload = self._json(response, "Export")
        if isinstance(payload, dict) and isinstance(payload.get("data"), str):
            return payload["data"]
        if isinstance(payload, str):
            return payload
        raise RemoteError(
            "Export: response does not contain a DSL document",
            status_code=response.status_code,
            body=response.text,
        )

    def list_api_keys(self, app_id: str) -> list[dict[str, Any]]:
        """List the application's API keys."""
        response = self.credentials.request_with_retry(
            "GET", self.api_url(f"/apps/{app_id}/api-keys")
        )
        payload = self._json(response, "API keys")
        keys = payload.get("data", []) if isinstance(payload, dict) else payload
        return [key for key in keys or [] if isinstance(key, dict)]

    def import_app(self, app_id: str, yaml_content: str) -> dict[str, Any]:
        """Import DSL content into an existing application.

        Raises:
            RemoteError: If the console reports the import as failed
        """
        response = self.credentials.request_with_retry(
            "POST",
            self.api_url("/apps/imports"),
            json={"mode": "yaml-content", "yaml_content": yaml_content, "app_id": app_id},
        )
        result = self._json(response, "Import")
        if isinstance(result, dict) and result.get("status") == IMPORT_FAILED_STATUS:
            raise RemoteError(
                f"Import failed: {result.get('error') or 'no reason given'}",
                status_code=response.status_code,
                body=response.text,
            )
        logger.debug(f"Import result: {result}")
        return result

    def publish_workflow(self, app_id: str) -> dict[str, Any]:
        """Publish the application's draft workflow."""
        response = self.credentials.request_with_retry(
            "POST",
            self.api_url(f"/apps/{app_id}/workflows/publish"),
            json={"marked_name": "", "marked_comment": ""},
        )
        result = self._json(response, "Publish")
        logger.debug(f"Publish result: {result}")
        return result


__all__ = ["ConsoleClient"]
