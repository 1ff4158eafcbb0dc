"""Remote sync driver.

Runs the export and update pipelines for one application directory:

    export: authenticating -> fetching -> splitting -> idle
    update: merging -> uploading -> publishing -> idle

Any error moves the driver to `failed` and is re-raised, aborting the rest
of the pipeline. Updates to protected applications are refused before
anything is read or sent.
"""

import logging
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any

from dslsync.artifacts import ArtifactLayout, SplitResult, merge, split
from dslsync.config_manager import AppConfig, ConfigManager, is_protected_app
from dslsync.console_client import ConsoleClient
from dslsync.credential_manager import LOGIN_GUIDANCE
from dslsync.dsl_codec import decode, encode, load_document
from dslsync.exceptions import CredentialError, GuardError

logger = logging.getLogger(__name__)


def ensure_not_protected(app_dir: Path, app_config: AppConfig, protected_tags: list[str]) -> None:
    """Raise GuardError when updates to the application must be refused.

    Reads only local configuration; no console connection is needed.
    """
    if is_protected_app(app_dir, app_config, protected_tags):
        raise GuardError(
            f"Refusing to update protected application '{app_dir.name}'.\n"
            "Protected (production) applications cannot be updated from dslsync; "
            "retag the application or update it from the console."
        )


class SyncState(StrEnum):
    """Pipeline states."""

    IDLE = "idle"
    AUTHENTICATING = "authenticating"
    FETCHING = "fetching"
    SPLITTING = "splitting"
    MERGING = "merging"
    UPLOADING = "uploading"
    PUBLISHING = "publishing"
    FAILED = "failed"


@dataclass
class ExportResult:
    """Outcome of an export."""

    dsl_path: Path
    split: SplitResult
    api_key_saved: bool = False


@dataclass
class UpdateResult:
    """Outcome of an update."""

    dsl_path: Path
    prompt_nodes: int
    import_result: dict[str, Any] = field(default_factory=dict)
    publish_result: dict[str, Any] = field(default_factory=dict)


class SyncDriver:
    """Drive export/update of one application against the console."""

    def __init__(
        self,
        app_dir: Path,
        app_config: AppConfig,
        client: ConsoleClient,
        protected_tags: list[str] | None = None,
        app_config_path: str | None = None,
    ):
        """Initialize driver.

        Args:
            app_dir: Application directory holding the artifact set
            app_config: Loaded application config
            client: Console client (owns the credential manager)
            protected_tags: Directory-name tags that forbid updates
            app_config_path: Custom app config path, used when saving it back
        """
        self.app_dir = app_dir
        self.app_config = app_config
        self.client = client
        self.protected_tags = protected_tags or []
        self.app_config_path = app_config_path
        self.layout = ArtifactLayout(app_dir)
        self.state = SyncState.IDLE
        self.history: list[SyncState] = [SyncState.IDLE]

    def _transition(self, state: SyncState) -> None:
        logger.debug(f"Sync state: {self.state} -> {state}")
        self.state = state
        self.history.append(state)

    def _fail(self, error: Exception) -> None:
        logger.debug(f"Pipeline failed in state {self.state}: {error}")
        self._transition(SyncState.FAILED)

    def export(self) -> ExportResult:
        """Fetch the application's DSL and split it into artifacts.

        Raises:
            CredentialError: No usable credential
            RemoteError: Console rejected a request
        """
        try:
            self._transition(SyncState.AUTHENTICATING)
            if self.client.credentials.get_credential() is None:
                raise CredentialError(f"No valid console credential available. {LOGIN_GUIDANCE}")

            self._transition(SyncState.FETCHING)
            app_id = self.app_config.app_id
            logger.info(f"Exporting application {app_id}...")
            yaml_content = self.client.export_app(app_id)
            document = decode(yaml_content)
            dsl_path = self.layout.dsl_path
            dsl_path.parent.mkdir(parents=True, exist_ok=True)
            dsl_path.write_text(yaml_content, encoding="utf-8")
            logger.info(f"Saved {dsl_path.relative_to(self.app_dir)}")
            api_key_saved = self._ensure_api_key()

            self._transition(SyncState.SPLITTING)
            split_result = split(document, self.app_dir)

            self._transition(SyncState.IDLE)
            return ExportResult(dsl_path=dsl_path, split=split_result, api_key_saved=api_key_saved)
        except Exception as e:
            self._fail(e)
            raise

    def _ensure_api_key(self) -> bool:
        if self.app_config.test_api_key:
            return False
        keys = self.client.list_api_keys(self.app_config.app_id)
        token = next((key.get("token") for key in keys if key.get("token")), None)
        if not token:
            logger.warning("Application has no API key; test_api_key left empty")
            return False
        self.app_config.test_api_key = str(token)
        ConfigManager.save_app_config(self.app_dir, self.app_config, self.app_config_path)
        logger.info("Saved the application's API key to the app config")
        return True

    def check_guard(self) -> None:
        """Refuse updates to protected applications.

        Raises:
            GuardError: The application is protected
        """
        ensure_not_protected(self.app_dir, self.app_config, self.protected_tags)

    def update(self) -> UpdateResult:
        """Merge the artifacts back into the DSL, import and publish it.

        Raises:
            GuardError: The application is protected
            DocumentError: DSL document missing or invalid
            CredentialError: No usable credential
            RemoteError: Import or publish failed
        """
        try:
            self.check_guard()

            self._transition(SyncState.MERGING)
            dsl_path = self.layout.dsl_path
            document = merge(load_document(dsl_path), self.app_dir)
            yaml_content = encode(document)
            dsl_path.write_text(yaml_content, encoding="utf-8")
            prompt_nodes = len(document.prompt_nodes())
            logger.info(f"Wrote merged {dsl_path.relative_to(self.app_dir)}")

            self._transition(SyncState.UPLOADING)
            app_id = self.app_config.app_id
            import_result = self.client.import_app(app_id, yaml_content)
            logger.info(f"Imported DSL into application {app_id}")

            self._transition(SyncState.PUBLISHING)
            publish_result = self.client.publish_workflow(app_id)
            logger.info(f"Published application {app_id}")

            self._transition(SyncState.IDLE)
            return UpdateResult(
                dsl_path=dsl_path,
                prompt_nodes=prompt_nodes,
                import_result=import_result,
                publish_result=publish_result,
            )
        except Exception as e:
            self._fail(e)
            raise


__all__ = [
    "ExportResult",
    "SyncDriver",
    "SyncState",
    "UpdateResult",
    "ensure_not_protected",
]
