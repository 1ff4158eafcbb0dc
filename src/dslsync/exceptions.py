"""Custom exceptions for dslsync."""


class DslSyncError(Exception):
    """Base exception for dslsync errors."""

    exit_code = 1


class ConfigurationError(DslSyncError):
    """Local configuration is missing or unparseable."""

    pass


class CredentialError(DslSyncError):
    """No usable console credential could be obtained."""

    pass


class RemoteError(DslSyncError):
    """The console answered with a non-success response."""

    def __init__(self, message: str, status_code: int | None = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body

    def __str__(self) -> str:
        base = super().__str__()
        if self.body:
            return f"{base}\n{self.body}"
        return base


class ArtifactError(DslSyncError):
    """An artifact required to merge a prompt node is missing."""

    pass


class GuardError(DslSyncError):
    """Operation refused on a protected application."""

    pass


class DocumentError(DslSyncError):
    """DSL document cannot be decoded or violates its invariants."""

    pass
