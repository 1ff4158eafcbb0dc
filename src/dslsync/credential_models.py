"""Credential data model for console authentication.

A credential is the pair of opaque tokens the console hands to a logged-in
browser: a short-lived session token sent as a bearer token, and a refresh
token that can be exchanged for a new pair.

Security features:
- Frozen dataclass for immutability
- Validation in __post_init__ (both tokens non-empty)
- Token masking in to_dict_masked()
"""

import hashlib
import re
from dataclasses import dataclass
from typing import Any

from dslsync.log_sanitizer import LogSanitizer

# Local Storage values carry non-printable framing bytes before the payload
_CONTROL_PREFIX = re.compile(r"^[\x00-\x1f]+")


def strip_control_prefix(value: str) -> str:
    """Remove leading control characters from a stored token value.

    Examples:
        >>> strip_control_prefix("\\x01eyJhbGci")
        'eyJhbGci'
    """
    return _CONTROL_PREFIX.sub("", value)


@dataclass(frozen=True)
class Credential:
    """Console session credential.

    Either both tokens are present or there is no credential at all; absence
    is represented by None at the call sites.
    """

    session_token: str
    refresh_token: str

    def __post_init__(self):
        """Normalize and validate both tokens."""
        for field_name in ("session_token", "refresh_token"):
            value = getattr(self, field_name)
            if not isinstance(value, str):
                raise ValueError(f"{field_name} must be a string")
            cleaned = strip_control_prefix(value)
            if not cleaned:
                raise ValueError(f"{field_name} must not be empty")
            object.__setattr__(self, field_name, cleaned)

    def fingerprint(self) -> str:
        """Content hash of the session token, used to spot a stale login."""
        return hashlib.sha256(self.session_token.encode("utf-8")).hexdigest()

    def to_dict(self) -> dict[str, str]:
        """Convert to the on-disk cache record."""
        return {"sessionToken": self.session_token, "refreshToken": self.refresh_token}

    def to_dict_masked(self) -> dict[str, str]:
        """Convert to dictionary with tokens masked, safe for display."""
        return {
            "sessionToken": LogSanitizer.mask_token(self.session_token),
            "refreshToken": LogSanitizer.mask_token(self.refresh_token),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Credential":
        """Create from a cache record.

        Raises:
            ValueError: If the record is not a valid credential
        """
        if not isinstance(data, dict):
            raise ValueError("credential record must be an object")
        return cls(
            session_token=data.get("sessionToken", ""),
            refresh_token=data.get("refreshToken", ""),
        )


__all__ = ["Credential", "strip_control_prefix"]
