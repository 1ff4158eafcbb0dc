"""Log sanitization module for preventing token leakage.

Console session tokens and refresh tokens are bearer credentials: anyone
holding one can act as the logged-in operator. This module redacts them
from log lines, error messages and displays.

Design Philosophy:
- Security first: err on side of over-redaction
- Pattern-based: not brittle keyword matching
- Fail-safe: if in doubt, mask it
"""

import re
from re import Pattern


class LogSanitizer:
    """Sanitize tokens from logs and error messages.

    All methods are class methods and can be called without instantiation.
    """

    REDACTED = "[REDACTED]"
    MASKED = "****"

    # Order matters: more specific patterns should come first
    SECRET_PATTERNS: dict[str, Pattern] = {
        "authorization_bearer": re.compile(r"(Authorization:\s*Bearer\s+)([^\s]+)", re.IGNORECASE),
        "bearer": re.compile(r"(Bearer\s+)([A-Za-z0-9\-_\.=]+)"),
        "access_token": re.compile(
            r'(access[_-]?token["\']?\s*[:=]\s*["\']?)([^\s"\'&,\)]+)',
            re.IGNORECASE,
        ),
        "refresh_token": re.compile(
            r'(refresh[_-]?token["\']?\s*[:=]\s*["\']?)([^\s"\'&,\)]+)',
            re.IGNORECASE,
        ),
        "session_token": re.compile(
            r'(session[_-]?token["\']?\s*[:=]\s*["\']?)([^\s"\'&,\)]+)',
            re.IGNORECASE,
        ),
        "api_key": re.compile(
            r'(api[_-]?key["\']?\s*[:=]\s*["\']?)([^\s"\'&,\)]+)',
            re.IGNORECASE,
        ),
    }

    SENSITIVE_HEADERS = {"authorization", "cookie", "x-api-key"}

    @classmethod
    def sanitize(cls, message: str) -> str:
        """Sanitize message by redacting token patterns.

        Examples:
            >>> LogSanitizer.sanitize("Authorization: Bearer eyJabc.def")
            'Authorization: Bearer [REDACTED]'
            >>> LogSanitizer.sanitize('{"refresh_token": "abc123"}')
            '{"refresh_token": "[REDACTED]"}'
        """
        if not isinstance(message, str):
            message = str(message)

        result = message
        for pattern in cls.SECRET_PATTERNS.values():
            result = pattern.sub(r"\1" + cls.REDACTED, result)
        return result

    @classmethod
    def mask_token(cls, token: str | None, visible: int = 6) -> str:
        """Show the first few characters of a token and mask the rest.

        Examples:
            >>> LogSanitizer.mask_token("eyJhbGciOiJIUzI1NiJ9")
            'eyJhbG****'
            >>> LogSanitizer.mask_token("")
            '-'
        """
        if not token:
            return "-"
        if len(token) <= visible * 2:
            return cls.MASKED
        return f"{token[:visible]}{cls.MASKED}"

    @classmethod
    def sanitize_headers(cls, headers: dict[str, str]) -> dict[str, str]:
        """Return a copy of request headers with credential headers redacted."""
        return {
            key: cls.REDACTED if key.lower() in cls.SENSITIVE_HEADERS else value
            for key, value in headers.items()
        }

    @classmethod
    def create_safe_error_message(cls, error: Exception, context: str = "") -> str:
        """Create error message with tokens sanitized.

        Examples:
            >>> err = ValueError("rejected refresh_token=abc123")
            >>> LogSanitizer.create_safe_error_message(err, "Refresh")
            'Refresh: rejected refresh_token=[REDACTED]'
        """
        sanitized_msg = cls.sanitize(str(error))
        if context:
            return f"{context}: {sanitized_msg}"
        return sanitized_msg


__all__ = ["LogSanitizer"]
