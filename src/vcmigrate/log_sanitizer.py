"""Log sanitization module for preventing secret leakage.

Connection scripts carry the vCenter password inline, and shell output can
echo session tokens back. Anything that goes to the log from a script or from
the shell passes through this module first.

Redacted patterns:
- PowerShell ``-Password`` parameters (quoted or bare)
- ``ConvertTo-SecureString`` literals
- ``password=`` / ``password:`` assignments
- ``$password = '...'`` variable assignments
- vCenter session identifiers (``SESSION_ID:``)

Design Philosophy:
- Security first: err on side of over-redaction
- Pattern-based: not brittle keyword matching
- Fail-safe: if in doubt, mask it
"""

import re
from re import Pattern
from typing import Any


class LogSanitizer:
    """Sanitize sensitive data from logs and error messages.

    All methods are class methods and can be called without instantiation.
    """

    REDACTED = "[REDACTED]"

    # Order matters: more specific patterns should come first
    SECRET_PATTERNS: dict[str, Pattern] = {
        "secure_string_literal": re.compile(
            r"(ConvertTo-SecureString\s+(?:-String\s+)?)('(?:[^']|'')*'|\"[^\"]*\"|\S+)",
            re.IGNORECASE,
        ),
        "password_parameter": re.compile(
            r"(-Password\s+)('(?:[^']|'')*'|\"[^\"]*\"|\S+)",
            re.IGNORECASE,
        ),
        "password_variable": re.compile(
            r"(\$\w*password\w*\s*=\s*)('(?:[^']|'')*'|\"[^\"]*\"|\S+)",
            re.IGNORECASE,
        ),
        "password_assignment": re.compile(
            r'((?<![$\w])password["\']?\s*[:=]\s*["\']?)([^\s"\'&,\)]+)',
            re.IGNORECASE,
        ),
        "session_id": re.compile(r"(SESSION_ID:\s*)(\S+)"),
    }

    @classmethod
    def sanitize(cls, message: str) -> str:
        """Sanitize message by redacting sensitive patterns.

        Args:
            message: The message to sanitize (may span several lines)

        Returns:
            Sanitized message with secrets replaced by [REDACTED]

        Examples:
            >>> LogSanitizer.sanitize("Connect-VIServer -Server vc01 -Password 'p@ss'")
            'Connect-VIServer -Server vc01 -Password [REDACTED]'
            >>> LogSanitizer.sanitize("SESSION_ID: 52a1c0")
            'SESSION_ID: [REDACTED]'
        """
        if not isinstance(message, str):
            message = str(message)

        result = message
        for pattern in cls.SECRET_PATTERNS.values():
            result = pattern.sub(r"\1" + cls.REDACTED, result)
        return result

    @classmethod
    def sanitize_dict(cls, data: dict[str, Any]) -> dict[str, Any]:
        """Sanitize dictionary values recursively.

        Keys that look sensitive have their values replaced outright;
        string values are run through :meth:`sanitize`.
        """
        sensitive_keys = ("password", "pwd", "secret", "token", "credential", "session_id")

        result: dict[str, Any] = {}
        for key, value in data.items():
            if any(word in key.lower() for word in sensitive_keys):
                result[key] = cls.REDACTED
            elif isinstance(value, dict):
                result[key] = cls.sanitize_dict(value)
            elif isinstance(value, str):
                result[key] = cls.sanitize(value)
            else:
                result[key] = value
        return result

    @classmethod
    def create_safe_error_message(cls, error: Exception, context: str = "") -> str:
        """Create error message with secrets sanitized.

        Examples:
            >>> err = RuntimeError("login failed for password=hunter2")
            >>> LogSanitizer.create_safe_error_message(err, "Connect")
            'Connect: login failed for password=[REDACTED]'
        """
        sanitized_msg = cls.sanitize(str(error))
        if context:
            return f"{context}: {sanitized_msg}"
        return sanitized_msg


__all__ = ["LogSanitizer"]
