"""Sensitive-field masking for audit records and log lines.

``redact_sensitive_fields`` walks tool-call params, adapter results and
collaborator payloads and replaces values whose keys look like credentials
before anything is written to the audit trail.
"""

from __future__ import annotations

import re

_MAX_REDACT_DEPTH = 20

# Substring match, case-insensitive.
SENSITIVE_KEY_MARKERS: list[str] = [
    "password",
    "secret",
    "token",
    "accesskey",
    "secretaccesskey",
    "sessiontoken",
    "apikey",
    "api_key",
    "credential",
    "authorization",
    "signature",
    "private_key",
]

# Newlines and other control characters in user-controlled values.
_CONTROL_CHAR_RE = re.compile(r"[\x00-\x08\x0a-\x1f\x7f]")


def is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    return any(marker in lowered for marker in SENSITIVE_KEY_MARKERS)


def redact_sensitive_fields(
    value: object,
    *,
    mask: str = "***",
    depth: int = 0,
    max_depth: int = _MAX_REDACT_DEPTH,
) -> object:
    """Recursively replace sensitive values in dicts/lists.

    When ``max_depth`` is exceeded the entire sub-tree is replaced with *mask*.
    """
    if depth >= max_depth:
        return mask
    if isinstance(value, dict):
        redacted: dict[str, object] = {}
        for key, val in value.items():
            if is_sensitive_key(str(key)):
                redacted[key] = mask
            else:
                redacted[key] = redact_sensitive_fields(
                    val, mask=mask, depth=depth + 1, max_depth=max_depth,
                )
        return redacted
    if isinstance(value, (list, tuple)):
        return [
            redact_sensitive_fields(
                item, mask=mask, depth=depth + 1, max_depth=max_depth,
            )
            for item in value
        ]
    return value


def sanitize_log_value(value: str) -> str:
    """Replace control characters to prevent log injection."""
    return _CONTROL_CHAR_RE.sub("_", value)
