"""Error taxonomy for the remediation loop.

Every failure the orchestrator can observe is a ``RemediationError`` subclass.
``to_record()`` produces the structured ``{code, message, retryable, details}``
record written to the audit trail.
"""

from __future__ import annotations

from typing import Any


class RemediationError(Exception):
    code = "InternalError"
    retryable = False

    def __init__(
        self,
        message: str,
        *,
        retryable: bool | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if retryable is not None:
            self.retryable = retryable
        self.details: dict[str, Any] = dict(details or {})

    def to_record(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }


class EnrichmentDegraded(RemediationError):
    """Non-fatal: context quality is downgraded and the loop continues."""

    code = "EnrichmentDegraded"


class ModelError(RemediationError):
    """Plan Generator timeout or malformed output."""

    code = "ModelError"
    retryable = True


class SchemaError(RemediationError):
    """Base for plan validation failures that trigger a corrective re-prompt."""

    code = "SchemaError"


class UnknownTool(SchemaError):
    code = "UnknownTool"

    def __init__(self, tool_name: str, *, allowlist_version: int | None = None) -> None:
        super().__init__(
            f"Tool '{tool_name}' is not in the allowlist",
            details={"tool": tool_name, "allowlist_version": allowlist_version},
        )
        self.tool_name = tool_name


class SchemaViolation(SchemaError):
    code = "SchemaViolation"

    def __init__(
        self,
        tool_name: str,
        field: str | None,
        constraint: str,
        message: str | None = None,
        *,
        violations: list[dict[str, Any]] | None = None,
        allowlist_version: int | None = None,
    ) -> None:
        text = message or f"{constraint} on field '{field}'"
        super().__init__(
            f"Tool '{tool_name}' params rejected: {text}",
            details={
                "tool": tool_name,
                "field": field,
                "constraint": constraint,
                "violations": violations or [],
                "allowlist_version": allowlist_version,
            },
        )
        self.tool_name = tool_name
        self.field = field
        self.constraint = constraint


class Unauthorized(RemediationError):
    code = "Unauthorized"


class ApprovalExpired(RemediationError):
    code = "ApprovalExpired"


class SignatureInvalid(RemediationError):
    code = "SignatureInvalid"


class DestructiveChangeBlocked(RemediationError):
    code = "DestructiveChangeBlocked"


class ExecutionError(RemediationError):
    code = "ExecutionError"


class InvalidTransition(RemediationError):
    code = "InvalidTransition"


class TransactionNotFound(RemediationError):
    code = "TransactionNotFound"


class InvalidAlert(RemediationError):
    code = "InvalidAlert"
