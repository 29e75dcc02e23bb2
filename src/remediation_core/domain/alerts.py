"""Alert intake contract."""

from __future__ import annotations

from typing import Any, Mapping

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from remediation_core.domain.models import Alert, Severity
from remediation_core.errors import InvalidAlert
from remediation_core.utils.time import utc_now_iso


class AlertPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    alert_id: str = Field(min_length=1, max_length=256)
    resource_id: str | None = Field(
        default=None, validation_alias=AliasChoices("resource_id", "validator_id")
    )
    severity: Severity
    message: str = Field(min_length=1)
    fired_at: str | None = None
    labels: dict[str, Any] = Field(default_factory=dict)

    @field_validator("resource_id")
    @classmethod
    def _blank_resource_is_missing(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        return v.strip()

    @field_validator("severity", mode="before")
    @classmethod
    def _lower_severity(cls, v: Any) -> Any:
        return v.lower() if isinstance(v, str) else v


def parse_alert(payload: Mapping[str, Any]) -> Alert:
    """Validate an inbound alert; a missing resource id is allowed."""
    if not isinstance(payload, Mapping):
        raise InvalidAlert("Alert payload must be a JSON object")
    try:
        parsed = AlertPayload.model_validate(dict(payload))
    except ValidationError as exc:
        raise InvalidAlert(
            "Alert payload is invalid",
            details={
                "errors": [
                    {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
                    for err in exc.errors()
                ]
            },
        ) from exc
    return Alert(
        alert_id=parsed.alert_id,
        resource_id=parsed.resource_id,
        severity=parsed.severity,
        message=parsed.message,
        fired_at=parsed.fired_at or utc_now_iso(),
        labels={str(key): str(value) for key, value in parsed.labels.items()},
    )
