"""JSON Schema validation wrapper."""

from __future__ import annotations

from dataclasses import dataclass

from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError


@dataclass(frozen=True)
class SchemaIssue:
    """Structured validation error for machine-readable error reporting.

    Attributes:
        constraint: Error category (missing_required, invalid_type, pattern_mismatch,
            enum_violation, additional_property, minimum_violation, etc.)
        message: Human-readable error message.
        field: Dotted path to the invalid field, or the missing/extra field name.
        hint: Actionable suggestion for fixing the error.
    """

    constraint: str
    message: str
    field: str | None = None
    hint: str | None = None


_VALIDATOR_TO_CONSTRAINT = {
    "required": "missing_required",
    "type": "invalid_type",
    "enum": "enum_violation",
    "pattern": "pattern_mismatch",
    "minLength": "min_length_violation",
    "maxLength": "max_length_violation",
    "minimum": "minimum_violation",
    "maximum": "maximum_violation",
    "exclusiveMinimum": "minimum_violation",
    "exclusiveMaximum": "maximum_violation",
    "additionalProperties": "additional_property",
    "format": "format_error",
    "const": "const_mismatch",
    "oneOf": "one_of_violation",
    "anyOf": "any_of_violation",
    "uniqueItems": "duplicate_items",
    "minItems": "min_items_violation",
    "maxItems": "max_items_violation",
}


def check_schema(schema: dict[str, object]) -> None:
    """Raise ValueError when *schema* is not a valid Draft 2020-12 schema."""
    try:
        Draft202012Validator.check_schema(schema)
    except SchemaError as exc:
        raise ValueError(f"Invalid tool schema: {exc.message}") from exc


def validate_payload(schema: dict[str, object], payload: object) -> list[SchemaIssue]:
    """Validate payload against schema and return structured issues, path-sorted."""
    validator = Draft202012Validator(schema)
    issues: list[SchemaIssue] = []

    errors = sorted(
        validator.iter_errors(payload), key=lambda e: [str(p) for p in e.absolute_path]
    )
    for error in errors:
        path = ".".join(str(p) for p in error.absolute_path) if error.absolute_path else None
        constraint = _VALIDATOR_TO_CONSTRAINT.get(str(error.validator), "validation_error")
        field = path
        hint = None

        if error.validator == "required":
            field = _quoted_name(error.message) or path
            hint = f"Add the required field '{field}'."
        elif error.validator == "additionalProperties":
            field = _quoted_name(error.message) or path
            hint = "Remove the undeclared field."
        elif error.validator == "type":
            hint = f"Change the value to type '{error.validator_value}'."
        elif error.validator == "enum":
            allowed = ", ".join(str(v) for v in error.validator_value or [])
            hint = f"Use one of: {allowed}"
        elif error.validator == "pattern":
            hint = f"Value must match the pattern: {error.validator_value}"
        elif error.validator in {"minimum", "exclusiveMinimum"}:
            hint = f"Provide a value >= {error.validator_value}."
        elif error.validator in {"maximum", "exclusiveMaximum"}:
            hint = f"Provide a value <= {error.validator_value}."

        issues.append(
            SchemaIssue(constraint=constraint, message=error.message, field=field, hint=hint)
        )

    return issues


def _quoted_name(message: str) -> str | None:
    # jsonschema messages quote the offending property: "'query' is a required property"
    if "'" not in message:
        return None
    parts = message.split("'")
    return parts[1] if len(parts) > 2 else None
