from remediation_core.validation.registry import RegistrySnapshot, ToolRegistry, ToolSpec
from remediation_core.validation.validator import ValidationOutcome, validate, validate_plan

__all__ = [
    "RegistrySnapshot",
    "ToolRegistry",
    "ToolSpec",
    "ValidationOutcome",
    "validate",
    "validate_plan",
]
