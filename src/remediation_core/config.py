"""Configuration management for the remediation orchestrator."""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

_config_logger = logging.getLogger(__name__)


class LoggingSettings(BaseModel):
    level: str = Field(default="INFO", description="Python logging level name")
    file: str | None = Field(default=None, description="Optional log file path")


class ServerSettings(BaseModel):
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8080, ge=1024, le=65535)
    resume_on_startup: bool = Field(
        default=True,
        description="Re-hydrate in-flight transactions when the process starts.",
    )


class StorageSettings(BaseModel):
    sqlite_path: str = Field(default="./data/remediation.sqlite")
    sqlite_wal: bool = Field(default=True)
    artifact_path: str = Field(default="./data/artifacts")
    audit_retention_days: int = Field(default=365, ge=1, le=3650)


class ReasoningSettings(BaseModel):
    max_model_attempts: int = Field(default=3, ge=1, le=10)
    max_plan_regenerations: int = Field(
        default=1,
        ge=0,
        le=5,
        description="Corrective re-prompts after a plan fails validation.",
    )
    backoff_base_seconds: float = Field(default=0.5, ge=0.0, le=30.0)
    backoff_max_seconds: float = Field(default=20.0, ge=0.0, le=300.0)
    model_endpoint: str | None = Field(default=None)
    model_timeout_seconds: float = Field(default=60.0, ge=1.0, le=600.0)


class EnrichmentSettings(BaseModel):
    runbook_endpoint: str | None = Field(default=None)
    metrics_endpoint: str | None = Field(default=None)
    timeout_seconds: float = Field(default=10.0, ge=0.5, le=120.0)


class ApprovalSettings(BaseModel):
    callback_secret: str | None = Field(default=None, repr=False)
    signature_tolerance_seconds: int = Field(default=300, ge=1, le=3600)
    watchdog_interval_seconds: float = Field(default=30.0, ge=0.1, le=3600.0)
    operator_token: str | None = Field(default=None, repr=False)


class ExecutionSettings(BaseModel):
    adapter_timeout_seconds: int = Field(default=300, ge=1, le=3600)
    max_output_characters: int = Field(default=20_000, ge=1, le=200_000)
    terraform_binary: str = Field(default="terraform")
    metrics_query_url: str | None = Field(default=None)
    aws_region: str | None = Field(default=None)


class CorrelationSettings(BaseModel):
    coalesce_window_seconds: int = Field(default=3600, ge=0, le=7 * 86400)


class PolicySettings(BaseModel):
    path: str = Field(default="./policy.yaml")


class NotifySettings(BaseModel):
    page_webhook_url: str | None = Field(default=None)
    timeout_seconds: float = Field(default=10.0, ge=0.5, le=120.0)

    @field_validator("page_webhook_url")
    @classmethod
    def _validate_webhook(cls, value: str | None) -> str | None:
        if value is None:
            return None
        if not value.startswith(("http://", "https://")):
            raise ValueError("page_webhook_url must be an http(s) URL")
        return value


class Settings(BaseModel):
    server: ServerSettings = Field(default_factory=ServerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    reasoning: ReasoningSettings = Field(default_factory=ReasoningSettings)
    enrichment: EnrichmentSettings = Field(default_factory=EnrichmentSettings)
    approval: ApprovalSettings = Field(default_factory=ApprovalSettings)
    execution: ExecutionSettings = Field(default_factory=ExecutionSettings)
    correlation: CorrelationSettings = Field(default_factory=CorrelationSettings)
    policy: PolicySettings = Field(default_factory=PolicySettings)
    notify: NotifySettings = Field(default_factory=NotifySettings)


ENV_KEYS = {
    "host": "REMEDIATION_HOST",
    "port": "REMEDIATION_PORT",
    "log_level": "LOG_LEVEL",
    "log_file": "LOG_FILE",
    "sqlite_path": "SQLITE_PATH",
    "artifact_path": "ARTIFACT_PATH",
    "audit_retention_days": "AUDIT_RETENTION_DAYS",
    "policy_path": "POLICY_PATH",
    "model_endpoint": "MODEL_ENDPOINT",
    "callback_secret": "APPROVAL_CALLBACK_SECRET",
    "operator_token": "OPERATOR_TOKEN",
    "page_webhook_url": "PAGE_WEBHOOK_URL",
}

_TRUE_VALUES = frozenset({"1", "true", "yes"})


def _project_root() -> Path:
    return Path(__file__).resolve().parents[2]


def _resolve_path(path: str) -> str:
    candidate = Path(path)
    root = _project_root().resolve()
    if candidate.is_absolute():
        resolved = candidate.resolve()
    else:
        resolved = (root / candidate).resolve()
        if not resolved.is_relative_to(root):
            raise ValueError(f"Path traversal detected: '{path}' resolves outside project root")
    return str(resolved)


def _env_str(key: str) -> str | None:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return None
    return value.strip()


def _env_bool(key: str, default: bool) -> bool:
    value = os.getenv(key)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _env_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        _config_logger.warning(
            "Invalid integer value for %s: %r, using default %d", key, value, default
        )
        return default


def _env_float(key: str, default: float) -> float:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError:
        _config_logger.warning(
            "Invalid float value for %s: %r, using default %s", key, value, default
        )
        return default


def load_settings() -> Settings:
    """Load configuration and cache the result."""

    return _load_settings_cached()


@lru_cache(maxsize=1)
def _load_settings_cached() -> Settings:
    load_dotenv(dotenv_path=_project_root() / ".env")
    log_file_env = _env_str(ENV_KEYS["log_file"])

    settings_data: dict[str, object] = {
        "server": {
            "host": os.getenv(ENV_KEYS["host"], ServerSettings().host),
            "port": _env_int(ENV_KEYS["port"], ServerSettings().port),
            "resume_on_startup": _env_bool(
                "RESUME_ON_STARTUP", ServerSettings().resume_on_startup
            ),
        },
        "logging": {
            "level": os.getenv(ENV_KEYS["log_level"], LoggingSettings().level),
            "file": _resolve_path(log_file_env) if log_file_env else None,
        },
        "storage": {
            "sqlite_path": _resolve_path(
                os.getenv(ENV_KEYS["sqlite_path"], StorageSettings().sqlite_path)
            ),
            "sqlite_wal": _env_bool("SQLITE_WAL", StorageSettings().sqlite_wal),
            "artifact_path": _resolve_path(
                os.getenv(ENV_KEYS["artifact_path"], StorageSettings().artifact_path)
            ),
            "audit_retention_days": _env_int(
                ENV_KEYS["audit_retention_days"], StorageSettings().audit_retention_days
            ),
        },
        "reasoning": {
            "max_model_attempts": _env_int(
                "MODEL_MAX_ATTEMPTS", ReasoningSettings().max_model_attempts
            ),
            "max_plan_regenerations": _env_int(
                "PLAN_MAX_REGENERATIONS", ReasoningSettings().max_plan_regenerations
            ),
            "backoff_base_seconds": _env_float(
                "MODEL_BACKOFF_BASE_SECONDS", ReasoningSettings().backoff_base_seconds
            ),
            "backoff_max_seconds": _env_float(
                "MODEL_BACKOFF_MAX_SECONDS", ReasoningSettings().backoff_max_seconds
            ),
            "model_endpoint": _env_str(ENV_KEYS["model_endpoint"]),
            "model_timeout_seconds": _env_float(
                "MODEL_TIMEOUT_SECONDS", ReasoningSettings().model_timeout_seconds
            ),
        },
        "enrichment": {
            "runbook_endpoint": _env_str("RUNBOOK_ENDPOINT"),
            "metrics_endpoint": _env_str("METRICS_ENDPOINT"),
            "timeout_seconds": _env_float(
                "ENRICHMENT_TIMEOUT_SECONDS", EnrichmentSettings().timeout_seconds
            ),
        },
        "approval": {
            "callback_secret": _env_str(ENV_KEYS["callback_secret"]),
            "signature_tolerance_seconds": _env_int(
                "APPROVAL_SIGNATURE_TOLERANCE_SECONDS",
                ApprovalSettings().signature_tolerance_seconds,
            ),
            "watchdog_interval_seconds": _env_float(
                "APPROVAL_WATCHDOG_INTERVAL_SECONDS",
                ApprovalSettings().watchdog_interval_seconds,
            ),
            "operator_token": _env_str(ENV_KEYS["operator_token"]),
        },
        "execution": {
            "adapter_timeout_seconds": _env_int(
                "ADAPTER_TIMEOUT_SECONDS", ExecutionSettings().adapter_timeout_seconds
            ),
            "max_output_characters": _env_int(
                "MAX_OUTPUT_CHARACTERS", ExecutionSettings().max_output_characters
            ),
            "terraform_binary": os.getenv(
                "TERRAFORM_BINARY", ExecutionSettings().terraform_binary
            ),
            "metrics_query_url": _env_str("METRICS_QUERY_URL"),
            "aws_region": os.getenv("AWS_REGION") or os.getenv("AWS_DEFAULT_REGION"),
        },
        "correlation": {
            "coalesce_window_seconds": _env_int(
                "COALESCE_WINDOW_SECONDS", CorrelationSettings().coalesce_window_seconds
            ),
        },
        "policy": {
            "path": _resolve_path(os.getenv(ENV_KEYS["policy_path"], PolicySettings().path)),
        },
        "notify": {
            "page_webhook_url": _env_str(ENV_KEYS["page_webhook_url"]),
            "timeout_seconds": _env_float(
                "PAGE_TIMEOUT_SECONDS", NotifySettings().timeout_seconds
            ),
        },
    }

    try:
        settings = Settings.model_validate(settings_data)
    except ValidationError as exc:
        raise RuntimeError(f"Invalid configuration: {exc}") from exc

    if settings.reasoning.backoff_max_seconds < settings.reasoning.backoff_base_seconds:
        raise RuntimeError(
            "Invalid configuration: MODEL_BACKOFF_MAX_SECONDS must be >= "
            "MODEL_BACKOFF_BASE_SECONDS"
        )

    Path(settings.storage.artifact_path).mkdir(parents=True, exist_ok=True)
    Path(settings.storage.sqlite_path).parent.mkdir(parents=True, exist_ok=True)

    return settings
