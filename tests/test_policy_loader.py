from __future__ import annotations

from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from remediation_core.policy.loader import load_policy
from remediation_core.policy.models import PolicyConfig


def test_load_policy_file_not_found(tmp_path: Path) -> None:
    missing = tmp_path / "missing-policy.yaml"
    with pytest.raises(FileNotFoundError):
        load_policy(str(missing))


def test_load_policy_success(tmp_path: Path) -> None:
    policy = {
        "tools": {
            "query_metrics": {"description": "range query"},
            "restart_instances": {"change_producing": True},
        },
        "approvers": ["alice@example.com"],
        "operators": None,
        "blast_radius": {"max_affected_resources": 3},
        "approval": {"ttl_seconds": 600},
    }
    path = tmp_path / "policy.yaml"
    path.write_text(yaml.safe_dump(policy), encoding="utf-8")

    loaded = load_policy(str(path))
    assert sorted(loaded.tools) == ["query_metrics", "restart_instances"]
    assert loaded.tools["restart_instances"].change_producing is True
    assert loaded.tools["query_metrics"].params_schema is None
    assert loaded.operators == []
    assert loaded.blast_radius.max_affected_resources == 3
    assert loaded.approval.ttl_seconds == 600
    assert loaded.destructive_actions == ["delete", "replace"]


def test_empty_policy_file(tmp_path: Path) -> None:
    path = tmp_path / "policy.yaml"
    path.write_text("", encoding="utf-8")
    loaded = load_policy(str(path))
    assert loaded.tools == {}
    assert loaded.approvers == []


def test_repository_policy_loads() -> None:
    path = Path(__file__).resolve().parents[1] / "policy.yaml"
    loaded = load_policy(str(path))
    assert "query_metrics" in loaded.tools
    assert loaded.approvers


def test_inline_schema_must_describe_object() -> None:
    with pytest.raises(ValidationError):
        PolicyConfig.model_validate({"tools": {"t": {"schema": {"type": "array"}}}})


def test_ttl_must_be_positive() -> None:
    with pytest.raises(ValidationError):
        PolicyConfig.model_validate({"approval": {"ttl_seconds": 0}})
