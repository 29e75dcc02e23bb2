"""Built-in tool adapters: metric queries, instance restarts, Terraform applies."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import boto3
import httpx
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from remediation_core.correlation.context import current_correlation
from remediation_core.domain.models import ApplyResult, ProposedEffect
from remediation_core.errors import ExecutionError
from remediation_core.utils.hashing import sha256_text
from remediation_core.utils.serialization import canonical_json

logger = logging.getLogger(__name__)

QUERY_METRICS_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "query": {"type": "string", "minLength": 1, "maxLength": 2048},
        "timeRangeMinutes": {"type": "integer", "minimum": 1, "maximum": 1440},
        "stepSeconds": {"type": "integer", "minimum": 1, "maximum": 3600},
    },
    "required": ["query", "timeRangeMinutes"],
    "additionalProperties": False,
}

RESTART_INSTANCES_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "instanceIds": {
            "type": "array",
            "items": {"type": "string", "pattern": "^i-[0-9a-f]{8,17}$"},
            "minItems": 1,
            "maxItems": 50,
            "uniqueItems": True,
        },
        "region": {"type": "string", "pattern": "^[a-z]{2}(-[a-z]+)+-[0-9]$"},
    },
    "required": ["instanceIds"],
    "additionalProperties": False,
}

TERRAFORM_APPLY_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "workingDir": {"type": "string", "minLength": 1},
        "targets": {
            "type": "array",
            "items": {"type": "string", "minLength": 1},
            "maxItems": 20,
        },
        "variables": {
            "type": "object",
            "additionalProperties": {"type": ["string", "number", "boolean"]},
        },
    },
    "required": ["workingDir"],
    "additionalProperties": False,
}


class MetricsQueryAdapter:
    """Runs a PromQL range query against a Prometheus-compatible API."""

    def __init__(
        self,
        base_url: str | None,
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/") if base_url else None
        self._timeout = timeout_seconds
        self._transport = transport

    async def apply(self, params: Mapping[str, Any]) -> ApplyResult:
        if not self._base_url:
            raise ExecutionError("Metrics query URL is not configured", retryable=False)
        minutes = int(params["timeRangeMinutes"])
        end = time.time()
        start = end - minutes * 60
        step = int(params.get("stepSeconds") or max(15, minutes * 60 // 240))
        query = {"query": params["query"], "start": start, "end": end, "step": step}

        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            try:
                resp = await client.get(
                    f"{self._base_url}/api/v1/query_range",
                    params=query,
                    headers=current_correlation().as_headers(),
                )
                resp.raise_for_status()
                body = resp.json()
            except httpx.HTTPError as exc:
                raise ExecutionError(f"Metrics query failed: {exc}", retryable=True) from exc

        if body.get("status") != "success":
            return ApplyResult(status="error", logs=(str(body.get("error", "query failed")),))
        series = body.get("data", {}).get("result", [])
        return ApplyResult(
            status="success",
            logs=(f"query returned {len(series)} series over {minutes}m",),
            output={"series": series},
        )


class InstanceRestartAdapter:
    """Reboots EC2 instances; previews how many instances would be touched."""

    def __init__(self, region: str | None = None, client_factory: Any = None) -> None:
        self._region = region
        self._client_factory = client_factory or self._default_client

    def _default_client(self, region: str | None):
        return boto3.client(
            "ec2",
            region_name=region or self._region,
            config=Config(retries={"max_attempts": 3, "mode": "standard"}),
        )

    async def plan(self, params: Mapping[str, Any]) -> ProposedEffect:
        ids = list(params["instanceIds"])
        client = self._client_factory(params.get("region"))
        try:
            response = await asyncio.to_thread(client.describe_instances, InstanceIds=ids)
        except (ClientError, BotoCoreError) as exc:
            raise ExecutionError(f"describe_instances failed: {exc}") from exc
        found = [
            instance["InstanceId"]
            for reservation in response.get("Reservations", [])
            for instance in reservation.get("Instances", [])
        ]
        missing = sorted(set(ids) - set(found))
        if missing:
            raise ExecutionError(
                "Unknown instances in restart request", details={"missing": missing}
            )
        return ProposedEffect(
            proposed_effect=f"reboot {len(found)} instance(s): {', '.join(sorted(found))}",
            destructive=False,
            affected_count=len(found),
        )

    async def apply(self, params: Mapping[str, Any]) -> ApplyResult:
        ids = list(params["instanceIds"])
        client = self._client_factory(params.get("region"))
        try:
            await asyncio.to_thread(client.reboot_instances, InstanceIds=ids)
        except (ClientError, BotoCoreError) as exc:
            raise ExecutionError(f"reboot_instances failed: {exc}") from exc
        return ApplyResult(status="success", logs=(f"reboot requested for {', '.join(ids)}",))


class TerraformAdapter:
    """Plans and applies a Terraform working directory.

    ``plan`` writes a saved plan file keyed by the params hash; ``apply`` applies
    exactly that saved plan, so what was previewed is what runs.
    """

    def __init__(
        self,
        binary: str = "terraform",
        destructive_actions: list[str] | None = None,
        timeout_seconds: int = 300,
    ) -> None:
        self._binary = binary
        self._destructive = frozenset(destructive_actions or ["delete", "replace"])
        self._timeout = timeout_seconds

    def _plan_file(self, params: Mapping[str, Any]) -> Path:
        digest = sha256_text(canonical_json(dict(params)))[:16]
        return Path(str(params["workingDir"])) / f".remediation-{digest}.tfplan"

    def _plan_args(self, params: Mapping[str, Any], plan_file: Path) -> list[str]:
        args = [self._binary, "plan", "-input=false", "-no-color", f"-out={plan_file.name}"]
        for target in params.get("targets") or []:
            args.append(f"-target={target}")
        for key, value in sorted((params.get("variables") or {}).items()):
            args.append(f"-var={key}={value}")
        return args

    async def _run(self, args: list[str], cwd: str) -> str:
        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                cwd=cwd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise ExecutionError(
                f"terraform {args[1]} could not start: {exc.strerror or exc}",
                details={"binary": args[0]},
            ) from exc
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self._timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise ExecutionError(f"terraform {args[1]} timed out after {self._timeout}s")
        if proc.returncode != 0:
            # Only the subcommand; variables may carry secrets.
            raise ExecutionError(
                f"terraform {args[1]} failed (exit {proc.returncode})",
                details={"stderr": stderr.decode("utf-8", "replace")[-2000:]},
            )
        return stdout.decode("utf-8", "replace")

    def summarize_changes(self, plan_json: Mapping[str, Any]) -> ProposedEffect:
        changed: list[str] = []
        destructive: list[str] = []
        for change in plan_json.get("resource_changes", []):
            actions = list(change.get("change", {}).get("actions", []))
            if not actions or actions in (["no-op"], ["read"]):
                continue
            address = str(change.get("address", "?"))
            changed.append(f"{address}:{'/'.join(actions)}")
            kinds = set(actions)
            if "delete" in kinds and "create" in kinds:
                kinds.add("replace")
            if kinds & self._destructive:
                destructive.append(address)
        effect = f"{len(changed)} resource change(s)"
        if changed:
            effect += ": " + ", ".join(changed[:20])
        return ProposedEffect(
            proposed_effect=effect,
            destructive=bool(destructive),
            affected_count=len(changed),
        )

    async def plan(self, params: Mapping[str, Any]) -> ProposedEffect:
        cwd = str(params["workingDir"])
        plan_file = self._plan_file(params)
        await self._run(self._plan_args(params, plan_file), cwd)
        shown = await self._run([self._binary, "show", "-json", plan_file.name], cwd)
        try:
            plan_json = json.loads(shown)
        except json.JSONDecodeError as exc:
            raise ExecutionError("terraform show returned invalid JSON") from exc
        return self.summarize_changes(plan_json)

    async def apply(self, params: Mapping[str, Any]) -> ApplyResult:
        cwd = str(params["workingDir"])
        plan_file = self._plan_file(params)
        if not plan_file.exists():
            raise ExecutionError("No saved terraform plan; plan must run before apply")
        output = await self._run(
            [self._binary, "apply", "-input=false", "-no-color", "-auto-approve", plan_file.name],
            cwd,
        )
        lines = tuple(line for line in output.splitlines() if line.strip())[-50:]
        logger.info("terraform apply finished in %s", cwd)
        return ApplyResult(status="success", logs=lines)


BUILTIN_SCHEMAS: dict[str, dict[str, Any]] = {
    "query_metrics": QUERY_METRICS_SCHEMA,
    "restart_instances": RESTART_INSTANCES_SCHEMA,
    "terraform_apply": TERRAFORM_APPLY_SCHEMA,
}
