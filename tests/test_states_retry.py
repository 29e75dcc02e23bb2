from __future__ import annotations

import pytest

from remediation_core.domain.models import TERMINAL_STATES, TransactionState as S
from remediation_core.errors import InvalidTransition, ModelError, Unauthorized
from remediation_core.orchestration.retry import backoff_delay, retry_async
from remediation_core.orchestration.states import can_transition, check_transition


@pytest.mark.parametrize(
    ("current", "target"),
    [
        (S.RECEIVED, S.ENRICHING),
        (S.ENRICHING, S.REASONING),
        (S.REASONING, S.AWAITING_APPROVAL),
        (S.AWAITING_APPROVAL, S.APPROVED),
        (S.AWAITING_APPROVAL, S.REJECTED),
        (S.AWAITING_APPROVAL, S.TIMED_OUT),
        (S.APPROVED, S.EXECUTING),
        (S.EXECUTING, S.COMPLETED),
        (S.REASONING, S.FAILED),
        (S.EXECUTING, S.FAILED),
    ],
)
def test_allowed_transitions(current: S, target: S) -> None:
    assert can_transition(current, target)
    check_transition(current, target)


@pytest.mark.parametrize(
    ("current", "target"),
    [
        (S.RECEIVED, S.EXECUTING),
        (S.REASONING, S.APPROVED),
        (S.AWAITING_APPROVAL, S.EXECUTING),
        (S.EXECUTING, S.REJECTED),
    ],
)
def test_skipping_states_is_rejected(current: S, target: S) -> None:
    assert not can_transition(current, target)
    with pytest.raises(InvalidTransition):
        check_transition(current, target)


@pytest.mark.parametrize("terminal", sorted(TERMINAL_STATES, key=lambda s: s.value))
def test_terminal_states_are_final(terminal: S) -> None:
    for target in S:
        assert not can_transition(terminal, target)


def test_redrive_only_from_failed_or_timed_out() -> None:
    check_transition(S.FAILED, S.RECEIVED, redrive=True)
    check_transition(S.TIMED_OUT, S.RECEIVED, redrive=True)
    for current in (S.COMPLETED, S.REJECTED, S.EXECUTING):
        with pytest.raises(InvalidTransition) as exc_info:
            check_transition(current, S.RECEIVED, redrive=True)
        assert exc_info.value.details["redrive"] is True
    with pytest.raises(InvalidTransition):
        check_transition(S.FAILED, S.RECEIVED)


def test_backoff_delay_is_capped_full_jitter() -> None:
    assert backoff_delay(0, 0.5, 20.0, rng=lambda: 1.0) == 0.5
    assert backoff_delay(3, 0.5, 20.0, rng=lambda: 1.0) == 4.0
    assert backoff_delay(10, 0.5, 20.0, rng=lambda: 1.0) == 20.0
    assert backoff_delay(3, 0.5, 20.0, rng=lambda: 0.0) == 0.0


@pytest.mark.asyncio
async def test_retry_async_retries_retryable_errors() -> None:
    attempts = []
    sleeps: list[float] = []
    retried: list[int] = []

    async def operation() -> str:
        attempts.append(1)
        if len(attempts) < 3:
            raise ModelError("timeout")
        return "plan"

    async def sleep(delay: float) -> None:
        sleeps.append(delay)

    result = await retry_async(
        operation,
        max_attempts=3,
        base_seconds=0.5,
        max_seconds=20.0,
        on_retry=lambda attempt, exc: retried.append(attempt),
        sleep=sleep,
    )
    assert result == "plan"
    assert retried == [1, 2]
    assert len(sleeps) == 2
    assert all(0.0 <= delay <= 1.0 for delay in sleeps)


@pytest.mark.asyncio
async def test_retry_async_gives_up_after_ceiling() -> None:
    calls = []

    async def operation() -> None:
        calls.append(1)
        raise ModelError("timeout")

    async def sleep(delay: float) -> None:
        return None

    with pytest.raises(ModelError):
        await retry_async(
            operation, max_attempts=3, base_seconds=0.1, max_seconds=1.0, sleep=sleep
        )
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_retry_async_does_not_retry_fatal_errors() -> None:
    calls = []

    async def operation() -> None:
        calls.append(1)
        raise Unauthorized("nope")

    with pytest.raises(Unauthorized):
        await retry_async(operation, max_attempts=5, base_seconds=0.1, max_seconds=1.0)
    assert len(calls) == 1
