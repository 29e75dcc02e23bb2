"""Allowed state transitions."""

from __future__ import annotations

from remediation_core.domain.models import TERMINAL_STATES, TransactionState
from remediation_core.errors import InvalidTransition

S = TransactionState

# Any non-terminal state may also move to Failed.
_FORWARD: dict[TransactionState, frozenset[TransactionState]] = {
    S.RECEIVED: frozenset({S.ENRICHING}),
    S.ENRICHING: frozenset({S.REASONING}),
    S.REASONING: frozenset({S.AWAITING_APPROVAL}),
    S.AWAITING_APPROVAL: frozenset({S.APPROVED, S.REJECTED, S.TIMED_OUT}),
    S.APPROVED: frozenset({S.EXECUTING}),
    S.EXECUTING: frozenset({S.COMPLETED}),
}

REDRIVABLE_STATES = frozenset({S.FAILED, S.TIMED_OUT})


def can_transition(current: TransactionState, target: TransactionState) -> bool:
    if current in TERMINAL_STATES:
        return False
    if target == S.FAILED:
        return True
    return target in _FORWARD.get(current, frozenset())


def check_transition(
    current: TransactionState, target: TransactionState, *, redrive: bool = False
) -> None:
    if redrive:
        if current in REDRIVABLE_STATES and target == S.RECEIVED:
            return
    elif can_transition(current, target):
        return
    raise InvalidTransition(
        f"Transition {current.value} -> {target.value} is not allowed",
        details={"from": current.value, "to": target.value, "redrive": redrive},
    )
