from remediation_core.orchestration.orchestrator import (
    DecisionResult,
    IntakeResult,
    Orchestrator,
    UNRESOLVABLE_PLAN,
)
from remediation_core.orchestration.watchdog import ApprovalWatchdog

__all__ = [
    "ApprovalWatchdog",
    "DecisionResult",
    "IntakeResult",
    "Orchestrator",
    "UNRESOLVABLE_PLAN",
]
