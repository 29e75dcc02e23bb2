"""Correlation identifiers: transaction ids, plan ids, coalescing, log propagation."""

from remediation_core.correlation.context import (
    CorrelationIds,
    bind_correlation,
    current_correlation,
)
from remediation_core.correlation.manager import CorrelationManager, compute_plan_id

__all__ = [
    "CorrelationIds",
    "CorrelationManager",
    "bind_correlation",
    "compute_plan_id",
    "current_correlation",
]
