from remediation_core.planning.base import PlanGenerator
from remediation_core.planning.contract import build_nudge, parse_plan
from remediation_core.planning.http import HttpPlanGenerator

__all__ = ["HttpPlanGenerator", "PlanGenerator", "build_nudge", "parse_plan"]
