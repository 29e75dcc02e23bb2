from remediation_core.enrichment.base import ContextEnricher, degraded_context
from remediation_core.enrichment.http import HttpContextEnricher

__all__ = ["ContextEnricher", "HttpContextEnricher", "degraded_context"]
