from remediation_core.notify.escalation import Escalator, LoggingEscalator, WebhookEscalator

__all__ = ["Escalator", "LoggingEscalator", "WebhookEscalator"]
