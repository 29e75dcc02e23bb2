"""Entrypoint for the remediation orchestrator HTTP service."""

from __future__ import annotations

import logging

from remediation_core import __version__
from remediation_core.config import load_settings
from remediation_core.logging_utils import configure_logging


def run_entrypoint() -> None:
    """Configure logging and serve the HTTP application with uvicorn."""
    settings = load_settings()
    configure_logging()
    from remediation_core.transport.http_server import create_http_app

    try:
        import uvicorn
    except ImportError as exc:
        raise RuntimeError("uvicorn is required to serve the HTTP application") from exc

    logging.info("Starting remediation-core v%s", __version__)
    logging.info("Log file configured at: %s", settings.logging.file)
    app = create_http_app()
    uvicorn.run(
        app,
        host=settings.server.host,
        port=settings.server.port,
        ws="none",
        log_config=None,
    )


if __name__ == "__main__":  # pragma: no cover
    run_entrypoint()
