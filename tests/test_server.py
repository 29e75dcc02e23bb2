import sys
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

from remediation_core.server import run_entrypoint


@patch("remediation_core.server.load_settings")
@patch("remediation_core.server.configure_logging")
@patch("remediation_core.transport.http_server.create_http_app")
def test_run_entrypoint_serves_http_app(mock_create_http_app, mock_log, mock_settings):
    settings = MagicMock()
    settings.server.host = "127.0.0.1"
    settings.server.port = 8080
    settings.logging.file = None
    mock_settings.return_value = settings

    uvicorn_run = MagicMock()
    with patch.dict(sys.modules, {"uvicorn": SimpleNamespace(run=uvicorn_run)}):
        run_entrypoint()

    mock_log.assert_called_once()
    mock_create_http_app.assert_called_once_with()
    uvicorn_run.assert_called_once()
    args, kwargs = uvicorn_run.call_args
    assert args[0] is mock_create_http_app.return_value
    assert kwargs["host"] == "127.0.0.1"
    assert kwargs["port"] == 8080
    assert kwargs["log_config"] is None
