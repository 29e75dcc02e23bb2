from __future__ import annotations

import logging
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

from remediation_core import logging_utils
from remediation_core.correlation.context import CorrelationFilter, bind_correlation


def _settings(log_file: str | None) -> SimpleNamespace:
    return SimpleNamespace(
        logging=SimpleNamespace(level="INFO", file=log_file),
    )


@patch("remediation_core.logging_utils.load_settings")
@patch("remediation_core.logging_utils.logging.basicConfig")
def test_configure_logging_stream_only(
    mock_basic_config: MagicMock,
    mock_load_settings: MagicMock,
) -> None:
    mock_load_settings.return_value = _settings(None)

    logging_utils.configure_logging()

    kwargs = mock_basic_config.call_args.kwargs
    assert kwargs["force"] is True
    assert kwargs["level"] == logging.INFO
    assert len(kwargs["handlers"]) == 1
    handler = kwargs["handlers"][0]
    assert any(isinstance(f, CorrelationFilter) for f in handler.filters)


@patch("remediation_core.logging_utils.load_settings")
@patch("remediation_core.logging_utils.logging.basicConfig")
def test_configure_logging_with_file(
    mock_basic_config: MagicMock,
    mock_load_settings: MagicMock,
    tmp_path,
) -> None:
    log_file = tmp_path / "logs" / "remediation.log"
    mock_load_settings.return_value = _settings(str(log_file))

    logging_utils.configure_logging()

    handlers = mock_basic_config.call_args.kwargs["handlers"]
    assert len(handlers) == 2
    assert log_file.parent.exists()
    for handler in handlers:
        handler.close()


@patch("remediation_core.logging_utils.load_settings")
@patch("remediation_core.logging_utils.logging.FileHandler", side_effect=OSError("permission denied"))
@patch("remediation_core.logging_utils._logger")
def test_configure_logging_file_handler_error(
    mock_logger: MagicMock,
    _mock_file_handler: MagicMock,
    mock_load_settings: MagicMock,
    tmp_path,
) -> None:
    mock_load_settings.return_value = _settings(str(tmp_path / "logs" / "app.log"))

    logging_utils.configure_logging()

    mock_logger.warning.assert_called_once()


def test_log_format_includes_correlation_ids() -> None:
    formatter = logging.Formatter(logging_utils.LOG_FORMAT)
    record = logging.LogRecord("remediation", logging.INFO, __file__, 1, "step done", None, None)
    with bind_correlation(alert_id="a1", transaction_id="tx-1", plan_id="plan-1"):
        CorrelationFilter().filter(record)
    line = formatter.format(record)
    assert "alert=a1 tx=tx-1 plan=plan-1 | step done" in line


def test_get_logger_auto_configures(monkeypatch) -> None:
    monkeypatch.setattr(logging_utils, "_logging_configured", False)

    calls = {"count": 0}

    def fake_configure() -> None:
        calls["count"] += 1
        monkeypatch.setattr(logging_utils, "_logging_configured", True)

    monkeypatch.setattr(logging_utils, "configure_logging", fake_configure)

    logger = logging_utils.get_logger("test.logger")
    assert logger.name == "test.logger"
    assert calls["count"] == 1
