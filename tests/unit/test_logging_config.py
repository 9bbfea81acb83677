"""
Unit tests for leadrelay/logging_config.py.

configure_logging writes into a tmp_path log dir; log_call output is read
through caplog on the 'leadrelay' logger.
"""

import logging
import logging.handlers
import os
from unittest.mock import MagicMock, patch

import pytest
from click.testing import CliRunner

from leadrelay.cli.main import cli
from leadrelay.engine import ingestion
from leadrelay.engine.lead_source import LeadSourceError
from leadrelay.logging_config import configure_logging, log_call


def _reset_logger():
    logger = logging.getLogger("leadrelay")
    for h in logger.handlers[:]:
        h.close()
        logger.removeHandler(h)
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def log_dir(tmp_path):
    _reset_logger()
    path = tmp_path / "logs"
    with patch("leadrelay.logging_config._LOG_DIR", path), \
         patch("leadrelay.logging_config._LOG_FILE", path / "leadrelay.log"):
        yield path
    _reset_logger()


def _handler_types():
    return [type(h).__name__ for h in logging.getLogger("leadrelay").handlers]


# ---------------------------------------------------------------------------
# configure_logging
# ---------------------------------------------------------------------------

class TestConfigureLogging:

    def test_creates_dir_and_file_handler(self, log_dir):
        logger = configure_logging()
        assert logger.name == "leadrelay"
        assert log_dir.exists()
        assert _handler_types() == ["RotatingFileHandler"]

    def test_repeated_calls_keep_one_handler(self, log_dir):
        for _ in range(3):
            configure_logging()
        assert _handler_types() == ["RotatingFileHandler"]

    @pytest.mark.parametrize("value, level", [
        (None, logging.INFO),
        ("debug", logging.DEBUG),
        ("WARNING", logging.WARNING),
        ("BOGUS", logging.INFO),
    ])
    def test_level_from_env(self, log_dir, value, level):
        env = {k: v for k, v in os.environ.items() if k != "LOG_LEVEL"}
        if value is not None:
            env["LOG_LEVEL"] = value
        with patch.dict(os.environ, env, clear=True):
            configure_logging()
        assert logging.getLogger("leadrelay").level == level

    def test_console_on_first_call(self, log_dir):
        configure_logging(console=True)
        assert _handler_types() == ["RotatingFileHandler", "StreamHandler"]

    def test_console_after_plain_setup(self, log_dir):
        configure_logging()
        configure_logging(console=True)
        configure_logging(console=True)
        assert _handler_types() == ["RotatingFileHandler", "StreamHandler"]

    def test_engine_loggers_reach_the_file(self, log_dir):
        configure_logging()
        logging.getLogger("leadrelay.engine.reminders").info("Reminders sent: 2")
        for h in logging.getLogger("leadrelay").handlers:
            h.flush()
        assert "Reminders sent: 2" in (log_dir / "leadrelay.log").read_text(encoding="utf-8")

    def test_serve_command_mirrors_to_stderr(self, log_dir):
        with patch("leadrelay.cli.main.OrchestratorScheduler", return_value=MagicMock()), \
             patch("leadrelay.cli.main.signal"):
            result = CliRunner().invoke(cli, ["serve"])
        assert result.exit_code == 0
        assert "StreamHandler" in _handler_types()

    def test_other_commands_stay_file_only(self, log_dir):
        with patch("leadrelay.cli.main.init_db"):
            CliRunner().invoke(cli, ["init-db"])
        assert _handler_types() == ["RotatingFileHandler"]


# ---------------------------------------------------------------------------
# log_call
# ---------------------------------------------------------------------------

class TestLogCall:

    @pytest.fixture(autouse=True)
    def capture(self, caplog):
        _reset_logger()
        caplog.set_level(logging.DEBUG, logger="leadrelay")
        yield caplog
        _reset_logger()

    def _lines(self, caplog):
        return [(r.levelname, r.getMessage()) for r in caplog.records if r.name == "leadrelay"]

    def test_success_traces_call_and_ok(self, caplog):
        @log_call
        def send(phone, body=None):
            return "wamid.1"

        assert send("919729360795", body="hi") == "wamid.1"
        assert send.__name__ == "send"

        (call_level, call_msg), (ok_level, ok_msg) = self._lines(caplog)
        assert call_level == "DEBUG"
        assert call_msg == "CALL send | args=('919729360795', body='hi')"
        assert ok_level == "INFO"
        assert ok_msg.startswith("OK   send | ") and ok_msg.endswith("ms")

    def test_no_args(self, caplog):
        @log_call
        def run_reminders():
            return {}

        run_reminders()
        assert self._lines(caplog)[0][1] == "CALL run_reminders | args=(-)"

    def test_long_arguments_are_cut(self, caplog):
        @log_call
        def handle_webhook(payload):
            return payload

        handle_webhook({"entry": ["x" * 500]})
        call_msg = self._lines(caplog)[0][1]
        assert call_msg.endswith("...)")
        assert len(call_msg) < 300

    def test_failure_logged_and_reraised(self, caplog):
        @log_call
        def notify():
            raise RuntimeError("smtp down")

        with pytest.raises(RuntimeError, match="smtp down"):
            notify()

        levels = [level for level, _ in self._lines(caplog)]
        assert levels == ["DEBUG", "ERROR"]
        msg = self._lines(caplog)[-1][1]
        assert msg.startswith("FAIL notify | RuntimeError: smtp down | ")

    def test_poll_failure_is_traced(self, caplog):
        with patch("leadrelay.engine.ingestion.store") as mock_store, \
             patch("leadrelay.engine.lead_source.list_submissions",
                   side_effect=LeadSourceError("401 Unauthorized")):
            mock_store.get_feed_cursor.return_value = None
            with pytest.raises(LeadSourceError):
                ingestion.poll("form-1")

        messages = [msg for _, msg in self._lines(caplog)]
        assert messages[0] == "CALL poll | args=('form-1')"
        assert messages[-1].startswith("FAIL poll | LeadSourceError: 401 Unauthorized")
