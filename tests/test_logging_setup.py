"""Tests for logging setup."""

import logging

import configflow.logging_setup as ls


class TestSetupLogging:
    def setup_method(self):
        # Reset the module-level flag for each test
        ls._CONFIGURED = False
        self._clear()

    def teardown_method(self):
        self._clear()

    def _clear(self):
        logger = logging.getLogger("configflow")
        for handler in logger.handlers:
            handler.close()
        logger.handlers.clear()
        logger.propagate = True

    def test_setup_creates_handler(self):
        ls.setup_logging()
        logger = logging.getLogger("configflow")
        assert len(logger.handlers) == 1
        assert logger.level == logging.INFO
        assert logger.propagate is False

    def test_idempotent(self):
        ls.setup_logging()
        ls.setup_logging()
        assert len(logging.getLogger("configflow").handlers) == 1

    def test_second_call_updates_level(self):
        ls.setup_logging()
        ls.setup_logging(level=logging.DEBUG)
        assert logging.getLogger("configflow").level == logging.DEBUG

    def test_component_loggers_inherit(self):
        ls.setup_logging(level=logging.WARNING)
        child = logging.getLogger("configflow.tuner")
        assert child.getEffectiveLevel() == logging.WARNING

    def test_watchfiles_quieted(self):
        ls.setup_logging(level=logging.DEBUG)
        assert logging.getLogger("watchfiles").level == logging.WARNING

    def test_log_file(self, tmp_path):
        log_file = tmp_path / "logs" / "configflow.log"
        ls.setup_logging(log_file=log_file)
        ls.setup_logging(log_file=log_file)

        logger = logging.getLogger("configflow")
        assert len(logger.handlers) == 2
        logging.getLogger("configflow.tuner").info("Session %s testing", "session_1")
        for handler in logger.handlers:
            handler.flush()
        assert "configflow.tuner: Session session_1 testing" in log_file.read_text()
