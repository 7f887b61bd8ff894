########################################################################################
##
##                                  TESTS FOR
##                                'utils/logger.py'
##
########################################################################################

# IMPORTS ==============================================================================

import logging

import pytest

from paramid.utils.logger import LoggerManager, ROOT_NAME


# ═══════════════════════════════════════════════════════════════════════════
# Fixtures
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def manager():
    mgr = LoggerManager()
    yield mgr
    mgr.close_log_file()
    mgr.set_level(logging.INFO)


# ═══════════════════════════════════════════════════════════════════════════
# LoggerManager
# ═══════════════════════════════════════════════════════════════════════════

class TestLoggerManager:

    def test_singleton(self):
        assert LoggerManager() is LoggerManager()

    def test_namespaced_loggers(self, manager):
        log = manager.get_logger("ident.optimize")
        assert log.name == f"{ROOT_NAME}.ident.optimize"
        assert manager.get_logger(f"{ROOT_NAME}.ident.optimize") is log
        assert manager.get_logger(ROOT_NAME).name == ROOT_NAME

    def test_root_does_not_propagate(self, manager):
        assert manager.get_logger("").propagate is False

    def test_console_handler(self, manager):
        handlers = [h for h in manager.get_logger("").handlers if isinstance(h, logging.StreamHandler)]
        assert handlers
        assert handlers[0].formatter._fmt == "[%(name)s] %(levelname)s: %(message)s"

    def test_set_level(self, manager):
        manager.set_level(logging.WARNING)
        log = manager.get_logger("ident.test")
        assert not log.isEnabledFor(logging.INFO)
        assert log.isEnabledFor(logging.WARNING)

    def test_log_file(self, manager, tmp_path):
        path = manager.set_log_file(tmp_path / "logs" / "run.log")
        log = manager.get_logger("ident.test")
        log.debug("debug detail")
        log.info("generation %d done", 2)
        manager.close_log_file()

        text = path.read_text(encoding="utf-8")
        assert "file logging initialized" in text
        assert "| paramid.ident.test | DEBUG | debug detail" in text
        assert "generation 2 done" in text

    def test_debug_stays_off_console(self, manager, tmp_path):
        manager.set_log_file(tmp_path / "run.log")
        assert manager.get_logger("ident.test").isEnabledFor(logging.DEBUG)
        assert manager._console_handler.level == logging.INFO

    def test_replacing_log_file(self, manager, tmp_path):
        manager.set_log_file(tmp_path / "a.log")
        manager.set_log_file(tmp_path / "b.log")
        manager.get_logger("ident.test").info("second")
        manager.close_log_file()
        assert "second" not in (tmp_path / "a.log").read_text()
        assert "second" in (tmp_path / "b.log").read_text()
