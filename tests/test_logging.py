"""
Tests for structured logging setup.
"""

import json
import logging

from vendwatch.common.logging_setup import get_service_logger, log_alarm


class TestServiceLogger:

    def test_logger_is_isolated_from_root(self):
        get_service_logger("logging-test")
        adapter = get_service_logger("logging-test")

        logger = logging.getLogger("vendwatch.logging-test")
        assert adapter.logger is logger
        assert logger.propagate is False
        assert len(logger.handlers) == 1

    def test_json_line_carries_service_and_extra(self, capsys):
        logger = get_service_logger("logging-json")

        logger.info("Cycle finished", extra={"machine_id": "m1", "failures": 0})

        line = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
        assert line["message"] == "Cycle finished"
        assert line["service"] == "logging-json"
        assert line["level"] == "INFO"
        assert line["machine_id"] == "m1"
        assert line["failures"] == 0

    def test_log_alarm_level_follows_severity(self, capsys):
        logger = get_service_logger("logging-alarm")

        log_alarm(logger, "a-1", "critical-offline", "critical", "Lobby Coffee critically offline", "m1")

        line = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
        assert line["alarm_id"] == "a-1"
        assert line["machine_id"] == "m1"
        assert line["level"] == "CRITICAL"
