"""
Tests for relspine.core.logging.

Tests verify:
- JSON output carries ECS field names and the service name
- LogContext binds and unbinds run context
- DEBUG lines are suppressed at INFO level
"""

from __future__ import annotations

import json

import pytest
import structlog

from relspine.core.logging import LogContext, clear_context, configure_logging, get_logger


@pytest.fixture(autouse=True)
def _reset_structlog():
    clear_context()
    yield
    clear_context()
    structlog.reset_defaults()


def _json_lines(text: str) -> list[dict]:
    return [json.loads(line) for line in text.splitlines() if line.strip()]


class TestConfigureLogging:
    def test_json_output_uses_ecs_fields(self, capsys):
        configure_logging(level="INFO", json_format=True, service="relspine-test")
        get_logger("relspine.tests").info("transition.started", release="s0")

        lines = _json_lines(capsys.readouterr().err)
        assert len(lines) == 1
        line = lines[0]
        assert line["event"] == "transition.started"
        assert line["release"] == "s0"
        assert line["log.level"] == "info"
        assert line["service.name"] == "relspine-test"
        assert line["log.logger"] == "relspine.tests"
        assert "@timestamp" in line

    def test_module_logger_follows_later_configuration(self, capsys):
        # modules build their logger at import time, before the CLI configures
        log = get_logger("relspine.transition.monitor")
        configure_logging(level="INFO", json_format=True)
        log.info("monitor.tick", tick=1)

        captured = capsys.readouterr()
        assert captured.out == ""
        (line,) = _json_lines(captured.err)
        assert line["log.logger"] == "relspine.transition.monitor"
        assert line["tick"] == 1

    def test_debug_suppressed_at_info(self, capsys):
        configure_logging(level="INFO", json_format=True)
        log = get_logger(__name__)
        log.debug("helm.exec", cmd="helm list")
        log.info("transition.classified")

        events = [line["event"] for line in _json_lines(capsys.readouterr().err)]
        assert events == ["transition.classified"]

    def test_stdout_stays_clean(self, capsys):
        configure_logging(level="DEBUG", json_format=True)
        get_logger(__name__).warning("monitor.degraded")
        assert capsys.readouterr().out == ""


class TestLogContext:
    def test_context_is_bound_and_removed(self, capsys):
        configure_logging(level="INFO", json_format=True)
        log = get_logger(__name__)

        with LogContext(run_id="abc123", namespace="b2bi"):
            log.info("inside")
        log.info("outside")

        inside, outside = _json_lines(capsys.readouterr().err)
        assert inside["run_id"] == "abc123"
        assert inside["namespace"] == "b2bi"
        assert "run_id" not in outside
