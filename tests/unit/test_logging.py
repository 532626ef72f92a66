"""Tests for sidecar_terminator.observability.logging."""

from __future__ import annotations

import json
from collections.abc import Iterator

import pytest
import structlog

from sidecar_terminator.observability.logging import get_logger, setup_logging


@pytest.fixture(autouse=True)
def _reset_structlog() -> Iterator[None]:
    yield
    structlog.reset_defaults()


def _lines(capsys: pytest.CaptureFixture[str]) -> list[dict]:
    return [json.loads(line) for line in capsys.readouterr().err.splitlines() if line]


class TestSetupLogging:
    def test_json_line_with_component_and_bound_fields(self, capsys: pytest.CaptureFixture[str]) -> None:
        setup_logging("info")
        get_logger("watcher", watcher="pods").info("relist_complete", items=3)

        (line,) = _lines(capsys)
        assert line["event"] == "relist_complete"
        assert line["component"] == "watcher"
        assert line["watcher"] == "pods"
        assert line["items"] == 3
        assert line["level"] == "info"
        assert "ts" in line

    def test_level_filters_lower_events(self, capsys: pytest.CaptureFixture[str]) -> None:
        setup_logging("warning")
        log = get_logger("app")
        log.info("quiet")
        log.warning("loud")

        assert [line["event"] for line in _lines(capsys)] == ["loud"]

    def test_unknown_level_falls_back_to_info(self, capsys: pytest.CaptureFixture[str]) -> None:
        setup_logging("chatty")
        log = get_logger("app")
        log.debug("hidden")
        log.info("shown")

        assert [line["event"] for line in _lines(capsys)] == ["shown"]
