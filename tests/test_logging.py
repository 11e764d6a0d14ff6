"""logtail.logging: processor pipeline, run_id and source binding."""

import json
import re

import pytest
import structlog

from logtail.config import Settings
from logtail.logging import configure_logging, get_logger, source_logger


@pytest.fixture(autouse=True)
def _fresh_structlog():
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()
    yield
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()


def _configure(**logging) -> str:
    return configure_logging(Settings(logging=logging))


class TestRunId:
    def test_shape(self):
        assert re.fullmatch(r"[0-9a-f]{8}", _configure())

    def test_bound_for_later_events(self):
        run_id = _configure()
        assert structlog.contextvars.get_contextvars() == {"run_id": run_id}

    def test_new_id_on_every_configure(self):
        ids = {_configure() for _ in range(3)}
        assert len(ids) == 3
        assert structlog.contextvars.get_contextvars()["run_id"] in ids


class TestOutput:
    def test_json_lines_on_stderr(self, capsys):
        run_id = _configure()
        get_logger(__name__).info("reader ready", channel="app")
        out, err = capsys.readouterr()
        assert out == ""
        event = json.loads(err.strip())
        assert event["event"] == "reader ready"
        assert event["channel"] == "app"
        assert event["run_id"] == run_id
        assert event["level"] == "info"
        assert "timestamp" in event

    def test_text_format_is_not_json(self, capsys):
        _configure(format="text", level="debug")
        get_logger(__name__).debug("idle poll")
        err = capsys.readouterr().err
        assert "idle poll" in err
        assert not err.lstrip().startswith("{")

    def test_events_below_threshold_dropped(self, capsys):
        _configure(level="WARNING")
        log = get_logger(__name__)
        log.info("quiet")
        log.warning("loud")
        err = capsys.readouterr().err
        assert "quiet" not in err
        assert "loud" in err


class TestSourceLogger:
    def test_source_attached_to_events(self):
        _configure()
        with structlog.testing.capture_logs() as events:
            source_logger(__name__, "/var/log/app").info("start processing file", path="a.log")
        assert events == [
            {
                "event": "start processing file",
                "path": "a.log",
                "source": "/var/log/app",
                "log_level": "info",
            }
        ]

    def test_path_location_stringified(self, tmp_path):
        _configure()
        with structlog.testing.capture_logs() as events:
            source_logger(__name__, tmp_path).warning("cannot list log directory")
        assert events[0]["source"] == str(tmp_path)
