"""Tests for pydirenv logging module."""

from __future__ import annotations

import io
import json
import logging
import sys

import pytest

from pydirenv.logging import (
    ROOT_LOGGER_NAME,
    HumanFormatter,
    JSONFormatter,
    StructuredLogger,
    configure_logging,
    get_logger,
)


def _record(level: int = logging.INFO, msg: str = "Test message", **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="test.logger",
        level=level,
        pathname="test.py",
        lineno=10,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


# =============================================================================
# JSONFormatter Tests
# =============================================================================


class TestJSONFormatter:
    """Tests for JSONFormatter."""

    def test_format_basic_message(self) -> None:
        """Test formatting a basic log message."""
        data = json.loads(JSONFormatter().format(_record()))

        assert data["level"] == "INFO"
        assert data["logger"] == "test.logger"
        assert data["message"] == "Test message"
        assert "timestamp" in data
        assert "location" not in data

    def test_format_with_extra(self) -> None:
        """Test formatting includes extra fields."""
        data = json.loads(JSONFormatter().format(_record(path="/p/.envrc", count=3)))
        assert data["path"] == "/p/.envrc"
        assert data["count"] == 3

    def test_unserializable_extra_uses_repr(self) -> None:
        data = json.loads(JSONFormatter().format(_record(obj=object())))
        assert data["obj"].startswith("<object object")

    def test_error_includes_location(self) -> None:
        data = json.loads(JSONFormatter().format(_record(level=logging.ERROR)))
        assert data["location"] == {"file": "test.py", "line": 10, "function": None}

    def test_exception_included(self) -> None:
        try:
            raise ValueError("boom")
        except ValueError:
            record = _record(level=logging.ERROR)
            record.exc_info = sys.exc_info()

        data = json.loads(JSONFormatter().format(record))
        assert "ValueError: boom" in data["exception"]


# =============================================================================
# HumanFormatter Tests
# =============================================================================


class TestHumanFormatter:
    """Tests for HumanFormatter."""

    def test_format(self) -> None:
        line = HumanFormatter().format(_record(path="/p"))
        assert line == "INFO test.logger: Test message path=/p"


# =============================================================================
# StructuredLogger Tests
# =============================================================================


class TestStructuredLogger:
    """Tests for StructuredLogger."""

    def test_context_becomes_extra(self, caplog: pytest.LogCaptureFixture) -> None:
        logger = get_logger("rc")
        with caplog.at_level(logging.INFO, logger=ROOT_LOGGER_NAME):
            logger.info("loaded", path="/p/.envrc")

        record = caplog.records[-1]
        assert record.name == "pydirenv.rc"
        assert record.path == "/p/.envrc"

    def test_reserved_names_are_prefixed(self, caplog: pytest.LogCaptureFixture) -> None:
        """Context keys that clash with LogRecord attributes do not raise."""
        logger = get_logger("rc")
        with caplog.at_level(logging.INFO, logger=ROOT_LOGGER_NAME):
            logger.info("clash", name="x", module="y")

        record = caplog.records[-1]
        assert record.ctx_name == "x"
        assert record.ctx_module == "y"

    def test_disabled_level_is_skipped(self, caplog: pytest.LogCaptureFixture) -> None:
        logger = get_logger("quiet")
        with caplog.at_level(logging.WARNING, logger=ROOT_LOGGER_NAME):
            logger.debug("hidden")
        assert not caplog.records

    def test_child(self) -> None:
        child = get_logger("executor").child("bash")
        assert isinstance(child, StructuredLogger)
        assert child.name == "pydirenv.executor.bash"

    def test_get_logger_namespacing(self) -> None:
        assert get_logger("x").name == "pydirenv.x"
        assert get_logger("pydirenv.y").name == "pydirenv.y"
        assert get_logger(ROOT_LOGGER_NAME).name == ROOT_LOGGER_NAME

    def test_exception_attaches_traceback(self, caplog: pytest.LogCaptureFixture) -> None:
        logger = get_logger("err")
        with caplog.at_level(logging.ERROR, logger=ROOT_LOGGER_NAME):
            try:
                raise RuntimeError("x")
            except RuntimeError:
                logger.exception("failed")

        assert caplog.records[-1].exc_info is not None


# =============================================================================
# configure_logging Tests
# =============================================================================


class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_defaults_to_warning(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("DIRENV_LOG_LEVEL", raising=False)
        monkeypatch.delenv("DIRENV_LOG_FORMAT", raising=False)

        root = configure_logging(stream=io.StringIO())

        assert root.name == ROOT_LOGGER_NAME
        assert root.level == logging.WARNING
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, HumanFormatter)

    def test_json_output(self) -> None:
        stream = io.StringIO()
        configure_logging(level="INFO", format="json", stream=stream)

        get_logger("t").info("hello", key="v")

        data = json.loads(stream.getvalue().strip().splitlines()[-1])
        assert data["message"] == "hello"
        assert data["key"] == "v"

    def test_env_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DIRENV_LOG_LEVEL", "debug")
        monkeypatch.setenv("DIRENV_LOG_FORMAT", "json")

        root = configure_logging(stream=io.StringIO())

        assert root.level == logging.DEBUG
        assert isinstance(root.handlers[0].formatter, JSONFormatter)

    def test_invalid_level_falls_back(self) -> None:
        root = configure_logging(level="LOUD", stream=io.StringIO())
        assert root.level == logging.WARNING

    def test_reconfigure_replaces_handler(self) -> None:
        configure_logging(stream=io.StringIO())
        root = configure_logging(stream=io.StringIO())
        assert len(root.handlers) == 1
