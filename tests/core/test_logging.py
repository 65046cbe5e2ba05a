from __future__ import annotations

import json
import logging
import sys

from progress_service.core.logging import (
    _ContainerFormatter,
    _JsonFormatter,
    setup_logging,
)


def _record(level: int = logging.INFO, msg: str = "hello") -> logging.LogRecord:
    return logging.LogRecord(
        name="test",
        level=level,
        pathname="test.py",
        lineno=42,
        msg=msg,
        args=(),
        exc_info=None,
    )


def test_setup_logging_sets_root_level() -> None:
    setup_logging("debug")
    assert logging.getLogger().level == logging.DEBUG

    setup_logging("warning")
    assert logging.getLogger().level == logging.WARNING


def test_setup_logging_defaults_to_info_for_unknown_level() -> None:
    setup_logging("nonexistent")
    assert logging.getLogger().level == logging.INFO


def test_setup_logging_quiets_sqlalchemy_at_debug() -> None:
    setup_logging("debug")
    assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING
    assert logging.getLogger("uvicorn").level == logging.WARNING


def test_setup_logging_json_installs_json_formatter() -> None:
    setup_logging("info", json_format=True)
    handlers = logging.getLogger().handlers
    assert len(handlers) == 1
    assert isinstance(handlers[0].formatter, _JsonFormatter)
    setup_logging("info")


def test_container_formatter_location_only_for_warning() -> None:
    fmt = _ContainerFormatter()
    assert "[test.py:42]" not in fmt.format(_record(logging.INFO))
    assert "[test.py:42]" in fmt.format(_record(logging.WARNING, "bad"))


def test_json_formatter_lifts_progress_fields() -> None:
    record = _record(msg="Progress advance rejected")
    record.student_id = "student-1"  # type: ignore[attr-defined]
    record.course_id = "course-1"  # type: ignore[attr-defined]
    record.task_id = "task-9"  # type: ignore[attr-defined]
    record.error_code = "incomplete_dependency"  # type: ignore[attr-defined]

    parsed = json.loads(_JsonFormatter().format(record))
    assert parsed["message"] == "Progress advance rejected"
    assert parsed["student_id"] == "student-1"
    assert parsed["course_id"] == "course-1"
    assert parsed["task_id"] == "task-9"
    assert parsed["error_code"] == "incomplete_dependency"


def test_json_formatter_omits_unset_fields() -> None:
    parsed = json.loads(_JsonFormatter().format(_record()))
    assert "student_id" not in parsed
    assert "exception" not in parsed


def test_json_formatter_includes_exception_info() -> None:
    try:
        raise ValueError("boom")
    except ValueError:
        record = _record(logging.ERROR, "failed")
        record.exc_info = sys.exc_info()

    parsed = json.loads(_JsonFormatter().format(record))
    assert "ValueError: boom" in parsed["exception"]
