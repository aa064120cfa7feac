"""Tests for the log file sink."""

import logging
import os
import re
from datetime import date, datetime
from pathlib import Path
from unittest.mock import patch

import pytest

from taskdaemon.errors import LogSinkError
from taskdaemon.logsink import ERROR, INFO, LogSink, LogSinkHandler

LINE_RE = re.compile(r"^\[\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}\] (\S+) (\d+) (.*)$")


def _record(level: int, msg: str) -> logging.LogRecord:
    return logging.LogRecord("test", level, __file__, 1, msg, None, None)


def test_target_path_names(log_dir: Path):
    """Files are named daemon-<severity>-<YYYY-MM-DD>.log."""
    sink = LogSink(log_dir, max_size=1024)
    day = date(2026, 3, 7)
    assert sink.target_path(INFO, day) == log_dir / "daemon-info-2026-03-07.log"
    assert sink.target_path(ERROR, day) == log_dir / "daemon-error-2026-03-07.log"


def test_target_path_unknown_severity(log_dir: Path):
    with pytest.raises(ValueError, match="debug"):
        LogSink(log_dir, max_size=1024).target_path("debug")


def test_format_line(log_dir: Path):
    """Each line carries timestamp, component and the writing pid."""
    sink = LogSink(log_dir, max_size=1024, component="Mailer")
    line = sink.format_line("sent", datetime(2026, 1, 2, 3, 4, 5))
    assert line == f"[2026-01-02 03:04:05] Mailer {os.getpid()} sent\n"


def test_write_appends_lines(log_dir: Path):
    sink = LogSink(log_dir, max_size=1024 * 1024, component="Mailer")
    target = sink.write("first", INFO)
    sink.write("second", INFO)

    lines = target.read_text().splitlines()
    assert len(lines) == 2
    match = LINE_RE.match(lines[1])
    assert match is not None
    assert match.groups() == ("Mailer", str(os.getpid()), "second")


def test_write_defaults_to_error(log_dir: Path):
    """Severity defaults to error."""
    target = LogSink(log_dir, max_size=1024).write("boom")
    assert target.name.startswith("daemon-error-")


def test_write_keeps_multiline_messages(log_dir: Path):
    """A traceback stays in one write, continuation lines included."""
    target = LogSink(log_dir, max_size=1024).write("failed\nTraceback: here", ERROR)
    assert target.read_text().endswith("failed\nTraceback: here\n")


def test_write_rotates_full_file(log_dir: Path):
    """A file at the size limit is moved aside before the next write."""
    sink = LogSink(log_dir, max_size=10)
    target = sink.target_path(INFO)
    target.write_text("x" * 10)

    with patch("taskdaemon.logsink.time.time", return_value=1700000000):
        written = sink.write("fresh", INFO)

    assert written == target
    rotated = target.with_name(f"{target.stem}_1700000000.log")
    assert rotated.read_text() == "x" * 10
    assert target.read_text().endswith(" fresh\n")


def test_write_below_limit_does_not_rotate(log_dir: Path):
    sink = LogSink(log_dir, max_size=1024)
    sink.write("one", INFO)
    sink.write("two", INFO)
    assert len(list(log_dir.iterdir())) == 1


def test_rotate_bumps_suffix_when_taken(log_dir: Path):
    """An existing rotated name pushes the suffix forward by a second."""
    sink = LogSink(log_dir, max_size=10)
    target = log_dir / "daemon-info-2026-01-01.log"
    target.write_text("current")
    (log_dir / "daemon-info-2026-01-01_1700000000.log").write_text("older")

    with patch("taskdaemon.logsink.time.time", return_value=1700000000):
        rotated = sink.rotate(target)

    assert rotated == log_dir / "daemon-info-2026-01-01_1700000001.log"
    assert rotated.read_text() == "current"
    assert not target.exists()


def test_rotate_twice_in_one_second_keeps_both_files(log_dir: Path):
    """A second rotation within the same second never replaces the first rotated file."""
    sink_a = LogSink(log_dir, max_size=10, component="a")
    sink_b = LogSink(log_dir, max_size=10, component="b")
    target = log_dir / "daemon-info-2026-01-01.log"
    target.write_text("OLD-FULL-LOG-CONTENT")

    with patch("taskdaemon.logsink.time.time", return_value=1700000000):
        first = sink_a.rotate(target)
        target.write_text("line-from-a\n")
        second = sink_b.rotate(target)

    assert first == log_dir / "daemon-info-2026-01-01_1700000000.log"
    assert second == log_dir / "daemon-info-2026-01-01_1700000001.log"
    assert first.read_text() == "OLD-FULL-LOG-CONTENT"
    assert second.read_text() == "line-from-a\n"
    assert not target.exists()


def test_rotate_link_failure(log_dir: Path):
    target = log_dir / "daemon-info-2026-01-01.log"
    target.write_text("full")
    with patch("taskdaemon.logsink.os.link", side_effect=PermissionError("EPERM")):
        with pytest.raises(LogSinkError, match="Cannot rotate"):
            LogSink(log_dir, max_size=10).rotate(target)


def test_rotate_lost_race(log_dir: Path):
    """If another process already rotated the file, rotate() returns None."""
    sink = LogSink(log_dir, max_size=10)
    assert sink.rotate(log_dir / "daemon-info-2026-01-01.log") is None


def test_write_missing_directory(tmp_path: Path):
    sink = LogSink(tmp_path / "nope", max_size=1024)
    with pytest.raises(LogSinkError):
        sink.write("lost", INFO)


def test_check_directory_not_writable(log_dir: Path):
    with patch("taskdaemon.logsink.os.access", return_value=False):
        with pytest.raises(LogSinkError, match="not writable"):
            LogSink(log_dir, max_size=1024).check_directory()


def test_handler_routes_by_level(log_dir: Path):
    """WARNING and above go to the error file, the rest to the info file."""
    handler = LogSinkHandler(LogSink(log_dir, max_size=1024 * 1024))
    handler.emit(_record(logging.INFO, "routine"))
    handler.emit(_record(logging.WARNING, "odd"))
    handler.emit(_record(logging.ERROR, "broken"))

    info_text = "".join(p.read_text() for p in log_dir.glob("daemon-info-*.log"))
    error_text = "".join(p.read_text() for p in log_dir.glob("daemon-error-*.log"))
    assert "routine" in info_text
    assert "odd" not in info_text
    assert "odd" in error_text
    assert "broken" in error_text


def test_handler_exits_when_sink_fails(tmp_path: Path):
    """An unwritable sink reports on the console and ends the process."""
    handler = LogSinkHandler(LogSink(tmp_path / "gone", max_size=1024))
    with patch("taskdaemon.logging.log_unwritable") as mock_unwritable:
        with pytest.raises(SystemExit) as exc_info:
            handler.emit(_record(logging.ERROR, "lost"))

    assert exc_info.value.code == 1
    mock_unwritable.assert_called_once()
    assert "gone" in mock_unwritable.call_args.args[0]
