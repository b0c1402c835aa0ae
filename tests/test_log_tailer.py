"""Tests for the polling log tailer."""

from __future__ import annotations

import threading
from pathlib import Path
from unittest.mock import patch

from fuxi.log_tailer import LogTailer, TailState, normalize_newlines, tail_log_file

# Long enough that the background thread never fires during a test; passes
# are driven explicitly with poll_once().
IDLE_INTERVAL = 60.0


def _append(path: Path, data: str) -> None:
    with open(path, "ab") as f:
        f.write(data.encode("utf-8"))


class TestLogTailer:
    """Tests for LogTailer."""

    def test_reads_existing_content_on_start(self, tmp_path: Path) -> None:
        """Test the first pass runs immediately and emits complete lines."""
        log_file = tmp_path / "agent.log"
        log_file.write_text("first\nsecond\npartial", encoding="utf-8")
        lines: list[str] = []

        tailer = tail_log_file(log_file, lines.append, poll_interval=IDLE_INTERVAL)
        try:
            assert lines == ["first", "second"]
            assert tailer.buffer == "partial"
        finally:
            tailer.stop()

        assert lines == ["first", "second", "partial"]

    def test_start_from_end_skips_existing(self, tmp_path: Path) -> None:
        """Test pre-existing content is ignored with start_from_end."""
        log_file = tmp_path / "agent.log"
        log_file.write_text("old line\n", encoding="utf-8")
        lines: list[str] = []

        tailer = tail_log_file(log_file, lines.append, start_from_end=True, poll_interval=IDLE_INTERVAL)
        _append(log_file, "new line\n")
        tailer.poll_once()
        tailer.stop()

        assert lines == ["new line"]

    def test_start_from_end_missing_file(self, tmp_path: Path) -> None:
        """Test a missing file starts at offset zero and is read once created."""
        log_file = tmp_path / "later.log"
        lines: list[str] = []
        errors: list[str] = []

        tailer = tail_log_file(
            log_file,
            lines.append,
            start_from_end=True,
            poll_interval=IDLE_INTERVAL,
            on_error=errors.append,
        )
        assert tailer.offset == 0
        tailer.poll_once()

        log_file.write_text("hello\n", encoding="utf-8")
        tailer.poll_once()
        tailer.stop()

        assert lines == ["hello"]
        assert errors == []

    def test_partial_line_completed_later(self, tmp_path: Path) -> None:
        """Test a fragment is joined with the next read."""
        log_file = tmp_path / "agent.log"
        log_file.write_text("hel", encoding="utf-8")
        lines: list[str] = []

        tailer = tail_log_file(log_file, lines.append, poll_interval=IDLE_INTERVAL)
        _append(log_file, "lo\nwor")
        tailer.poll_once()
        _append(log_file, "ld\n")
        tailer.poll_once()
        tailer.stop()

        assert lines == ["hello", "world"]

    def test_truncation_discards_partial(self, tmp_path: Path) -> None:
        """Test truncation resets the cursor and drops the buffered fragment."""
        log_file = tmp_path / "agent.log"
        log_file.write_text("a\nb\npartial", encoding="utf-8")
        lines: list[str] = []

        tailer = tail_log_file(log_file, lines.append, poll_interval=IDLE_INTERVAL)
        log_file.write_text("x\n", encoding="utf-8")
        tailer.poll_once()
        assert tailer.offset == 2
        assert tailer.buffer == ""

        _append(log_file, "y\n")
        tailer.poll_once()
        tailer.stop()

        assert lines == ["a", "b", "y"]

    def test_line_endings_normalized(self, tmp_path: Path) -> None:
        """Test CRLF and bare CR both end a line."""
        log_file = tmp_path / "agent.log"
        log_file.write_bytes(b"one\r\ntwo\rthree\n")
        lines: list[str] = []

        tailer = tail_log_file(log_file, lines.append, poll_interval=IDLE_INTERVAL)
        tailer.stop()

        assert lines == ["one", "two", "three"]

    def test_crlf_split_across_reads(self, tmp_path: Path) -> None:
        """Test a CRLF split between passes yields a single line break."""
        log_file = tmp_path / "agent.log"
        log_file.write_bytes(b"one\r")
        lines: list[str] = []

        tailer = tail_log_file(log_file, lines.append, poll_interval=IDLE_INTERVAL)
        assert lines == []
        _append(log_file, "\ntwo\r\n")
        tailer.poll_once()
        tailer.stop()

        assert lines == ["one", "two"]

    def test_multibyte_split_across_reads(self, tmp_path: Path) -> None:
        """Test a UTF-8 character split between passes decodes intact."""
        log_file = tmp_path / "agent.log"
        encoded = "完成 ✅\n".encode("utf-8")
        log_file.write_bytes(encoded[:2])
        lines: list[str] = []

        tailer = tail_log_file(log_file, lines.append, poll_interval=IDLE_INTERVAL)
        with open(log_file, "ab") as f:
            f.write(encoded[2:])
        tailer.poll_once()
        tailer.stop()

        assert lines == ["完成 ✅"]

    def test_read_errors_reported_and_polling_continues(self, tmp_path: Path) -> None:
        """Test non-missing-file errors go to on_error without stopping."""
        log_file = tmp_path / "agent.log"
        log_file.write_text("", encoding="utf-8")
        lines: list[str] = []
        errors: list[str] = []
        tailer = tail_log_file(log_file, lines.append, poll_interval=IDLE_INTERVAL, on_error=errors.append)

        with patch.object(tailer, "_read_new", side_effect=PermissionError("denied")):
            tailer.poll_once()
        assert errors == ["denied"]
        assert tailer.state is TailState.POLLING

        _append(log_file, "after\n")
        tailer.poll_once()
        tailer.stop()

        assert lines == ["after"]

    def test_stop_is_idempotent(self, tmp_path: Path) -> None:
        """Test a second stop does nothing and no polling happens after stop."""
        log_file = tmp_path / "agent.log"
        log_file.write_text("tail", encoding="utf-8")
        lines: list[str] = []

        tailer = tail_log_file(log_file, lines.append, poll_interval=IDLE_INTERVAL)
        tailer.stop()
        tailer.stop()
        _append(log_file, "\nmore\n")
        tailer.poll_once()

        assert lines == ["tail"]
        assert tailer.state is TailState.STOPPED

    def test_stop_without_buffer_emits_nothing(self, tmp_path: Path) -> None:
        """Test stop does not emit an empty final line."""
        log_file = tmp_path / "agent.log"
        log_file.write_text("done\n", encoding="utf-8")
        lines: list[str] = []

        tailer = tail_log_file(log_file, lines.append, poll_interval=IDLE_INTERVAL)
        tailer.stop()

        assert lines == ["done"]

    def test_stop_from_callback(self, tmp_path: Path) -> None:
        """Test stopping inside a callback finishes the pass, then flushes."""
        log_file = tmp_path / "agent.log"
        log_file.write_text("first\nsecond\nrest", encoding="utf-8")
        lines: list[str] = []
        tailer = LogTailer(log_file, lambda line: None, poll_interval=IDLE_INTERVAL)

        def on_line(line: str) -> None:
            lines.append(line)
            if line == "first":
                tailer.stop()

        tailer.on_line = on_line
        tailer.start()

        assert lines == ["first", "second", "rest"]
        assert tailer.stopped

    def test_overlapping_pass_is_skipped(self, tmp_path: Path) -> None:
        """Test a pass that starts while another holds the pass lock reads nothing."""
        log_file = tmp_path / "agent.log"
        log_file.write_text("one\ntwo\n", encoding="utf-8")
        lines: list[str] = []
        tailer = LogTailer(log_file, lines.append, poll_interval=IDLE_INTERVAL)

        with tailer._pass_lock:
            tailer.poll_once()

        assert lines == []
        assert tailer.offset == 0

        tailer.poll_once()

        assert lines == ["one", "two"]
        assert tailer.offset == len(b"one\ntwo\n")

    def test_background_polling(self, tmp_path: Path) -> None:
        """Test lines appended later arrive through the timer thread."""
        log_file = tmp_path / "agent.log"
        log_file.write_text("", encoding="utf-8")
        received = threading.Event()
        lines: list[str] = []

        def on_line(line: str) -> None:
            lines.append(line)
            received.set()

        with LogTailer(log_file, on_line, poll_interval=0.01):
            _append(log_file, "from thread\n")
            assert received.wait(5)

        assert lines == ["from thread"]


def test_normalize_newlines() -> None:
    """Test CRLF and CR become LF."""
    assert normalize_newlines("a\r\nb\rc\n") == "a\nb\nc\n"
