"""Polling tail reader for log files.

A :class:`LogTailer` follows a growing file and hands every complete line to
a callback. It polls on a fixed interval from a background thread, survives
truncation and rotation, and tolerates the file not existing yet.
"""

from __future__ import annotations

import codecs
import enum
import logging
import threading
from pathlib import Path
from typing import Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 0.2  # seconds

LineCallback = Callable[[str], None]
ErrorCallback = Callable[[str], None]


class TailState(enum.Enum):
    """Lifecycle of a tailer."""

    IDLE = "idle"
    POLLING = "polling"
    STOPPED = "stopped"


def normalize_newlines(text: str) -> str:
    """Convert CRLF and bare CR line endings to LF."""
    return text.replace("\r\n", "\n").replace("\r", "\n")


class LogTailer:
    """Incrementally read lines appended to a file.

    The cursor (byte offset plus the unterminated tail of the last read) is
    private to the instance. If the file shrinks below the offset the cursor
    jumps to the new end and the partial line is dropped, so text from
    before a truncation is never emitted as a line.

    A bare ``\\r`` at the very end of a read is held until the next pass or
    :meth:`stop`, since it may be the first half of a CRLF. A CR-terminated
    line, such as a progress update, is therefore delivered only once more
    data arrives or the tailer stops.
    """

    def __init__(
        self,
        file_path: Path | str,
        on_line: LineCallback,
        *,
        start_from_end: bool = False,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        on_error: Optional[ErrorCallback] = None,
    ):
        """Initialize the tailer. Call :meth:`start` to begin polling.

        Args:
            file_path: File to follow.
            on_line: Called once per complete line, without the line break.
            start_from_end: Skip content that exists when polling starts.
            poll_interval: Seconds between poll passes.
            on_error: Called with a message for read errors other than the
                file being absent. Polling continues after an error.
        """
        self.file_path = Path(file_path)
        self.on_line = on_line
        self.on_error = on_error
        self.start_from_end = start_from_end
        self.poll_interval = poll_interval

        self.offset = 0
        self.buffer = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

        self._state = TailState.IDLE
        self._state_lock = threading.Lock()
        self._pass_lock = threading.Lock()
        self._pass_thread: Optional[int] = None
        self._flush_after_pass = False
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def state(self) -> TailState:
        return self._state

    @property
    def stopped(self) -> bool:
        return self._state is TailState.STOPPED

    def start(self) -> LogTailer:
        """Position the cursor, read once, then poll in the background."""
        with self._state_lock:
            if self._state is not TailState.IDLE:
                return self
            self._state = TailState.POLLING

        if self.start_from_end:
            try:
                self.offset = self.file_path.stat().st_size
            except OSError:
                self.offset = 0

        self.poll_once()
        if self.stopped:
            return self

        self._thread = threading.Thread(
            target=self._run,
            name=f"log-tailer:{self.file_path.name}",
            daemon=True,
        )
        self._thread.start()
        logger.debug(f"Tailing {self.file_path} from offset {self.offset}")
        return self

    def _run(self) -> None:
        while not self._stop_event.wait(self.poll_interval):
            self.poll_once()

    def poll_once(self) -> None:
        """Run one read pass. Skipped if another pass is still running."""
        if self.stopped:
            return
        if not self._pass_lock.acquire(blocking=False):
            return
        self._pass_thread = threading.get_ident()
        try:
            if self.stopped:
                return
            self._read_new()
        except FileNotFoundError:
            pass
        except Exception as exc:
            self._report(exc)
        finally:
            if self._flush_after_pass:
                self._flush_after_pass = False
                self._flush()
            self._pass_thread = None
            self._pass_lock.release()

    def _read_new(self) -> None:
        size = self.file_path.stat().st_size
        if size < self.offset:
            logger.debug(f"{self.file_path} truncated from {self.offset} to {size} bytes")
            self.offset = size
            self.buffer = ""
            self._decoder.reset()
        if size <= self.offset:
            return

        with open(self.file_path, "rb") as f:
            f.seek(self.offset)
            payload = f.read(size - self.offset)
        self.offset += len(payload)
        if payload:
            self._emit_chunk(self._decoder.decode(payload))

    def _emit_chunk(self, chunk: str) -> None:
        text = self.buffer + chunk
        # A trailing CR may be the first half of a CRLF split across reads.
        held = ""
        if text.endswith("\r"):
            held = "\r"
            text = text[:-1]
        parts = normalize_newlines(text).split("\n")
        self.buffer = parts.pop() + held
        for line in parts:
            self.on_line(line)

    def _flush(self) -> None:
        remaining = self.buffer + self._decoder.decode(b"", final=True)
        self.buffer = ""
        if remaining.endswith("\r"):
            remaining = remaining[:-1]
        elif not remaining:
            return
        for line in normalize_newlines(remaining).split("\n"):
            self.on_line(line)

    def _report(self, exc: Exception) -> None:
        message = str(exc) or exc.__class__.__name__
        if self.on_error is not None:
            self.on_error(message)
        else:
            logger.debug(f"Error tailing {self.file_path}: {message}")

    def stop(self) -> None:
        """Stop polling and emit any unterminated trailing text as a line.

        Idempotent. When this returns no further polling happens.
        """
        with self._state_lock:
            if self._state is TailState.STOPPED:
                return
            self._state = TailState.STOPPED
        self._stop_event.set()

        current = threading.current_thread()
        if self._thread is not None and self._thread is not current:
            self._thread.join()

        if self._pass_thread == threading.get_ident():
            # Called from a line callback; the running pass flushes once its
            # remaining lines are out.
            self._flush_after_pass = True
            return
        with self._pass_lock:
            self._flush()

    def __enter__(self) -> LogTailer:
        return self.start()

    def __exit__(self, *exc_info) -> None:
        self.stop()


def tail_log_file(
    file_path: Path | str,
    on_line: LineCallback,
    *,
    start_from_end: bool = False,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
    on_error: Optional[ErrorCallback] = None,
) -> LogTailer:
    """Start tailing ``file_path`` and return the running tailer.

    Call ``stop()`` on the result to end polling.
    """
    tailer = LogTailer(
        file_path,
        on_line,
        start_from_end=start_from_end,
        poll_interval=poll_interval,
        on_error=on_error,
    )
    return tailer.start()
