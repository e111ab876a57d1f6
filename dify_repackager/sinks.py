"""LogSink implementations for task output.

- ``CombinedOutputSink`` splits both streams into lines and interleaves them
  into one log by arrival order, forwarding each completed line as it is
  produced.
- ``FileLogSink`` streams output to a logger and persists it to a file.
"""

from __future__ import annotations

import codecs
import logging
import threading
from pathlib import Path
from typing import BinaryIO, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

LineCallback = Callable[[str, str], None]


class CombinedOutputSink:
    """Line-buffered sink merging stdout and stderr in arrival order.

    Partial lines are held per stream until their newline arrives, so a
    line is never split by output from the other stream. ``on_line`` is
    called with ``(stream, line)`` for every completed line.
    """

    def __init__(self, on_line: Optional[LineCallback] = None) -> None:
        self._on_line = on_line
        self._lock = threading.Lock()
        self._pending: Dict[str, str] = {"stdout": "", "stderr": ""}
        # Chunks may end inside a multi-byte character.
        self._decoders = {
            stream: codecs.getincrementaldecoder("utf-8")(errors="replace")
            for stream in ("stdout", "stderr")
        }
        self._lines: List[str] = []

    def write_stdout(self, data: bytes) -> None:
        self._write("stdout", data)

    def write_stderr(self, data: bytes) -> None:
        self._write("stderr", data)

    def _write(self, stream: str, data: bytes) -> None:
        if not data:
            return
        with self._lock:
            text = self._decoders[stream].decode(data)
            buffered = self._pending[stream] + text
            *complete, rest = buffered.split("\n")
            self._pending[stream] = rest
            for line in complete:
                self._emit(stream, line.rstrip("\r"))

    def _emit(self, stream: str, line: str) -> None:
        self._lines.append(line)
        if self._on_line is not None:
            try:
                self._on_line(stream, line)
            except Exception as exc:
                logger.warning("Output callback failed: %s", exc)

    def flush(self) -> None:
        """Emit any trailing partial lines (output without final newline)."""
        with self._lock:
            for stream in ("stdout", "stderr"):
                rest = self._pending[stream] + self._decoders[stream].decode(b"", final=True)
                if rest:
                    self._pending[stream] = ""
                    self._emit(stream, rest.rstrip("\r"))

    @property
    def lines(self) -> List[str]:
        with self._lock:
            return list(self._lines)

    @property
    def text(self) -> str:
        lines = self.lines
        return "\n".join(lines) + ("\n" if lines else "")


class FileLogSink:
    """LogSink that writes to both a logger and a log file.

    Streams task stdout/stderr to a logger instance and simultaneously
    persists all output to a log file for later inspection.
    """

    def __init__(
        self,
        task_logger: logging.Logger,
        log_file_path: Path,
    ) -> None:
        """Initialize FileLogSink with logger and file destination.

        Args:
            task_logger: Logger receiving one record per output line
            log_file_path: Path to log file (e.g., ``<output_dir>/repackage.log``)
        """
        self.task_logger = task_logger
        self.log_file_path = log_file_path
        self._file_handle: Optional[BinaryIO] = None
        self._lock = threading.Lock()

        try:
            self.log_file_path.parent.mkdir(parents=True, exist_ok=True)
            self._file_handle = open(self.log_file_path, "ab")
        except OSError as exc:
            # The logger still receives the output.
            logger.warning(
                "Failed to open log file %s: %s. Continuing with logger-only output.",
                self.log_file_path,
                exc,
            )
            self._file_handle = None

    def write_stdout(self, data: bytes) -> None:
        self._write(data, self.task_logger.info)

    def write_stderr(self, data: bytes) -> None:
        self._write(data, self.task_logger.error)

    def _write(self, data: bytes, log: Callable[[str], None]) -> None:
        if not data:
            return

        text = data.decode("utf-8", errors="replace")
        for line in text.splitlines():
            if line.strip():
                log(line)

        with self._lock:
            if self._file_handle:
                try:
                    self._file_handle.write(data)
                    self._file_handle.flush()
                except OSError as exc:
                    logger.warning(
                        "Error writing to log file %s: %s", self.log_file_path, exc
                    )

    def close(self) -> None:
        """Close log file handle. Should be called when logging is complete."""
        with self._lock:
            if self._file_handle:
                try:
                    self._file_handle.close()
                finally:
                    self._file_handle = None

    def __enter__(self) -> "FileLogSink":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class TeeLogSink:
    """Fan one stream out to several sinks."""

    def __init__(self, *sinks) -> None:
        self._sinks = [s for s in sinks if s is not None]

    def write_stdout(self, data: bytes) -> None:
        for sink in self._sinks:
            sink.write_stdout(data)

    def write_stderr(self, data: bytes) -> None:
        for sink in self._sinks:
            sink.write_stderr(data)
