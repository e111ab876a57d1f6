"""Unit tests for output sinks and subprocess streaming."""

from __future__ import annotations

import logging
import os
import time

import pytest

from dify_repackager.container.interface import InMemoryLogSink
from dify_repackager.errors import TaskTimeout
from dify_repackager.process import run_streaming
from dify_repackager.sinks import CombinedOutputSink, FileLogSink, TeeLogSink

posix_only = pytest.mark.skipif(os.name != "posix", reason="requires /bin/sh")


class TestCombinedOutputSink:
    """Test CombinedOutputSink line handling."""

    def test_partial_lines_are_buffered_per_stream(self):
        seen = []
        sink = CombinedOutputSink(on_line=lambda stream, line: seen.append((stream, line)))

        sink.write_stdout(b"Downloading ")
        sink.write_stderr(b"warning: slow mirror\n")
        sink.write_stdout(b"plugin...\r\nDone")
        sink.flush()

        assert seen == [
            ("stderr", "warning: slow mirror"),
            ("stdout", "Downloading plugin..."),
            ("stdout", "Done"),
        ]
        assert sink.text == "warning: slow mirror\nDownloading plugin...\nDone\n"

    def test_callback_failure_does_not_stop_output(self):
        def explode(stream, line):
            raise RuntimeError("ui closed")

        sink = CombinedOutputSink(on_line=explode)
        sink.write_stdout(b"one\ntwo\n")

        assert sink.lines == ["one", "two"]

    def test_multibyte_character_split_across_chunks(self):
        encoded = "café ü\n".encode("utf-8")
        split = encoded.index("é".encode("utf-8")) + 1
        sink = CombinedOutputSink()

        sink.write_stderr(encoded[:split])
        sink.write_stderr(encoded[split:])

        assert sink.lines == ["café ü"]

    def test_truncated_character_replaced_on_flush(self):
        sink = CombinedOutputSink()
        sink.write_stdout(b"tail \xc3")
        sink.flush()

        assert sink.lines == ["tail \ufffd"]

    def test_empty_sink(self):
        assert CombinedOutputSink().text == ""


class TestFileLogSink:
    """Test FileLogSink persistence."""

    def test_writes_file_and_logger(self, tmp_path, caplog):
        log_path = tmp_path / "logs" / "repackage.log"

        with caplog.at_level(logging.INFO, logger="test.file"):
            with FileLogSink(logging.getLogger("test.file"), log_path) as sink:
                sink.write_stdout(b"step 1\n")
                sink.write_stderr(b"step 2 failed\n")

        assert log_path.read_bytes() == b"step 1\nstep 2 failed\n"
        assert "step 1" in caplog.text
        assert "step 2 failed" in caplog.text

    def test_unwritable_path_falls_back_to_logger(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("")
        sink = FileLogSink(logging.getLogger("test.file"), blocker / "sub" / "x.log")

        sink.write_stdout(b"still logged\n")
        sink.close()


class TestTeeLogSink:
    def test_fans_out(self):
        first, second = InMemoryLogSink(), InMemoryLogSink()
        tee = TeeLogSink(first, None, second)

        tee.write_stdout(b"a")
        tee.write_stderr(b"b")

        assert first.stdout == second.stdout == b"a"
        assert first.stderr == second.stderr == b"b"


@posix_only
class TestRunStreaming:
    """Test run_streaming() against real processes."""

    def test_streams_both_outputs(self, tmp_path):
        sink = CombinedOutputSink()

        exit_code = run_streaming(
            ["/bin/sh", "-c", "echo out; echo err >&2; pwd -P; exit 3"], sink, cwd=str(tmp_path)
        )
        sink.flush()

        assert exit_code == 3
        assert "out" in sink.lines
        assert "err" in sink.lines
        assert str(tmp_path.resolve()) in sink.lines

    def test_timeout_kills_process_group(self):
        started = time.monotonic()

        with pytest.raises(TaskTimeout, match="timed out"):
            run_streaming(["/bin/sh", "-c", "sleep 30 & sleep 30"], InMemoryLogSink(), timeout=0.5)

        assert time.monotonic() - started < 10

    def test_missing_executable(self, tmp_path):
        with pytest.raises(OSError):
            run_streaming([str(tmp_path / "absent")], InMemoryLogSink())
