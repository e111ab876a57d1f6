"""Subprocess helpers shared by the local runner and the docker CLI client."""

from __future__ import annotations

import logging
import os
import signal
import subprocess
from threading import Thread
from typing import IO, Callable, Mapping, Optional, Sequence

from .container.interface import LogSink
from .errors import TaskTimeout

logger = logging.getLogger(__name__)


def _pump(pipe: IO[bytes], write: Callable[[bytes], None]) -> None:
    try:
        for chunk in iter(pipe.readline, b""):
            write(chunk)
    except (OSError, ValueError) as exc:
        # Pipe closed underneath us after the process was killed.
        logger.debug("Output pump stopped: %s", exc)
    finally:
        pipe.close()


def kill_process_tree(proc: subprocess.Popen) -> None:
    """Kill ``proc`` and every process in its session."""
    if proc.poll() is not None:
        return
    try:
        if os.name == "posix":
            os.killpg(os.getpgid(proc.pid), signal.SIGKILL)
        else:
            proc.kill()
    except (ProcessLookupError, PermissionError) as exc:
        logger.debug("Process %s already gone: %s", proc.pid, exc)
    proc.wait()


def run_streaming(
    argv: Sequence[str],
    sink: LogSink,
    *,
    cwd: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
    timeout: Optional[float] = None,
    inherit_stdin: bool = False,
) -> int:
    """Run ``argv`` and stream its stdout/stderr to ``sink`` line by line.

    The two streams are drained on separate threads, so the sink sees
    lines in arrival order within each stream. With ``inherit_stdin`` the
    process reads the caller's stdin, otherwise stdin is /dev/null.

    Raises:
        OSError: If the process cannot be started
        TaskTimeout: If ``timeout`` elapses; the whole process tree is killed
    """
    proc = subprocess.Popen(
        list(argv),
        cwd=cwd,
        env=dict(env) if env is not None else None,
        stdin=None if inherit_stdin else subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        start_new_session=(os.name == "posix"),
    )
    readers = [
        Thread(target=_pump, args=(proc.stdout, sink.write_stdout), name=f"stdout-{proc.pid}", daemon=True),
        Thread(target=_pump, args=(proc.stderr, sink.write_stderr), name=f"stderr-{proc.pid}", daemon=True),
    ]
    for reader in readers:
        reader.start()

    try:
        exit_code = proc.wait(timeout=timeout)
    except subprocess.TimeoutExpired:
        kill_process_tree(proc)
        for reader in readers:
            reader.join(timeout=5)
        raise TaskTimeout(f"command timed out after {timeout}s: {argv[0]}")

    for reader in readers:
        reader.join()
    return exit_code


def run_interactive(
    argv: Sequence[str],
    *,
    cwd: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
    timeout: Optional[float] = None,
) -> int:
    """Run ``argv`` with the caller's stdin/stdout/stderr inherited.

    Raises:
        OSError: If the process cannot be started
        TaskTimeout: If ``timeout`` elapses; the whole process tree is killed
    """
    proc = subprocess.Popen(
        list(argv),
        cwd=cwd,
        env=dict(env) if env is not None else None,
        start_new_session=(os.name == "posix" and timeout is not None),
    )
    try:
        return proc.wait(timeout=timeout)
    except subprocess.TimeoutExpired:
        kill_process_tree(proc)
        raise TaskTimeout(f"command timed out after {timeout}s: {argv[0]}")
