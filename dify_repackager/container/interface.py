from __future__ import annotations

import threading
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Protocol, Sequence


@dataclass(frozen=True)
class ContainerSummary:
    """One row of a container listing.

    - container_id: daemon-assigned id (short form is fine)
    - name: container name
    - image: image reference the container was created from
    - state: daemon-reported state, e.g. "running" or "exited"
    """

    container_id: str
    name: str
    image: str
    state: str = "running"

    @property
    def running(self) -> bool:
        return self.state.lower() == "running"


@dataclass(frozen=True)
class ImageSummary:
    """One row of an image listing."""

    repository: str
    tag: str = "latest"

    @property
    def reference(self) -> str:
        return f"{self.repository}:{self.tag}"


class LogSink(Protocol):
    """Destination for stdout/stderr streams of a running command."""

    def write_stdout(self, data: bytes) -> None:  # pragma: no cover - protocol
        ...

    def write_stderr(self, data: bytes) -> None:  # pragma: no cover - protocol
        ...


class ContainerDaemon(Protocol):
    """Client for the daemon managing the plugin-daemon containers.

    Implementations translate runtime failures into ``ContainerError`` so
    callers never see engine-specific exceptions.
    """

    def info(self) -> bool:  # pragma: no cover - protocol
        """Return True when the daemon answers."""
        ...

    def ps(self, all: bool = False) -> List[ContainerSummary]:  # pragma: no cover - protocol
        """List containers in daemon order; stopped ones only when ``all``."""
        ...

    def images(self) -> List[ImageSummary]:  # pragma: no cover - protocol
        """List local images in daemon order."""
        ...

    def copy_to(self, container_id: str, src_path: Path, dest_path: str) -> None:  # pragma: no cover - protocol
        """Copy a host file into the container.

        ``dest_path`` ending in "/" (or naming an existing directory) keeps
        the source basename; otherwise it is the full destination filename.

        Raises:
            ContainerError: If copy fails
        """
        ...

    def copy_from(self, container_id: str, src_path: str, dest_dir: Path) -> Path:  # pragma: no cover - protocol
        """Copy a container file into ``dest_dir`` keeping its name.

        Returns:
            Host path of the copied file

        Raises:
            ContainerError: If copy fails
        """
        ...

    def exec(
        self,
        container_id: str,
        command: Sequence[str],
        sink: LogSink,
    ) -> int:  # pragma: no cover - protocol
        """Execute command in a running container, streaming output to ``sink``.

        Returns:
            Exit code from command execution

        Raises:
            ContainerError: If the command could not be started
        """
        ...

    def exec_output(self, container_id: str, command: Sequence[str]) -> str:  # pragma: no cover - protocol
        """Execute command and return its stdout.

        Raises:
            ContainerError: If the command fails or exits non-zero
        """
        ...


class ContainerError(RuntimeError):
    """Raised for container runtime failures that should fail the task."""

    def __init__(self, message: str, *, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.__cause__ = cause


class InMemoryLogSink:
    """Simple bytes-accumulating sink useful for tests and bootstrap wiring."""

    def __init__(self) -> None:
        self._stdout: bytearray = bytearray()
        self._stderr: bytearray = bytearray()
        self._lock = threading.Lock()

    def write_stdout(self, data: bytes) -> None:
        with self._lock:
            self._stdout.extend(data)

    def write_stderr(self, data: bytes) -> None:
        with self._lock:
            self._stderr.extend(data)

    @property
    def stdout(self) -> bytes:
        return bytes(self._stdout)

    @property
    def stderr(self) -> bytes:
        return bytes(self._stderr)
