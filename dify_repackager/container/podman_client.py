from __future__ import annotations

import io
import logging
import os
import tarfile
from pathlib import Path, PurePosixPath
from typing import Any, List, Optional, Sequence, Tuple

from podman import PodmanClient
from podman.errors import APIError, NotFound

from .interface import (
    ContainerDaemon,
    ContainerError,
    ContainerSummary,
    ImageSummary,
    LogSink,
)

logger = logging.getLogger(__name__)

# podman-py does not report the exit code of a streamed exec, so the
# command is wrapped to print it on a trailing marker line.
EXIT_MARKER = "__dify_repackager_exit__="


def _split_reference(reference: str) -> Tuple[str, str]:
    """Split ``registry:5000/repo:tag`` into repository and tag."""
    repository, sep, tag = reference.rpartition(":")
    if not sep or "/" in tag:
        return reference, "latest"
    return repository, tag


class _ExitMarkerFilter:
    """Strip the exit marker from stdout while forwarding everything else."""

    def __init__(self, sink: LogSink) -> None:
        self._sink = sink
        self._pending = b""
        self.exit_code: Optional[int] = None
        self._marker = EXIT_MARKER.encode()

    def feed(self, data: bytes) -> None:
        buffered = self._pending + data
        *lines, self._pending = buffered.split(b"\n")
        for line in lines:
            self._forward(line, newline=True)

    def close(self) -> None:
        if self._pending:
            self._forward(self._pending, newline=False)
            self._pending = b""

    def _forward(self, line: bytes, *, newline: bool) -> None:
        idx = line.find(self._marker)
        if idx >= 0:
            prefix, value = line[:idx], line[idx + len(self._marker):]
            try:
                self.exit_code = int(value.strip() or b"1")
            except ValueError:
                self.exit_code = 1
            if prefix:
                self._sink.write_stdout(prefix + b"\n")
            return
        self._sink.write_stdout(line + (b"\n" if newline else b""))


class PodmanDaemon(ContainerDaemon):
    """Podman-backed implementation of ContainerDaemon.

    Boundary rules:
    - Only this module talks to Podman Python APIs.
    - Upstream callers depend only on the ``ContainerDaemon`` abstraction.
    """

    def __init__(self, base_url: Optional[str] = None) -> None:
        self._base_url = base_url
        # Lazy-init Podman client on first use to make tests lighter
        self._client = None  # type: ignore[var-annotated]

    # --- public interface ---

    def info(self) -> bool:
        try:
            self._ensure_client()
            return bool(self._client.ping())
        except (APIError, ContainerError, OSError) as exc:
            logger.debug("podman ping failed: %s", exc)
            return False

    def ps(self, all: bool = False) -> List[ContainerSummary]:
        self._ensure_client()
        try:
            containers = self._client.containers.list(all=all)
        except APIError as exc:
            raise ContainerError("failed to list containers", cause=exc)
        return [self._summarize(c) for c in containers]

    def images(self) -> List[ImageSummary]:
        self._ensure_client()
        try:
            images = self._client.images.list()
        except APIError as exc:
            raise ContainerError("failed to list images", cause=exc)
        summaries: List[ImageSummary] = []
        for image in images:
            for reference in getattr(image, "tags", None) or []:
                repository, tag = _split_reference(reference)
                summaries.append(ImageSummary(repository=repository, tag=tag))
        return summaries

    def copy_to(self, container_id: str, src_path: Path, dest_path: str) -> None:
        """Copy file to container using podman put_archive."""
        container = self._get_container(container_id, "copy")

        src_path = Path(src_path)
        if not src_path.exists():
            raise ContainerError(f"source path does not exist: {src_path}")

        if not src_path.is_file():
            raise ContainerError(f"source path is not a file: {src_path}")

        if dest_path.endswith("/"):
            dest_dir, arcname = dest_path.rstrip("/") or "/", src_path.name
        else:
            dest_dir, arcname = os.path.dirname(dest_path) or "/", os.path.basename(dest_path)

        try:
            tar_stream = io.BytesIO()
            with tarfile.open(fileobj=tar_stream, mode="w") as tar:
                tar.add(src_path, arcname=arcname, recursive=False)
            tar_stream.seek(0)
            ok = container.put_archive(path=dest_dir, data=tar_stream.read())
        except APIError as exc:
            raise ContainerError(f"failed to copy file to container: {src_path} -> {dest_path}", cause=exc)
        except (OSError, tarfile.TarError) as exc:
            raise ContainerError(f"failed to create archive for copy: {src_path}", cause=exc)
        if ok is False:
            raise ContainerError(f"failed to copy file to container: {src_path} -> {dest_path}")

    def copy_from(self, container_id: str, src_path: str, dest_dir: Path) -> Path:
        """Copy file from container using podman get_archive."""
        container = self._get_container(container_id, "copy")
        dest_dir = Path(dest_dir)
        dest_dir.mkdir(parents=True, exist_ok=True)
        name = PurePosixPath(src_path).name
        target = dest_dir / name

        try:
            chunks, _stat = container.get_archive(src_path)
            data = b"".join(chunks)
        except APIError as exc:
            raise ContainerError(f"failed to copy file from container: {src_path}", cause=exc)

        try:
            with tarfile.open(fileobj=io.BytesIO(data), mode="r") as tar:
                member = next(
                    (m for m in tar.getmembers() if m.isfile() and PurePosixPath(m.name).name == name),
                    None,
                )
                if member is None:
                    raise ContainerError(f"archive from container has no file {name}")
                extracted = tar.extractfile(member)
                if extracted is None:
                    raise ContainerError(f"cannot read {name} from container archive")
                target.write_bytes(extracted.read())
        except (OSError, tarfile.TarError) as exc:
            raise ContainerError(f"failed to unpack archive for {src_path}", cause=exc)
        return target

    def exec(self, container_id: str, command: Sequence[str], sink: LogSink) -> int:
        """Execute command in running container via podman exec."""
        container = self._get_container(container_id, "exec")
        wrapped = [
            "/bin/sh",
            "-c",
            f'"$@"; echo "{EXIT_MARKER}$?"',
            "sh",
            *command,
        ]
        stdout = _ExitMarkerFilter(sink)
        try:
            exec_result = container.exec_run(cmd=wrapped, stream=True, demux=True)
            if isinstance(exec_result, tuple) and len(exec_result) == 2:
                _hint, exec_gen = exec_result
            else:
                exec_gen = exec_result

            for chunk in exec_gen:
                if chunk is None:
                    continue
                if isinstance(chunk, tuple):
                    stdout_data = chunk[0] if len(chunk) > 0 else None
                    stderr_data = chunk[1] if len(chunk) > 1 else None
                    if stdout_data:
                        stdout.feed(stdout_data)
                    if stderr_data:
                        sink.write_stderr(stderr_data)
                elif isinstance(chunk, bytes):
                    # When demux doesn't work, treat as stdout
                    stdout.feed(chunk)
        except APIError as exc:
            raise ContainerError(f"failed to execute command in container: {list(command)}", cause=exc)
        stdout.close()

        if stdout.exit_code is None:
            raise ContainerError(f"no exit status reported for command in container: {list(command)}")
        return stdout.exit_code

    def exec_output(self, container_id: str, command: Sequence[str]) -> str:
        container = self._get_container(container_id, "exec")
        try:
            exit_code, output = container.exec_run(cmd=list(command), stream=False, demux=True)
        except APIError as exc:
            raise ContainerError(f"failed to execute command in container: {list(command)}", cause=exc)

        if isinstance(output, tuple):
            stdout_data = output[0] or b""
            stderr_data = (output[1] or b"") if len(output) > 1 else b""
        else:
            stdout_data, stderr_data = output or b"", b""
        if exit_code not in (None, 0):
            detail = stderr_data.decode("utf-8", errors="replace").strip()
            raise ContainerError(f"{list(command)} exited with {exit_code} in container: {detail}")
        return stdout_data.decode("utf-8", errors="replace")

    # --- private helpers ---

    def _ensure_client(self) -> None:
        if self._client is None:
            try:
                if self._base_url:
                    self._client = PodmanClient(base_url=self._base_url)
                else:
                    self._client = PodmanClient()
            except (APIError, ValueError, OSError) as exc:
                raise ContainerError("Podman client not available", cause=exc)

    def _get_container(self, container_id: str, action: str) -> Any:
        self._ensure_client()
        try:
            return self._client.containers.get(container_id)
        except NotFound as exc:
            raise ContainerError(f"container not found: {container_id}", cause=exc)
        except APIError as exc:
            raise ContainerError(f"failed to get container for {action}", cause=exc)

    @staticmethod
    def _summarize(container: Any) -> ContainerSummary:
        attrs = getattr(container, "attrs", None) or {}
        image = attrs.get("Image") or attrs.get("ImageName") or ""
        if not isinstance(image, str):
            image = str(image)
        state = getattr(container, "status", None) or attrs.get("State") or "unknown"
        if isinstance(state, dict):
            state = state.get("Status", "unknown")
        return ContainerSummary(
            container_id=str(container.id),
            name=str(container.name),
            image=image,
            state=str(state),
        )
