from __future__ import annotations

import logging
import subprocess
from pathlib import Path, PurePosixPath
from typing import List, Optional, Sequence

from ..process import run_streaming
from .interface import (
    ContainerDaemon,
    ContainerError,
    ContainerSummary,
    ImageSummary,
    LogSink,
)

logger = logging.getLogger(__name__)

_PS_FORMAT = "{{.ID}}\t{{.Names}}\t{{.Image}}\t{{.State}}"
_IMAGES_FORMAT = "{{.Repository}}\t{{.Tag}}"


class DockerCliDaemon(ContainerDaemon):
    """Docker CLI-backed implementation of ContainerDaemon.

    Boundary rules:
    - Only this module shells out to the ``docker`` binary.
    - Upstream callers depend only on the ``ContainerDaemon`` abstraction.
    - Listing failures surface as ``ContainerError``; the locator decides
      whether an empty answer is acceptable.
    """

    def __init__(
        self,
        binary: str = "docker",
        *,
        timeout: Optional[float] = 30.0,
        exec_timeout: Optional[float] = None,
    ) -> None:
        self._binary = str(binary)
        self._timeout = timeout
        self._exec_timeout = exec_timeout

    # --- public interface ---

    def info(self) -> bool:
        try:
            result = self._run(["info"], check=False)
        except ContainerError as exc:
            logger.debug("docker info failed: %s", exc)
            return False
        return result.returncode == 0

    def ps(self, all: bool = False) -> List[ContainerSummary]:
        args = ["ps", "--format", _PS_FORMAT]
        if all:
            args.insert(1, "-a")
        else:
            args[1:1] = ["--filter", "status=running"]
        output = self._run(args).stdout
        containers: List[ContainerSummary] = []
        for line in output.splitlines():
            if not line.strip():
                continue
            parts = line.split("\t")
            if len(parts) < 3:
                logger.debug("Skipping malformed docker ps line: %r", line)
                continue
            state = parts[3] if len(parts) > 3 and parts[3] else ("running" if not all else "unknown")
            containers.append(
                ContainerSummary(
                    container_id=parts[0],
                    name=parts[1],
                    image=parts[2],
                    state=state,
                )
            )
        return containers

    def images(self) -> List[ImageSummary]:
        output = self._run(["images", "--format", _IMAGES_FORMAT]).stdout
        images: List[ImageSummary] = []
        for line in output.splitlines():
            if not line.strip():
                continue
            repository, _, tag = line.partition("\t")
            images.append(ImageSummary(repository=repository, tag=tag or "latest"))
        return images

    def copy_to(self, container_id: str, src_path: Path, dest_path: str) -> None:
        src_path = Path(src_path)
        if not src_path.exists():
            raise ContainerError(f"source path does not exist: {src_path}")
        if not src_path.is_file():
            raise ContainerError(f"source path is not a file: {src_path}")
        try:
            self._run(["cp", str(src_path), f"{container_id}:{dest_path}"])
        except ContainerError as exc:
            raise ContainerError(
                f"failed to copy file to container: {src_path} -> {dest_path}", cause=exc
            )

    def copy_from(self, container_id: str, src_path: str, dest_dir: Path) -> Path:
        dest_dir = Path(dest_dir)
        dest_dir.mkdir(parents=True, exist_ok=True)
        try:
            self._run(["cp", f"{container_id}:{src_path}", str(dest_dir)])
        except ContainerError as exc:
            raise ContainerError(
                f"failed to copy file from container: {src_path} -> {dest_dir}", cause=exc
            )
        return dest_dir / PurePosixPath(src_path).name

    def exec(self, container_id: str, command: Sequence[str], sink: LogSink) -> int:
        argv = [self._binary, "exec", container_id, *command]
        try:
            return run_streaming(argv, sink, timeout=self._exec_timeout)
        except OSError as exc:
            raise ContainerError(
                f"failed to execute command in container: {list(command)}", cause=exc
            )

    def exec_output(self, container_id: str, command: Sequence[str]) -> str:
        result = self._run(["exec", container_id, *command])
        return result.stdout

    # --- private helpers ---

    def _run(self, args: Sequence[str], *, check: bool = True) -> subprocess.CompletedProcess:
        argv = [self._binary, *args]
        try:
            result = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                timeout=self._timeout,
            )
        except subprocess.TimeoutExpired as exc:
            raise ContainerError(f"timeout running: {' '.join(argv)}", cause=exc)
        except OSError as exc:
            raise ContainerError(f"failed to run docker CLI {self._binary}", cause=exc)
        if check and result.returncode != 0:
            detail = (result.stderr or result.stdout or "").strip()
            raise ContainerError(
                f"{' '.join(argv)} exited with {result.returncode}: {detail}"
            )
        return result
