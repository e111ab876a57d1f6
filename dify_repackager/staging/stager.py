"""ArtifactStager: move a task into a daemon container and its result back.

Staging protocol (every step fails the whole task; nothing partially
staged is cleaned up, stale files are tolerated by retrieval):
1. create the container work directory
2. copy the repackaging script
3. query the container's OS/architecture and copy the matching helper
4. chmod the helper
5. for file-input tasks, copy the package under its sanitized name
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import List, Optional, Sequence, Tuple

from ..container.interface import ContainerDaemon, ContainerError, LogSink
from ..errors import RetrievalFailure, StagingFailure, TaskExecutionFailed
from ..tasks import TaskKind, TaskSpec
from .helpers import find_helper_binary, helper_binary_name
from .naming import OutputPattern, output_pattern, sanitize_filename

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StagedArtifact:
    """A file placed in the container for the duration of one task."""

    original_name: str
    sanitized_name: str
    container_path: str


@dataclass(frozen=True)
class OutputArtifact:
    """The single artifact retrieved from the container."""

    match_pattern: str
    resolved_container_path: str
    local_destination: Path


class ArtifactStager:
    """Stage, run and retrieve one task inside a running container.

    Args:
        daemon: Container daemon client
        script_path: Host path of the repackaging script
        sink: Receives the streamed output of every in-container command
        workdir: Work directory inside the container
        helper_dir: Directory searched first for helper binaries
    """

    def __init__(
        self,
        daemon: ContainerDaemon,
        script_path: Path,
        sink: LogSink,
        *,
        workdir: str = "/tmp/repackage",
        helper_dir: Optional[Path] = None,
    ) -> None:
        self.daemon = daemon
        self.script_path = Path(script_path)
        self.sink = sink
        self.workdir = workdir.rstrip("/") or "/"
        self.helper_dir = helper_dir or self.script_path.parent

    def _container_path(self, name: str) -> str:
        return str(PurePosixPath(self.workdir) / name)

    @property
    def entry_point(self) -> str:
        return self._container_path(self.script_path.name)

    # --- staging ---

    def stage(self, container_id: str, task: TaskSpec) -> List[StagedArtifact]:
        """Copy the script, helper binary and task input into the container.

        Raises:
            StagingFailure: If any step fails
            ArchitectureMismatch: If no helper matches the container platform
        """
        staged: List[StagedArtifact] = []

        self._exec_step(container_id, ["mkdir", "-p", self.workdir], f"create directory {self.workdir}")

        staged.append(self._copy(container_id, self.script_path, self.script_path.name))
        self._exec_step(container_id, ["chmod", "+x", self.entry_point], f"set permissions on {self.entry_point}")

        os_name, arch = self.detect_platform(container_id)
        helper_name = helper_binary_name(os_name, arch)
        logger.info("Searching for container plugin file: %s", helper_name)
        helper_path = find_helper_binary(helper_name, self.helper_dir)
        helper = self._copy(container_id, helper_path, helper_name)
        staged.append(helper)
        self._exec_step(
            container_id, ["chmod", "+x", helper.container_path], f"set permissions on {helper_name}"
        )

        if task.kind is TaskKind.LOCAL:
            package = task.package_path
            safe_name = sanitize_filename(package.name)
            logger.info("Copying package file: %s -> %s", package.name, safe_name)
            staged.append(self._copy(container_id, package, safe_name))

        return staged

    def container_arguments(self, task: TaskSpec) -> List[str]:
        """Task arguments rewritten to reference in-container paths."""
        args = task.command_args()
        if task.kind is TaskKind.LOCAL:
            args[1] = self._container_path(sanitize_filename(task.package_path.name))
        return args

    def detect_platform(self, container_id: str) -> Tuple[str, str]:
        """Query the container's OS and architecture (``uname``, ``uname -m``)."""
        logger.info("Detecting container OS and architecture")
        try:
            os_name = self.daemon.exec_output(container_id, ["uname"]).strip().lower()
            arch = self.daemon.exec_output(container_id, ["uname", "-m"]).strip().lower()
        except ContainerError as exc:
            raise StagingFailure(
                f"failed to detect OS/architecture of container {container_id}", cause=exc
            )
        logger.info("Container OS: %s, Architecture: %s", os_name, arch)
        return os_name, arch

    # --- execution ---

    def run(self, container_id: str, arguments: Sequence[str]) -> int:
        """Run the staged entry point, streaming output to the sink.

        Raises:
            StagingFailure: If the command cannot be started in the container
            TaskExecutionFailed: If the script exits non-zero
        """
        command = [self.entry_point, *arguments]
        logger.info("Executing script in container: %s", " ".join(command))
        try:
            exit_code = self.daemon.exec(container_id, command, self.sink)
        except ContainerError as exc:
            raise StagingFailure(f"failed to execute {self.entry_point} in container {container_id}", cause=exc)
        if exit_code != 0:
            raise TaskExecutionFailed(
                f"{self.entry_point} exited with code {exit_code} in container {container_id}"
            )
        return exit_code

    # --- retrieval ---

    def retrieve(self, container_id: str, task: TaskSpec, destination: Path) -> OutputArtifact:
        """Copy the task's single output artifact to ``destination``.

        Raises:
            RetrievalFailure: If nothing matches the task's pattern or the copy fails
        """
        pattern = output_pattern(task)
        matches = self.find_outputs(container_id, pattern)
        if not matches:
            raise RetrievalFailure(
                f"no packaged file matching {pattern.glob} found in {self.workdir} of container {container_id}"
            )
        resolved = matches[0]
        if len(matches) > 1:
            logger.warning("Found multiple matching files, using the first one: %s", resolved)
        logger.info("Found packaged file in container: %s", PurePosixPath(resolved).name)

        try:
            local_path = self.daemon.copy_from(container_id, resolved, Path(destination))
        except ContainerError as exc:
            raise RetrievalFailure(f"failed to copy {resolved} from container {container_id}", cause=exc)
        logger.info("Repackaged file copied to: %s", local_path)
        return OutputArtifact(
            match_pattern=pattern.glob,
            resolved_container_path=resolved,
            local_destination=local_path,
        )

    def find_outputs(self, container_id: str, pattern: OutputPattern) -> List[str]:
        logger.info("Searching for file pattern: %s", pattern.glob)
        try:
            output = self.daemon.exec_output(
                container_id, ["find", self.workdir, "-name", pattern.glob]
            )
        except ContainerError as exc:
            raise RetrievalFailure(
                f"failed to search for {pattern.glob} in container {container_id}", cause=exc
            )
        return pattern.filter(line.strip() for line in output.splitlines())

    # --- private helpers ---

    def _copy(self, container_id: str, src: Path, dest_name: str) -> StagedArtifact:
        dest = self._container_path(dest_name)
        logger.info("Copying to container: %s -> %s", src, dest)
        try:
            self.daemon.copy_to(container_id, src, dest)
        except ContainerError as exc:
            raise StagingFailure(f"failed to copy {src} to {container_id}:{dest}", cause=exc)
        return StagedArtifact(original_name=src.name, sanitized_name=dest_name, container_path=dest)

    def _exec_step(self, container_id: str, command: Sequence[str], step: str) -> None:
        try:
            exit_code = self.daemon.exec(container_id, command, self.sink)
        except ContainerError as exc:
            raise StagingFailure(f"failed to {step} in container {container_id}", cause=exc)
        if exit_code != 0:
            raise StagingFailure(
                f"failed to {step} in container {container_id}: exit code {exit_code}"
            )
