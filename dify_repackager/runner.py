"""TaskRunner: execute a resolved plan locally or inside a container."""

from __future__ import annotations

import logging
import os
import stat
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from .capabilities.probes import ProbeSet, is_inside_container
from .capabilities.report import CapabilityReport, detect_capabilities
from .config import RepackagerConfig
from .container import create_daemon
from .container.interface import ContainerDaemon, ContainerError, LogSink
from .errors import (
    ArchitectureMismatch,
    FailureKind,
    RepackagerError,
    ResolutionFailure,
    TaskExecutionFailed,
    failure_kind,
)
from .execution.locator import ContainerLocator
from .execution.resolver import (
    ConfirmationChannel,
    ConsoleConfirmation,
    ExecutionPlan,
    ExecutionPreference,
    ExecutionResolver,
)
from .process import run_interactive, run_streaming
from .sinks import CombinedOutputSink, TeeLogSink
from .staging.helpers import find_helper_binary, find_script, host_helper_binary_name
from .staging.naming import output_pattern
from .staging.stager import ArtifactStager
from .tasks import TaskSpec

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TaskResult:
    """Outcome of one task; ``failure`` is None exactly when it succeeded."""

    success: bool
    output: str = ""
    artifacts: Tuple[Path, ...] = ()
    error: Optional[str] = None
    failure: Optional[FailureKind] = None
    plan: Optional[ExecutionPlan] = field(default=None, compare=False)


class TaskRunner:
    """Run repackaging tasks.

    ``execute()`` covers the whole flow (detect capabilities, resolve a
    plan, run it); ``run()`` runs an already resolved plan. Neither
    retries: a failed task must be resolved and run again by the caller.

    Args:
        config: Resolved configuration
        confirmation: Channel asked before falling back to local execution
        daemon: Container daemon client; built from config when omitted
        on_line: Called with ``(stream, line)`` for every output line
        extra_sink: Additional sink receiving raw output (e.g. FileLogSink)
        probes: ProbeSet used for capability detection
        inside_container: Override for the inside-a-container self-check
    """

    def __init__(
        self,
        config: RepackagerConfig,
        *,
        confirmation: Optional[ConfirmationChannel] = None,
        daemon: Optional[ContainerDaemon] = None,
        on_line: Optional[Callable[[str, str], None]] = None,
        extra_sink: Optional[LogSink] = None,
        probes: Optional[ProbeSet] = None,
        inside_container: Optional[Callable[[], bool]] = None,
    ) -> None:
        self.config = config
        self.confirmation = confirmation or ConsoleConfirmation()
        self._daemon = daemon
        self._on_line = on_line
        self._extra_sink = extra_sink
        self._probes = probes
        self._inside_container = inside_container or is_inside_container

    # --- full flow ---

    def detect(self) -> CapabilityReport:
        return detect_capabilities(self.config, self._probes)

    def resolve(
        self,
        preference: ExecutionPreference = ExecutionPreference.AUTO,
        report: Optional[CapabilityReport] = None,
    ) -> ExecutionPlan:
        """Resolve a plan; raises ResolutionFailure when the fallback is declined."""
        report = report or self.detect()
        resolver = ExecutionResolver(
            self.config,
            ContainerLocator(self.daemon_for(report), self.config.daemon_keywords),
            self.confirmation,
        )
        return resolver.resolve(preference, self._inside_container(), report)

    def execute(
        self,
        task: TaskSpec,
        preference: ExecutionPreference = ExecutionPreference.AUTO,
    ) -> TaskResult:
        try:
            plan = self.resolve(preference)
        except ResolutionFailure as exc:
            logger.error("%s", exc)
            return TaskResult(success=False, error=str(exc), failure=exc.kind)
        return self.run(plan, task)

    def daemon_for(self, report: Optional[CapabilityReport] = None) -> ContainerDaemon:
        if self._daemon is None:
            binary = report.docker_binary if report is not None else None
            self._daemon = create_daemon(self.config, binary)
        return self._daemon

    # --- plan execution ---

    def run(self, plan: ExecutionPlan, task: TaskSpec) -> TaskResult:
        sink = CombinedOutputSink(on_line=self._on_line)
        output: LogSink = TeeLogSink(sink, self._extra_sink)
        output_dir = Path(self.config.output_dir)

        try:
            output_dir.mkdir(parents=True, exist_ok=True)
            script = find_script(self.config.script_name, self.config.script_dir)
            if plan.is_container:
                artifacts = self._run_container(plan, task, script, output, output_dir)
            else:
                artifacts = self._run_local(task, script, output, output_dir)
        except (RepackagerError, ContainerError, OSError) as exc:
            sink.flush()
            kind = failure_kind(exc)
            logger.error("Task %s failed (%s): %s", task.kind.value, kind.value, exc)
            return TaskResult(
                success=False,
                output=sink.text,
                error=str(exc),
                failure=kind,
                plan=plan,
            )

        sink.flush()
        logger.info("Task %s succeeded: %s", task.kind.value, ", ".join(p.name for p in artifacts) or "-")
        return TaskResult(success=True, output=sink.text, artifacts=tuple(artifacts), plan=plan)

    def _run_container(
        self,
        plan: ExecutionPlan,
        task: TaskSpec,
        script: Path,
        sink: LogSink,
        output_dir: Path,
    ) -> List[Path]:
        stager = ArtifactStager(
            self.daemon_for(),
            script,
            sink,
            workdir=self.config.container_workdir,
            helper_dir=self.config.script_dir or script.parent,
        )
        container_id = plan.container_id
        stager.stage(container_id, task)
        stager.run(container_id, stager.container_arguments(task))
        artifact = stager.retrieve(container_id, task, output_dir)
        return [artifact.local_destination]

    def _run_local(self, task: TaskSpec, script: Path, sink: LogSink, output_dir: Path) -> List[Path]:
        _ensure_executable(script)
        self._check_host_helper(script)

        argv = [str(script), *task.command_args()]
        logger.info("Executing script locally: %s", " ".join(argv))
        started = time.time()
        try:
            if self.config.inherit_streams:
                exit_code = run_interactive(argv, cwd=str(output_dir), timeout=self.config.task_timeout)
            else:
                exit_code = run_streaming(
                    argv,
                    sink,
                    cwd=str(output_dir),
                    timeout=self.config.task_timeout,
                    inherit_stdin=True,
                )
        except OSError as exc:
            raise TaskExecutionFailed(f"failed to start {script}: {exc}")
        if exit_code != 0:
            raise TaskExecutionFailed(f"{script.name} exited with code {exit_code}")

        pattern = output_pattern(task)
        artifacts = sorted(
            p
            for p in output_dir.iterdir()
            if p.is_file() and pattern.matches(p.name) and p.stat().st_mtime >= started - 1
        )
        if not artifacts:
            logger.warning("No output file matching %s found in %s", pattern.glob, output_dir)
        return artifacts

    def _check_host_helper(self, script: Path) -> None:
        name = host_helper_binary_name()
        if name is None:
            return
        try:
            find_helper_binary(name, self.config.script_dir or script.parent)
        except ArchitectureMismatch:
            logger.warning("Could not find %s. The operation may fail.", name)


def _ensure_executable(path: Path) -> None:
    mode = path.stat().st_mode
    wanted = mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH
    if mode != wanted and os.name == "posix":
        try:
            path.chmod(wanted)
        except OSError as exc:
            raise TaskExecutionFailed(f"failed to set permissions on {path}: {exc}")
