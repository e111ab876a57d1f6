"""Host probes used for capability detection.

Probes never raise, because not being able to probe is not a failure of the
probe itself: a missing tool, a timeout or an unreachable daemon all degrade
to ``ok=False``. Results are never cached.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

CommandRunner = Callable[..., subprocess.CompletedProcess]

# Most common install locations per platform, in priority order.
DOCKER_PATHS = {
    "win32": (
        r"C:\Program Files\Docker\Docker\resources\bin\docker.exe",
        r"C:\ProgramData\DockerDesktop\version-bin\docker.exe",
        r"C:\Windows\System32\docker.exe",
    ),
    "darwin": (
        "/usr/local/bin/docker",
        "/opt/homebrew/bin/docker",
        "/usr/bin/docker",
    ),
    "linux": (
        "/usr/bin/docker",
        "/usr/local/bin/docker",
        "/snap/bin/docker",
    ),
}

RUNTIME_COMMANDS = ("python3.12", "python3", "python")
PACKAGE_MANAGER_COMMANDS = ("pip3", "pip")

_PYTHON_VERSION = re.compile(r"Python\s+3\.(\d+)")


@dataclass(frozen=True)
class ProbeResult:
    """Outcome of one host probe."""

    name: str
    ok: bool
    detail: str = ""

    def __bool__(self) -> bool:
        return self.ok


@dataclass(frozen=True)
class RuntimeProbeResult(ProbeResult):
    """Language runtime probe; ``ideal`` flags Python 3.12 or newer."""

    version: str = ""
    ideal: bool = False


def _platform_key(platform: str) -> str:
    if platform.startswith("win"):
        return "win32"
    if platform == "darwin":
        return "darwin"
    return "linux"


class ProbeSet:
    """Independent, read-only probes of host state.

    Args:
        engine: container engine CLI name ("docker" or "podman")
        explicit_binary: configured engine binary path, checked first
        timeout: seconds allowed per probe command
        network_host: host pinged by the reachability probe
        network_attempts: ping attempts; any success is enough
        runner: ``subprocess.run`` compatible callable
        platform: ``sys.platform`` value used to pick paths and ping flags
        which: ``shutil.which`` compatible lookup
        exists: predicate telling whether an absolute path is a file
    """

    def __init__(
        self,
        *,
        engine: str = "docker",
        explicit_binary: Optional[Path] = None,
        timeout: float = 10.0,
        network_host: str = "pypi.org",
        network_attempts: int = 3,
        runner: CommandRunner = subprocess.run,
        platform: str = sys.platform,
        which: Callable[[str], Optional[str]] = shutil.which,
        exists: Callable[[str], bool] = os.path.isfile,
    ) -> None:
        self.engine = engine
        self.explicit_binary = explicit_binary
        self.timeout = timeout
        self.network_host = network_host
        self.network_attempts = max(1, int(network_attempts))
        self._runner = runner
        self._platform = _platform_key(platform)
        self._which = which
        self._exists = exists

    @classmethod
    def from_config(cls, config, **kwargs) -> "ProbeSet":
        return cls(
            engine=config.engine,
            explicit_binary=config.docker_binary,
            timeout=config.probe_timeout,
            network_host=config.network_probe_host,
            network_attempts=config.network_probe_attempts,
            **kwargs,
        )

    # --- command plumbing ---

    def _run(self, argv: Sequence[str]) -> Optional[subprocess.CompletedProcess]:
        try:
            return self._runner(
                list(argv),
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except (OSError, subprocess.SubprocessError) as exc:
            logger.debug("Probe command %s failed: %s", argv[0], exc)
            return None

    def _succeeds(self, argv: Sequence[str]) -> bool:
        result = self._run(argv)
        return result is not None and result.returncode == 0

    # --- probes ---

    def engine_binary(self) -> Optional[str]:
        """Absolute path of the engine CLI, or None when not installed."""
        candidates: List[str] = []
        if self.explicit_binary is not None:
            candidates.append(str(self.explicit_binary))
        if self.engine == "docker":
            candidates.extend(DOCKER_PATHS[self._platform])
        for path in candidates:
            if self._exists(path):
                return path
        return self._which(self.engine)

    def daemon_running(self, binary: Optional[str]) -> ProbeResult:
        if not binary:
            return ProbeResult("daemon_running", False, f"{self.engine} CLI not found")
        ok = self._succeeds([binary, "info"])
        return ProbeResult("daemon_running", ok, "" if ok else f"{self.engine} info failed")

    def plugin_containers(self, binary: Optional[str]) -> Tuple[str, ...]:
        """Names of running containers containing "plugin" (case-insensitive)."""
        if not binary:
            return ()
        result = self._run([binary, "ps", "--format", "{{.Names}}"])
        if result is None or result.returncode != 0:
            logger.debug("%s ps failed while listing plugin containers", self.engine)
            return ()
        names = [line.strip() for line in result.stdout.splitlines() if line.strip()]
        matches = tuple(n for n in names if "plugin" in n.lower())
        logger.debug("Detected containers: %s, plugin containers: %s", names, matches)
        return matches

    def runtime(self) -> RuntimeProbeResult:
        for command in RUNTIME_COMMANDS:
            result = self._run([command, "--version"])
            if result is None or result.returncode != 0:
                continue
            # Python 2 printed its version on stderr.
            version = (result.stdout or result.stderr or "").strip()
            match = _PYTHON_VERSION.search(version)
            if match is None:
                continue
            ideal = int(match.group(1)) >= 12
            return RuntimeProbeResult("runtime", True, command, version=version, ideal=ideal)
        return RuntimeProbeResult("runtime", False, "no Python 3 interpreter found")

    def package_manager(self) -> ProbeResult:
        for command in PACKAGE_MANAGER_COMMANDS:
            if self._succeeds([command, "--version"]):
                return ProbeResult("package_manager", True, command)
        return ProbeResult("package_manager", False, "pip not found")

    def archive_tool(self) -> ProbeResult:
        ok = self._succeeds(["unzip", "-v"])
        return ProbeResult("archive_tool", ok, "unzip" if ok else "unzip not found")

    def network(self) -> ProbeResult:
        if self._platform == "win32":
            args = ["ping", "-n", "1", "-w", "1000", self.network_host]
        elif self._platform == "darwin":
            # -W is milliseconds on macOS, seconds on Linux
            args = ["ping", "-c", "1", "-W", "1000", self.network_host]
        else:
            args = ["ping", "-c", "1", "-W", "1", self.network_host]
        for attempt in range(1, self.network_attempts + 1):
            if self._succeeds(args):
                return ProbeResult("network", True, f"{self.network_host} reachable")
            logger.debug("Network probe %d/%d failed", attempt, self.network_attempts)
        return ProbeResult("network", False, f"{self.network_host} unreachable")


def is_inside_container(
    dockerenv: Path = Path("/.dockerenv"),
    cgroup: Path = Path("/proc/self/cgroup"),
) -> bool:
    """Tell whether this process already runs inside a Docker container."""
    if dockerenv.exists():
        return True
    try:
        return "docker" in cgroup.read_text(errors="replace")
    except OSError:
        return False
