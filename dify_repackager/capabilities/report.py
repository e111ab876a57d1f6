"""CapabilityReport: probe results plus the derived strategy recommendation."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from ..tasks import ALL_KINDS, NETWORK_KINDS, TaskKind
from .probes import ProbeSet

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CapabilityReport:
    """Immutable snapshot of host capabilities for one request."""

    docker_available: bool = False
    docker_running: bool = False
    matching_containers: Tuple[str, ...] = ()
    runtime_available: bool = False
    runtime_version: str = ""
    runtime_ideal: bool = False
    package_manager_available: bool = False
    archive_tool_available: bool = False
    network_available: bool = False
    recommended_strategies: FrozenSet[TaskKind] = frozenset()
    disabled_strategies: FrozenSet[TaskKind] = frozenset()
    messages: Tuple[str, ...] = ()
    docker_binary: Optional[str] = field(default=None, compare=False)

    @property
    def plugin_container_running(self) -> bool:
        return bool(self.matching_containers)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-serialisable view, strategies listed in canonical order."""
        return {
            "dockerAvailable": self.docker_available,
            "dockerRunning": self.docker_running,
            "pluginContainerRunning": self.plugin_container_running,
            "pluginContainers": list(self.matching_containers),
            "pythonAvailable": self.runtime_available,
            "pythonVersion": self.runtime_version,
            "pythonIdeal": self.runtime_ideal,
            "pipAvailable": self.package_manager_available,
            "unzipAvailable": self.archive_tool_available,
            "networkAvailable": self.network_available,
            "recommendedModes": [k.value for k in ALL_KINDS if k in self.recommended_strategies],
            "disabledModes": [k.value for k in ALL_KINDS if k in self.disabled_strategies],
            "warningMessages": list(self.messages),
        }


def derive_recommendation(
    *,
    docker_available: bool,
    docker_running: bool,
    runtime_available: bool,
    package_manager_available: bool,
    archive_tool_available: bool,
    network_available: bool,
) -> Tuple[FrozenSet[TaskKind], FrozenSet[TaskKind], Tuple[str, ...]]:
    """Apply the recommendation table, first matching row wins.

    Returns:
        (recommended, disabled, messages); recommended and disabled are
        disjoint and together cover every task kind.
    """
    messages: List[str] = []

    if docker_available and docker_running:
        recommended = set(ALL_KINDS)
        messages.append("Docker is available, all modes are recommended")
    elif runtime_available and package_manager_available and archive_tool_available:
        recommended = {TaskKind.LOCAL}
        if network_available:
            recommended.update(NETWORK_KINDS)
            messages.append(
                "Local Python environment is available; installing Docker is "
                "recommended for better compatibility"
            )
        else:
            messages.append("Network is unavailable, only local file mode can be used")
    else:
        recommended = {TaskKind.LOCAL}
        if not runtime_available:
            messages.append("Python 3.12+ was not detected; installing Docker is recommended")
        if not package_manager_available:
            messages.append("The pip package manager was not detected")
        if not archive_tool_available:
            messages.append("The unzip tool was not detected")
        if docker_available:
            messages.append("Docker is installed, please start the Docker service")
        else:
            messages.append("Install Docker for the best experience")

    disabled = set(ALL_KINDS) - recommended
    return frozenset(recommended), frozenset(disabled), tuple(messages)


def detect_capabilities(config=None, probes: Optional[ProbeSet] = None) -> CapabilityReport:
    """Probe the host and build a fresh CapabilityReport.

    Always succeeds: every probe degrades to False/empty on failure.

    Args:
        config: Optional RepackagerConfig used to build the default ProbeSet
        probes: ProbeSet to use instead of one built from config

    Returns:
        CapabilityReport for this request
    """
    if probes is None:
        probes = ProbeSet.from_config(config) if config is not None else ProbeSet()

    binary = probes.engine_binary()
    docker_available = binary is not None
    docker_running = False
    containers: Tuple[str, ...] = ()
    if docker_available:
        docker_running = probes.daemon_running(binary).ok
        containers = probes.plugin_containers(binary)

    runtime = probes.runtime()
    package_manager = probes.package_manager()
    archive_tool = probes.archive_tool()
    network = probes.network()

    recommended, disabled, messages = derive_recommendation(
        docker_available=docker_available,
        docker_running=docker_running,
        runtime_available=runtime.ok,
        package_manager_available=package_manager.ok,
        archive_tool_available=archive_tool.ok,
        network_available=network.ok,
    )

    report = CapabilityReport(
        docker_available=docker_available,
        docker_running=docker_running,
        matching_containers=containers,
        runtime_available=runtime.ok,
        runtime_version=runtime.version,
        runtime_ideal=runtime.ideal,
        package_manager_available=package_manager.ok,
        archive_tool_available=archive_tool.ok,
        network_available=network.ok,
        recommended_strategies=recommended,
        disabled_strategies=disabled,
        messages=messages,
        docker_binary=binary,
    )
    logger.debug(
        "Capabilities: docker=%s running=%s python=%s pip=%s unzip=%s network=%s",
        report.docker_available,
        report.docker_running,
        report.runtime_version or None,
        report.package_manager_available,
        report.archive_tool_available,
        report.network_available,
    )
    return report
