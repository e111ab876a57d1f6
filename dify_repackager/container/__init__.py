"""Container daemon clients.

Only the interface is exported here; engine-specific clients live in
``docker_cli`` and ``podman_client`` and are built by ``create_daemon``.
"""

from .interface import (
    ContainerDaemon,
    ContainerError,
    ContainerSummary,
    ImageSummary,
    InMemoryLogSink,
    LogSink,
)

__all__ = [
    "ContainerDaemon",
    "ContainerError",
    "ContainerSummary",
    "ImageSummary",
    "InMemoryLogSink",
    "LogSink",
    "create_daemon",
]


def create_daemon(config, docker_binary=None):
    """Build the daemon client selected by ``config.engine``.

    Args:
        config: RepackagerConfig
        docker_binary: Resolved docker CLI path (from capability detection)

    Returns:
        ContainerDaemon implementation
    """
    if config.engine == "podman":
        from .podman_client import PodmanDaemon

        return PodmanDaemon(base_url=config.podman_socket)

    from .docker_cli import DockerCliDaemon

    binary = docker_binary or config.docker_binary or "docker"
    return DockerCliDaemon(str(binary), exec_timeout=config.task_timeout)
