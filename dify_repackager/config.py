"""Configuration for dify-repackager.

Settings resolve through a fallback chain: environment variable, then the
``[repackager]`` section of the INI file named by ``DIFY_REPACKAGER_CONFIG``,
then the built-in default. The result is an immutable ``RepackagerConfig``
that callers build once and pass into the resolver and runner; nothing in
this module caches state between calls.
"""

from __future__ import annotations

import configparser
import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "DIFY_REPACKAGER_CONFIG"
CONFIG_SECTION = "repackager"

DEFAULT_DAEMON_KEYWORDS: Tuple[str, ...] = (
    "plugin_daemon",
    "plugin-daemon",
    "dify-plugin-daemon",
    "docker-plugin_daemon",
    "dahk-plugin-daemon",
)


def _parse_bool(value: Any) -> bool:
    """Parse boolean value from config (string or bool).

    Accepts: True, "true", "True", "1", "yes", "on" -> True
             anything else -> False
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "on")
    return bool(value)


def _parse_keywords(value: Any) -> Tuple[str, ...]:
    """Parse container keywords from a list or a comma/space separated string."""
    if isinstance(value, (list, tuple)):
        items = [str(v) for v in value]
    elif isinstance(value, str):
        items = value.replace(",", " ").split()
    else:
        return DEFAULT_DAEMON_KEYWORDS
    keywords = tuple(item.strip().lower() for item in items if item.strip())
    return keywords or DEFAULT_DAEMON_KEYWORDS


def _parse_engine(value: Any) -> str:
    engine = str(value).strip().lower()
    if engine not in ("docker", "podman"):
        raise ValueError(f"unsupported container engine: {value}")
    return engine


def _read_config_file(path: Optional[str]) -> Dict[str, str]:
    """Read the ``[repackager]`` section of an INI file.

    A missing file or section yields an empty dict; a malformed file is
    logged and ignored so that defaults still apply.
    """
    if not path:
        return {}
    parser = configparser.ConfigParser()
    try:
        read = parser.read(path, encoding="utf-8")
    except configparser.Error as exc:
        logger.warning("Failed to parse config file %s: %s", path, exc)
        return {}
    if not read:
        logger.debug("Config file %s not found, using defaults", path)
        return {}
    if not parser.has_section(CONFIG_SECTION):
        logger.debug("Config file %s has no [%s] section", path, CONFIG_SECTION)
        return {}
    return dict(parser.items(CONFIG_SECTION))


def _get_config_value(
    key: str,
    default: Any,
    *,
    environ: Mapping[str, str],
    file_values: Mapping[str, str],
    env_var: Optional[str] = None,
    converter: Optional[Callable[[Any], Any]] = None,
) -> Any:
    """Get config value with fallback chain: env var -> config file -> default.

    Args:
        key: Config key name (in [repackager] section)
        default: Default value if not found
        environ: Environment mapping to consult
        file_values: Values read from the config file
        env_var: Optional environment variable name
        converter: Optional function to convert string value (e.g., int, bool)

    Returns:
        Config value (converted if converter provided)
    """
    if env_var:
        env_value = environ.get(env_var)
        if env_value is not None:
            if converter:
                try:
                    return converter(env_value)
                except (ValueError, TypeError):
                    logger.warning(
                        "Invalid value for %s: %s, using default", env_var, env_value
                    )
                    return default
            return env_value

    value = file_values.get(key)
    if value is not None:
        if converter:
            try:
                return converter(value)
            except (ValueError, TypeError):
                logger.warning(
                    "Invalid value for config key %s: %s, using default", key, value
                )
                return default
        return value

    return default


def _optional_path(value: Any) -> Optional[Path]:
    if value is None or value == "":
        return None
    return Path(value).expanduser()


@dataclass(frozen=True)
class RepackagerConfig:
    """Resolved settings for one repackager process.

    - engine: container engine client, "docker" (CLI) or "podman" (podman-py)
    - docker_binary: explicit docker CLI path, overrides path discovery
    - podman_socket: URI handed to podman-py's PodmanClient
    - container_workdir: working directory created inside the daemon container
    - script_name / script_dir: the repackaging entry point and where to look first
    - output_dir: where retrieved or locally produced artifacts land
    - force_local: run on the host without asking (FORCE_LOCAL_EXECUTION)
    - assume_yes: answer the local-fallback confirmation with yes
    - inherit_streams: give a local run the caller's stdin/stdout/stderr
    """

    engine: str = "docker"
    docker_binary: Optional[Path] = None
    podman_socket: str = "unix:///run/podman/podman.sock"
    container_workdir: str = "/tmp/repackage"
    script_name: str = "plugin_repackaging.sh"
    script_dir: Optional[Path] = None
    output_dir: Path = field(default_factory=Path.cwd)
    force_local: bool = False
    assume_yes: bool = False
    inherit_streams: bool = False
    network_probe_host: str = "pypi.org"
    network_probe_attempts: int = 3
    probe_timeout: float = 10.0
    task_timeout: Optional[float] = None
    daemon_keywords: Tuple[str, ...] = DEFAULT_DAEMON_KEYWORDS

    def with_overrides(self, **changes: Any) -> "RepackagerConfig":
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)


def load_config(
    environ: Optional[Mapping[str, str]] = None,
    config_file: Optional[str] = None,
) -> RepackagerConfig:
    """Build a ``RepackagerConfig`` from the environment and config file.

    Args:
        environ: Environment mapping (defaults to ``os.environ``)
        config_file: INI path; defaults to ``$DIFY_REPACKAGER_CONFIG``

    Returns:
        Fully resolved configuration value
    """
    env = os.environ if environ is None else environ
    if config_file is None:
        config_file = env.get(CONFIG_ENV_VAR)
    file_values = _read_config_file(config_file)

    def value(key: str, default: Any, env_var: Optional[str] = None, converter=None) -> Any:
        return _get_config_value(
            key,
            default,
            environ=env,
            file_values=file_values,
            env_var=env_var,
            converter=converter,
        )

    task_timeout = value(
        "task_timeout", None, "DIFY_REPACKAGER_TASK_TIMEOUT", converter=float
    )
    if task_timeout is not None and task_timeout <= 0:
        task_timeout = None

    output_dir = _optional_path(value("output_dir", None, "DIFY_REPACKAGER_OUTPUT_DIR"))

    return RepackagerConfig(
        engine=value("engine", "docker", "DIFY_REPACKAGER_ENGINE", converter=_parse_engine),
        docker_binary=_optional_path(
            value("docker_binary", None, "DIFY_REPACKAGER_DOCKER_BINARY")
        ),
        podman_socket=value(
            "podman_socket", "unix:///run/podman/podman.sock", "DIFY_REPACKAGER_PODMAN_SOCKET"
        ),
        container_workdir=value(
            "container_workdir", "/tmp/repackage", "DIFY_REPACKAGER_CONTAINER_WORKDIR"
        ),
        script_name=value("script_name", "plugin_repackaging.sh", "DIFY_REPACKAGER_SCRIPT_NAME"),
        script_dir=_optional_path(value("script_dir", None, "DIFY_REPACKAGER_SCRIPT_DIR")),
        output_dir=output_dir or Path.cwd(),
        force_local=value("force_local", False, "FORCE_LOCAL_EXECUTION", converter=_parse_bool),
        assume_yes=value("assume_yes", False, "DIFY_REPACKAGER_ASSUME_YES", converter=_parse_bool),
        inherit_streams=value(
            "inherit_streams", False, "DIFY_REPACKAGER_INHERIT_STREAMS", converter=_parse_bool
        ),
        network_probe_host=value("network_probe_host", "pypi.org", "DIFY_REPACKAGER_NETWORK_HOST"),
        network_probe_attempts=value(
            "network_probe_attempts", 3, "DIFY_REPACKAGER_NETWORK_ATTEMPTS", converter=int
        ),
        probe_timeout=value("probe_timeout", 10.0, "DIFY_REPACKAGER_PROBE_TIMEOUT", converter=float),
        task_timeout=task_timeout,
        daemon_keywords=value(
            "daemon_keywords",
            DEFAULT_DAEMON_KEYWORDS,
            "DIFY_REPACKAGER_DAEMON_KEYWORDS",
            converter=_parse_keywords,
        ),
    )
