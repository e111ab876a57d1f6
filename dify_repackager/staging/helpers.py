"""Locate the repackaging script and the per-platform helper binaries."""

from __future__ import annotations

import logging
import platform
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from ..errors import ArchitectureMismatch, RepackagerError

logger = logging.getLogger(__name__)

HELPER_PREFIX = "dify-plugin"
HELPER_SUFFIX = "5g"


class ScriptNotFound(RepackagerError):
    """The repackaging entry point could not be found."""


def helper_binary_name(os_name: str, arch: str) -> str:
    """Name of the helper binary for an OS/architecture pair.

    Args:
        os_name: ``uname`` output, e.g. "Linux" or "Darwin"
        arch: ``uname -m`` output, e.g. "x86_64" or "aarch64"

    Raises:
        ArchitectureMismatch: If no helper exists for ``os_name``
    """
    os_key = os_name.strip().lower()
    arch_key = arch.strip().lower()
    if os_key not in ("linux", "darwin"):
        raise ArchitectureMismatch(
            f"no {HELPER_PREFIX} helper binary for OS {os_name!r} (architecture {arch!r})"
        )
    cpu = "arm64" if arch_key in ("aarch64", "arm64") else "amd64"
    return f"{HELPER_PREFIX}-{os_key}-{cpu}-{HELPER_SUFFIX}"


def host_helper_binary_name() -> Optional[str]:
    """Helper binary matching this host, or None on unsupported hosts."""
    try:
        return helper_binary_name(platform.system(), platform.machine())
    except ArchitectureMismatch as exc:
        logger.warning("Unsupported host platform: %s", exc)
        return None


def helper_locations(name: str, script_dir: Path) -> List[Path]:
    """Candidate paths for a helper binary, in search order."""
    return [
        script_dir / name,
        script_dir.parent / "bin" / name,
        Path("..") / "bin" / name,
        Path("bin") / name,
    ]


def find_helper_binary(name: str, script_dir: Path) -> Path:
    """Find a helper binary next to the script or in a ``bin`` directory.

    Raises:
        ArchitectureMismatch: Naming the binary and every searched path
    """
    locations = helper_locations(name, script_dir)
    for location in locations:
        logger.debug("  Checking: %s", location)
        if location.is_file():
            logger.info("Found %s at: %s", name, location)
            return location
    searched = ", ".join(str(p) for p in locations)
    raise ArchitectureMismatch(f"could not find {name} in any of: {searched}")


def script_locations(script_name: str, script_dir: Optional[Path] = None) -> List[Path]:
    """Candidate paths for the repackaging script, in search order."""
    cwd = Path.cwd()
    dirs: List[Path] = []
    if script_dir is not None:
        dirs.append(script_dir)
    if sys.argv and sys.argv[0]:
        dirs.append(Path(sys.argv[0]).resolve().parent)
    dirs.extend([cwd, cwd.parent / "bin", cwd / "cmd" / "repackage"])
    return [d / script_name for d in dirs]


def find_script(script_name: str, script_dir: Optional[Path] = None, locations: Optional[Sequence[Path]] = None) -> Path:
    """Find the repackaging script.

    Raises:
        ScriptNotFound: Naming the script and every searched path
    """
    candidates = list(locations) if locations is not None else script_locations(script_name, script_dir)
    for candidate in candidates:
        if candidate.is_file():
            logger.info("Using script: %s", candidate)
            return candidate.resolve()
    searched = ", ".join(str(p) for p in candidates)
    raise ScriptNotFound(f"could not find {script_name} in any of: {searched}")
