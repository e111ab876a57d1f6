"""Task model: the three repackaging task kinds and their arguments."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from pathlib import Path
from typing import List, Tuple

from .errors import InvalidTask

PACKAGE_SUFFIX = ".difypkg"
RESULT_SUFFIX = "-offline" + PACKAGE_SUFFIX


class TaskKind(str, enum.Enum):
    """Task kinds, also the strategies a capability report recommends."""

    LOCAL = "local"
    MARKET = "market"
    GITHUB = "github"

    @property
    def needs_network(self) -> bool:
        return self is not TaskKind.LOCAL


ALL_KINDS: Tuple[TaskKind, ...] = (TaskKind.LOCAL, TaskKind.MARKET, TaskKind.GITHUB)
NETWORK_KINDS: Tuple[TaskKind, ...] = tuple(k for k in ALL_KINDS if k.needs_network)


@dataclass(frozen=True)
class TaskSpec:
    """One repackaging request: ``(kind, args...)``.

    - local: (package_path,)
    - market: (author, name, version)
    - github: (repository, release, asset)
    """

    kind: TaskKind
    args: Tuple[str, ...]

    @classmethod
    def local(cls, package_path) -> "TaskSpec":
        path = str(package_path)
        if not path:
            raise InvalidTask("local mode requires a package file path")
        if not path.endswith(PACKAGE_SUFFIX):
            raise InvalidTask(f"package file must have {PACKAGE_SUFFIX} extension: {path}")
        return cls(TaskKind.LOCAL, (str(Path(path).resolve()),))

    @classmethod
    def market(cls, author: str, name: str, version: str) -> "TaskSpec":
        if not (author and name and version):
            raise InvalidTask("market mode requires author, name and version")
        return cls(TaskKind.MARKET, (author, name, version))

    @classmethod
    def github(cls, repository: str, release: str, asset: str) -> "TaskSpec":
        if not (repository and release and asset):
            raise InvalidTask("github mode requires repository, release and asset name")
        return cls(TaskKind.GITHUB, (repository, release, asset))

    @classmethod
    def from_mode(cls, mode: str, *args: str) -> "TaskSpec":
        """Build a task from a front-end ``(mode, parameters)`` tuple."""
        try:
            kind = TaskKind(mode)
        except ValueError:
            raise InvalidTask(f"unsupported mode: {mode}")
        expected = 1 if kind is TaskKind.LOCAL else 3
        if len(args) != expected:
            raise InvalidTask(f"{mode} mode takes {expected} argument(s), got {len(args)}")
        if kind is TaskKind.LOCAL:
            return cls.local(args[0])
        if kind is TaskKind.MARKET:
            return cls.market(*args)
        return cls.github(*args)

    @property
    def package_path(self) -> Path:
        if self.kind is not TaskKind.LOCAL:
            raise InvalidTask(f"{self.kind.value} task has no input file")
        return Path(self.args[0])

    def command_args(self) -> List[str]:
        """Positional arguments for the repackaging executable."""
        return [self.kind.value, *self.args]
