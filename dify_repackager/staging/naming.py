"""Filename sanitization and output-artifact match patterns."""

from __future__ import annotations

import fnmatch
import re
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Iterable, List

from ..tasks import PACKAGE_SUFFIX, RESULT_SUFFIX, TaskKind, TaskSpec

_ALLOWED_PUNCTUATION = "_.-"
_FALLBACK_BASE = "package"

# A wildcard following a base name or version may only start at a
# separator, so "v1" never matches the "v12" of a neighbouring file.
_BOUNDED_WILDCARD = r"(?:[-_.].*)?"


def _allowed(ch: str) -> bool:
    return ch.isascii() and (ch.isalnum() or ch in _ALLOWED_PUNCTUATION)


def sanitize_filename(name: str, suffix: str = PACKAGE_SUFFIX) -> str:
    """Normalize a filename to ``[A-Za-z0-9_.-]``.

    Spaces become underscores and every other character outside the set
    is dropped. When the original name carried ``suffix`` the result ends
    with it too. The result is never empty and sanitizing it again
    returns it unchanged.
    """
    cleaned = "".join(ch for ch in name.replace(" ", "_") if _allowed(ch))

    if suffix and suffix in name and not cleaned.endswith(suffix):
        cleaned += suffix

    if suffix and cleaned.endswith(suffix):
        if not cleaned[: -len(suffix)]:
            cleaned = _FALLBACK_BASE + suffix
    elif not cleaned:
        cleaned = _FALLBACK_BASE
    return cleaned


def strip_suffix(name: str, suffix: str = PACKAGE_SUFFIX) -> str:
    return name[: -len(suffix)] if suffix and name.endswith(suffix) else name


@dataclass(frozen=True)
class OutputPattern:
    """Match pattern for the one artifact a task produces.

    ``glob`` is handed to ``find -name`` inside the container;
    ``regex`` narrows the candidates so a wildcard after a version or
    base name must begin at a separator.
    """

    glob: str
    regex: str

    def matches(self, filename: str) -> bool:
        name = PurePosixPath(filename).name
        return fnmatch.fnmatchcase(name, self.glob) and re.fullmatch(self.regex, name) is not None

    def filter(self, paths: Iterable[str]) -> List[str]:
        """Keep matching paths, preserving their order."""
        return [p for p in paths if p and self.matches(p)]


def output_pattern(task: TaskSpec) -> OutputPattern:
    """Derive the output match pattern from the task's identity.

    - local: sanitized base name + ``*-offline.difypkg``
    - market: ``*<name>*<version>*-offline.difypkg``
    - github: asset base name + ``*-offline.difypkg``
    """
    tail = re.escape(RESULT_SUFFIX)
    if task.kind is TaskKind.LOCAL:
        base = strip_suffix(sanitize_filename(task.package_path.name))
        return OutputPattern(
            glob=f"{base}*{RESULT_SUFFIX}",
            regex=f"{re.escape(base)}{_BOUNDED_WILDCARD}{tail}",
        )
    if task.kind is TaskKind.MARKET:
        _author, name, version = task.args
        return OutputPattern(
            glob=f"*{name}*{version}*{RESULT_SUFFIX}",
            regex=f".*{re.escape(name)}.*{re.escape(version)}{_BOUNDED_WILDCARD}{tail}",
        )
    _repository, _release, asset = task.args
    base = strip_suffix(asset)
    return OutputPattern(
        glob=f"{base}*{RESULT_SUFFIX}",
        regex=f"{re.escape(base)}{_BOUNDED_WILDCARD}{tail}",
    )
