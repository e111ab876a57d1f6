"""Failure taxonomy for repackaging tasks.

Probes never raise; everything else below surfaces to the caller as a
``TaskResult`` carrying the message and a ``FailureKind``.
"""

from __future__ import annotations

import enum
from typing import Optional

from .container.interface import ContainerError


class FailureKind(str, enum.Enum):
    """Machine-checkable failure flag attached to a failed task."""

    RESOLUTION = "resolution"
    STAGING = "staging"
    ARCHITECTURE = "architecture"
    RETRIEVAL = "retrieval"
    EXECUTION = "execution"
    TIMEOUT = "timeout"
    INVALID_TASK = "invalid_task"


class RepackagerError(Exception):
    """Base class for repackager failures that are not daemon errors."""

    kind = FailureKind.EXECUTION


class InvalidTask(RepackagerError, ValueError):
    """Task parameters are missing or malformed."""

    kind = FailureKind.INVALID_TASK


class ResolutionFailure(RepackagerError):
    """No viable strategy and the local fallback was declined."""

    kind = FailureKind.RESOLUTION

    def __init__(self, message: str, remediation: Optional[str] = None) -> None:
        self.remediation = remediation
        if remediation:
            message = f"{message}. {remediation}"
        super().__init__(message)


class TaskTimeout(RepackagerError):
    """The task exceeded the configured timeout and was killed."""

    kind = FailureKind.TIMEOUT


class TaskExecutionFailed(RepackagerError):
    """The repackaging executable could not start or exited non-zero."""

    kind = FailureKind.EXECUTION


class StagingFailure(ContainerError):
    """A copy, chmod or exec step inside the container failed."""

    kind = FailureKind.STAGING


class ArchitectureMismatch(StagingFailure):
    """No helper binary matches the container's OS/architecture."""

    kind = FailureKind.ARCHITECTURE


class RetrievalFailure(StagingFailure):
    """The task produced no output artifact matching its pattern."""

    kind = FailureKind.RETRIEVAL


def failure_kind(exc: BaseException) -> FailureKind:
    """Map an exception raised during a task to its failure flag."""
    kind = getattr(exc, "kind", None)
    if isinstance(kind, FailureKind):
        return kind
    if isinstance(exc, ContainerError):
        return FailureKind.STAGING
    return FailureKind.EXECUTION
