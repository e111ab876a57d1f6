"""Execution-target resolution: container discovery and plan selection."""

from .locator import (
    ContainerCandidate,
    ContainerLocator,
    LocateOutcome,
    LocateResult,
    RunningState,
)
from .resolver import (
    AlwaysConfirm,
    ConfirmationChannel,
    ConsoleConfirmation,
    ExecutionPlan,
    ExecutionPreference,
    ExecutionResolver,
    NeverConfirm,
    Strategy,
)

__all__ = [
    "AlwaysConfirm",
    "ConfirmationChannel",
    "ConsoleConfirmation",
    "ContainerCandidate",
    "ContainerLocator",
    "ExecutionPlan",
    "ExecutionPreference",
    "ExecutionResolver",
    "LocateOutcome",
    "LocateResult",
    "NeverConfirm",
    "RunningState",
    "Strategy",
]
