"""ExecutionResolver: choose where a repackaging task runs.

Container execution is preferred because the plugin-daemon image pins the
Python toolchain the plugin expects. Falling back to the host is allowed
only after an explicit yes on the injected confirmation channel (or the
``assume_yes`` override for headless callers).
"""

from __future__ import annotations

import enum
import logging
import sys
from dataclasses import dataclass
from typing import Callable, Optional, Protocol, TextIO

from ..capabilities.report import CapabilityReport
from ..errors import ResolutionFailure
from .locator import ContainerLocator, LocateOutcome

logger = logging.getLogger(__name__)


class ExecutionPreference(str, enum.Enum):
    AUTO = "auto"
    FORCE_LOCAL = "force_local"
    FORCE_CONTAINER = "force_container"
    # Accepted for the "new container" front-end option; behaves like
    # FORCE_CONTAINER until container provisioning exists.
    FORCE_NEW_CONTAINER = "force_new_container"

    @classmethod
    def parse(cls, value: Optional[str]) -> "ExecutionPreference":
        """Parse a preference, accepting the front-end spellings.

        ``local`` -> FORCE_LOCAL, ``docker`` -> FORCE_CONTAINER,
        ``new-docker`` -> FORCE_NEW_CONTAINER, empty -> AUTO.
        """
        if not value:
            return cls.AUTO
        normalized = value.strip().lower().replace("-", "_")
        aliases = {
            "local": cls.FORCE_LOCAL,
            "docker": cls.FORCE_CONTAINER,
            "container": cls.FORCE_CONTAINER,
            "new_docker": cls.FORCE_NEW_CONTAINER,
            "new_container": cls.FORCE_NEW_CONTAINER,
        }
        if normalized in aliases:
            return aliases[normalized]
        try:
            return cls(normalized)
        except ValueError:
            raise ValueError(f"unknown execution preference: {value}")


class Strategy(str, enum.Enum):
    LOCAL = "local"
    CONTAINER = "container"


@dataclass(frozen=True)
class ExecutionPlan:
    """Where one task runs. Exactly one strategy; never mutated."""

    strategy: Strategy
    container_id: Optional[str] = None
    requires_confirmation: bool = False

    def __post_init__(self) -> None:
        if self.strategy is Strategy.CONTAINER and not self.container_id:
            raise ValueError("container plan requires a container id")
        if self.strategy is Strategy.LOCAL and self.container_id:
            raise ValueError("local plan cannot name a container")

    @classmethod
    def local(cls, requires_confirmation: bool = False) -> "ExecutionPlan":
        return cls(Strategy.LOCAL, None, requires_confirmation)

    @classmethod
    def container(cls, container_id: str) -> "ExecutionPlan":
        return cls(Strategy.CONTAINER, container_id, False)

    @property
    def is_container(self) -> bool:
        return self.strategy is Strategy.CONTAINER


class ConfirmationChannel(Protocol):
    """Suspends the caller until a yes/no answer is available."""

    def ask(self, prompt: str) -> bool:  # pragma: no cover - protocol
        ...


class AlwaysConfirm:
    """Headless channel answering yes to every prompt."""

    def ask(self, prompt: str) -> bool:
        logger.info("%s -> yes (auto-confirmed)", prompt)
        return True


class NeverConfirm:
    """Headless channel answering no to every prompt."""

    def ask(self, prompt: str) -> bool:
        logger.info("%s -> no", prompt)
        return False


class ConsoleConfirmation:
    """Interactive channel reading ``yes``/``y`` from a terminal."""

    def __init__(
        self,
        input_func: Optional[Callable[[], str]] = None,
        output: Optional[TextIO] = None,
    ) -> None:
        self._input = input_func or sys.stdin.readline
        self._output = output or sys.stdout

    def ask(self, prompt: str) -> bool:
        self._output.write(f"{prompt} (yes/no): ")
        self._output.flush()
        response = (self._input() or "").strip().lower()
        return response in ("yes", "y")


class ExecutionResolver:
    """Resolve one ExecutionPlan per task.

    Evaluation order:
    1. Already inside a container: run locally.
    2. Local execution forced (preference or config): run locally.
    3. Daemon installed and a daemon image known: locate a container.
       A running one gives a container plan; anything else needs
       confirmation before the local fallback.
    4. Otherwise: local fallback after confirmation.

    A declined confirmation raises ResolutionFailure; the task stops.

    Example:
        resolver = ExecutionResolver(config, locator, ConsoleConfirmation())
        plan = resolver.resolve(ExecutionPreference.AUTO, is_inside_container(), report)
    """

    def __init__(
        self,
        config,
        locator: ContainerLocator,
        confirmation: ConfirmationChannel,
    ) -> None:
        self.config = config
        self.locator = locator
        self.confirmation = confirmation

    def resolve(
        self,
        preference: ExecutionPreference,
        inside_container: bool,
        report: CapabilityReport,
    ) -> ExecutionPlan:
        if inside_container:
            logger.info("Running in Docker environment, executing script directly")
            return ExecutionPlan.local()

        if preference is ExecutionPreference.FORCE_LOCAL or self.config.force_local:
            logger.info("Local execution forced, executing locally")
            return ExecutionPlan.local()

        if report.docker_available and self.locator.has_daemon_image():
            logger.info("Docker installed with dify-plugin-daemon image, executing in container")
            result = self.locator.locate()
            if result.outcome is LocateOutcome.FOUND_RUNNING:
                return ExecutionPlan.container(result.candidate.container_id)

            logger.error("%s", result.reason)
            if result.outcome in (LocateOutcome.FOUND_STOPPED, LocateOutcome.IMAGE_ONLY):
                logger.info(
                    "You can follow the instructions above to use the Docker container, "
                    "or execute the operation locally"
                )
            return self._confirm_local(
                "Do you want to execute locally instead?",
                failure=f"Operation cancelled: {result.reason}",
                remediation="Please fix the Docker container issue and try again",
            )

        logger.info("Not running in Docker and Docker not available")
        return self._confirm_local(
            "Do you want to execute locally?",
            failure="Operation cancelled: no plugin daemon container available",
            remediation="Please install Docker to continue or run this tool inside a Docker container",
        )

    def _confirm_local(self, prompt: str, *, failure: str, remediation: str) -> ExecutionPlan:
        if self.config.assume_yes:
            logger.info("Local fallback auto-confirmed, executing locally")
            return ExecutionPlan.local(requires_confirmation=True)
        if self.confirmation.ask(prompt):
            logger.info("Local fallback confirmed, executing locally")
            return ExecutionPlan.local(requires_confirmation=True)
        raise ResolutionFailure(failure, remediation)
