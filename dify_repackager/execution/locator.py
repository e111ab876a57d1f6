"""Find the plugin-daemon container a task should run in.

Matching is a substring convention on container and image names, so an
unrelated image whose name happens to contain a keyword can match. Pass
order (running containers before stopped ones) is the only tie-break.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from ..config import DEFAULT_DAEMON_KEYWORDS
from ..container.interface import ContainerDaemon, ContainerError, ContainerSummary, ImageSummary

logger = logging.getLogger(__name__)

DAEMON_IMAGE_NAME = "dify-plugin-daemon"
NEW_CONTAINER_NAME = "plugin-daemon-repackage"


class RunningState(str, enum.Enum):
    RUNNING = "running"
    STOPPED = "stopped"


class LocateOutcome(str, enum.Enum):
    FOUND_RUNNING = "found_running"
    FOUND_STOPPED = "found_stopped"
    IMAGE_ONLY = "image_only"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class ContainerCandidate:
    container_id: str
    name: str
    image: str
    state: RunningState

    @classmethod
    def from_summary(cls, summary: ContainerSummary) -> "ContainerCandidate":
        state = RunningState.RUNNING if summary.running else RunningState.STOPPED
        return cls(summary.container_id, summary.name, summary.image, state)


@dataclass(frozen=True)
class LocateResult:
    """Outcome of a container search.

    Each outcome other than FOUND_RUNNING carries a ``reason`` that names
    the container or image involved and the command that fixes it.
    """

    outcome: LocateOutcome
    reason: str
    candidate: Optional[ContainerCandidate] = None
    image: Optional[str] = None

    @property
    def found(self) -> bool:
        return self.outcome is LocateOutcome.FOUND_RUNNING


def _matches(text: str, keywords: Iterable[str]) -> bool:
    lowered = text.lower()
    return any(k in lowered for k in keywords)


class ContainerLocator:
    """Two-pass search for a plugin-daemon container.

    Pass 1 looks at running containers only; pass 2 looks at every
    container and runs only when pass 1 finds nothing. Within a pass the
    first container in daemon order whose name or image contains a
    keyword wins.
    """

    def __init__(
        self,
        daemon: ContainerDaemon,
        keywords: Sequence[str] = DEFAULT_DAEMON_KEYWORDS,
    ) -> None:
        self.daemon = daemon
        self.keywords = tuple(k.lower() for k in keywords)

    def locate(self) -> LocateResult:
        running = self._first_match(self._list(all=False))
        if running is not None:
            candidate = ContainerCandidate(
                running.container_id, running.name, running.image, RunningState.RUNNING
            )
            logger.info(
                "Found running plugin daemon container: %s (name: %s, image: %s)",
                candidate.container_id,
                candidate.name,
                candidate.image,
            )
            return LocateResult(LocateOutcome.FOUND_RUNNING, "running container found", candidate)

        match = self._first_match(self._list(all=True))
        if match is not None:
            candidate = ContainerCandidate.from_summary(match)
            if candidate.state is RunningState.RUNNING:
                # Started between the two listings.
                return LocateResult(LocateOutcome.FOUND_RUNNING, "running container found", candidate)
            reason = (
                f"found stopped plugin daemon container: {candidate.container_id} "
                f"(name: {candidate.name}). Please start it using: "
                f"docker start {candidate.container_id}"
            )
            return LocateResult(LocateOutcome.FOUND_STOPPED, reason, candidate)

        image = self._first_image(self._list_images())
        if image is not None:
            reason = (
                f"found plugin daemon image: {image}, but no container exists. "
                f"Please start a container using: docker run -d --name {NEW_CONTAINER_NAME} {image}"
            )
            return LocateResult(LocateOutcome.IMAGE_ONLY, reason, image=image)

        return LocateResult(LocateOutcome.NOT_FOUND, "no plugin daemon container or image found")

    def has_daemon_image(self) -> bool:
        """Whether any local image or any container uses the daemon image."""
        if any(DAEMON_IMAGE_NAME in img.repository.lower() for img in self._list_images()):
            return True
        return any(DAEMON_IMAGE_NAME in c.image.lower() for c in self._list(all=True))

    # --- private helpers ---

    def _first_match(self, containers: Iterable[ContainerSummary]) -> Optional[ContainerSummary]:
        for container in containers:
            if _matches(container.name, self.keywords) or _matches(container.image, self.keywords):
                return container
        return None

    def _first_image(self, images: Iterable[ImageSummary]) -> Optional[str]:
        for image in images:
            if _matches(image.reference, self.keywords):
                return image.reference
        return None

    def _list(self, *, all: bool) -> List[ContainerSummary]:
        try:
            return self.daemon.ps(all=all)
        except ContainerError as exc:
            logger.warning("Failed to list %s containers: %s", "all" if all else "running", exc)
            return []

    def _list_images(self) -> List[ImageSummary]:
        try:
            return self.daemon.images()
        except ContainerError as exc:
            logger.warning("Failed to list images: %s", exc)
            return []
