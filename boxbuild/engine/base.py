"""Engine adapter interface.

The build orchestrator talks to a container engine only through this
interface. Every call takes the cancel scope of the current build (or
interactive statement) and must return promptly once it is cancelled.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from boxbuild.cancel import CancelScope

# Adapter calls that change engine state
MUTATING_CALLS = frozenset(
    {"pull", "run_command", "create", "copy_into", "commit", "tag"}
)


@dataclass
class ContainerHandle:
    """A working container created from an image.

    Attributes:
        id: Engine container id.
        image_ref: Image the container was created from.
        config: Image configuration to restore on commit.
    """

    id: str
    image_ref: str
    config: dict[str, Any] = field(default_factory=dict)


class EngineAdapter(ABC):
    """Interface to the image-building primitives of a container engine."""

    @abstractmethod
    def pull(self, ref: str, scope: CancelScope) -> str:
        """Resolve (pulling if needed) a base image and return its reference."""

    @abstractmethod
    def run_command(
        self,
        image_ref: str,
        command: Sequence[str],
        scope: CancelScope,
        workdir: str | None = None,
        user: str | None = None,
    ) -> ContainerHandle:
        """Run a command in a new container and wait for it to exit.

        Raises:
            EngineError: If the command exits non-zero.
        """

    @abstractmethod
    def create(self, image_ref: str, scope: CancelScope) -> ContainerHandle:
        """Create a container from an image without running it."""

    @abstractmethod
    def copy_into(
        self,
        handle: ContainerHandle,
        source: Path,
        target: str,
        scope: CancelScope,
    ) -> None:
        """Copy a host file or directory into a container."""

    @abstractmethod
    def commit(
        self,
        handle: ContainerHandle,
        scope: CancelScope,
        changes: Sequence[str] = (),
    ) -> str:
        """Commit a container as a new image and return its reference."""

    @abstractmethod
    def tag(self, image_ref: str, name: str, scope: CancelScope) -> None:
        """Tag an image with a repository name."""

    @abstractmethod
    def read_file(self, image_ref: str, path: str, scope: CancelScope) -> bytes:
        """Read a file from an image's filesystem."""

    @abstractmethod
    def has_image(self, image_ref: str) -> bool:
        """Whether an image still exists in the engine."""

    @abstractmethod
    def current_image_ref(self) -> str:
        """Reference of the last image produced through this adapter."""

    @abstractmethod
    def close(self) -> None:
        """Release engine resources, removing any leftover containers."""


__all__ = ["MUTATING_CALLS", "ContainerHandle", "EngineAdapter"]
