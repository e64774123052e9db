"""Shared type definitions for boxbuild.

This module contains dataclasses shared across subpackages to
avoid circular imports.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Union

if TYPE_CHECKING:
    from boxbuild.errors import BoxError


@dataclass
class BuildResult:
    """Result of a build run or of one evaluated statement.

    Attributes:
        value: Final image reference, or the printable value of the last
            evaluated statement in interactive mode.
        error: The failure that ended the run, if any.
    """

    value: str = ""
    error: BoxError | None = None

    @property
    def succeeded(self) -> bool:
        """Return True when the run finished without an error."""
        return self.error is None


@dataclass(frozen=True)
class Baseline:
    """Continuation state with no buffered partial statement."""

    @property
    def is_baseline(self) -> bool:
        return True


@dataclass(frozen=True)
class Pending:
    """Continuation state holding a buffered, incomplete statement.

    Attributes:
        buffer: Source text received so far, to be prefixed to the next
            fragment.
        reason: Why the parser considered the statement incomplete.
    """

    buffer: str
    reason: str = ""

    @property
    def is_baseline(self) -> bool:
        return False


Continuation = Union[Baseline, Pending]

BASELINE = Baseline()


__all__ = [
    "BASELINE",
    "Baseline",
    "BuildResult",
    "Continuation",
    "Pending",
]
