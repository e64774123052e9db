"""Error taxonomy for boxbuild.

Every error raised by the build pipeline carries a stable ``code`` so the
CLI and the interactive session can decide how to surface it:

- ConfigError: bad flags, variables or plan files; fatal at startup
- PlanError: syntax or validation errors in a build plan
- IncompleteStatementError: a fragment needs more input (incremental mode)
- PrerequisiteError: a step or query needs a base image that does not exist
- EngineError: the container engine reported a failure
- LookupNotFoundError: a named entity is absent from queried content
- BuildCancelledError: the cancel scope of the build or statement fired
"""

from __future__ import annotations

CONFIG_ERROR = "config_error"
PLAN_ERROR = "plan_error"
INCOMPLETE_STATEMENT = "incomplete_statement"
PREREQUISITE_MISSING = "prerequisite_missing"
ENGINE_ERROR = "engine_error"
LOOKUP_NOT_FOUND = "lookup_not_found"
CANCELLED = "cancelled"


class BoxError(Exception):
    """Base error for all build pipeline failures."""

    def __init__(self, message: str, code: str = "box_error") -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class ConfigError(BoxError):
    """Raised for invalid configuration, variables or missing plan files."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code=CONFIG_ERROR)


class PlanError(BoxError):
    """Raised when a build plan cannot be parsed or validated."""

    def __init__(
        self,
        message: str,
        line: int | None = None,
        filename: str | None = None,
        code: str = PLAN_ERROR,
    ) -> None:
        location = ""
        if filename and line is not None:
            location = f"{filename}:{line}: "
        elif filename:
            location = f"{filename}: "
        elif line is not None:
            location = f"line {line}: "
        super().__init__(f"{location}{message}", code=code)
        self.detail = message
        self.line = line
        self.filename = filename


class IncompleteStatementError(PlanError):
    """Raised when the source ends in the middle of a statement."""

    def __init__(self, message: str, line: int | None = None) -> None:
        super().__init__(message, line=line, code=INCOMPLETE_STATEMENT)


class PrerequisiteError(BoxError):
    """Raised when a capability needs a base image before one exists."""

    def __init__(self, capability: str) -> None:
        super().__init__(
            f"from has not been called, no image can be used for {capability}",
            code=PREREQUISITE_MISSING,
        )
        self.capability = capability


class EngineError(BoxError):
    """Raised when a container engine call fails."""

    def __init__(self, message: str, exit_code: int | None = None) -> None:
        super().__init__(message, code=ENGINE_ERROR)
        self.exit_code = exit_code


class LookupNotFoundError(BoxError):
    """Raised when a name is missing from queried container content."""

    def __init__(self, kind: str, name: str) -> None:
        super().__init__(f"Could not find {kind} {name!r}", code=LOOKUP_NOT_FOUND)
        self.kind = kind
        self.name = name


class BuildCancelledError(BoxError):
    """Raised when a build or statement was cancelled."""

    def __init__(self, message: str = "operation canceled") -> None:
        super().__init__(message, code=CANCELLED)


__all__ = [
    "CANCELLED",
    "CONFIG_ERROR",
    "ENGINE_ERROR",
    "INCOMPLETE_STATEMENT",
    "LOOKUP_NOT_FOUND",
    "PLAN_ERROR",
    "PREREQUISITE_MISSING",
    "BoxError",
    "BuildCancelledError",
    "ConfigError",
    "EngineError",
    "IncompleteStatementError",
    "LookupNotFoundError",
    "PlanError",
    "PrerequisiteError",
]
