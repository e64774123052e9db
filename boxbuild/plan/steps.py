"""Step variants and build plans.

A build plan is an immutable, ordered sequence of steps. Each step is one
variant of a closed, tagged union discriminated by ``verb``; the variant
carries its validated arguments. The orchestrator dispatches on the variant
type, so unknown verbs never reach execution.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Annotated, Any, ClassVar, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

PORT_PATTERN = re.compile(r"^\d{1,5}(/(tcp|udp|sctp))?$")
ENV_KEY_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_.\-]*$")


class StepBase(BaseModel):
    """Common fields and traits of all step variants.

    Attributes:
        line: Source line the step was parsed from (not part of the cache
            key).
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    # Needs a base image before it can run
    requires_image: ClassVar[bool] = True

    line: int | None = Field(default=None, exclude=True)

    def arguments(self) -> dict[str, Any]:
        """Return the step arguments used for cache keys and logging."""
        return self.model_dump(mode="json", exclude={"verb", "line", "body"})

    def describe(self) -> str:
        """Return a short human-readable rendering of the step."""
        args = " ".join(_render(v) for v in self.arguments().values())
        return f"{self.verb} {args}".rstrip()  # type: ignore[attr-defined]


def _render(value: Any) -> str:
    if isinstance(value, dict):
        return " ".join(f"{k}={v}" for k, v in value.items())
    if isinstance(value, list | tuple):
        return " ".join(str(v) for v in value)
    return str(value)


def _validate_pairs(values: dict[str, str]) -> dict[str, str]:
    if not values:
        raise ValueError("at least one KEY=VALUE pair is required")
    for key in values:
        if not ENV_KEY_PATTERN.match(key):
            raise ValueError(f"invalid key {key!r}")
    return values


def shell_form(value: Any) -> Any:
    """Turn a single command string into an argv run through /bin/sh -c."""
    if isinstance(value, str):
        return ("/bin/sh", "-c", value)
    if isinstance(value, list | tuple) and len(value) == 1:
        return ("/bin/sh", "-c", value[0])
    return value


class FromStep(StepBase):
    """Establish the base image."""

    requires_image: ClassVar[bool] = False

    verb: Literal["from"] = "from"
    image: str = Field(min_length=1)


class RunStep(StepBase):
    """Run a command in a container and commit the result."""

    verb: Literal["run"] = "run"
    command: tuple[str, ...] = Field(min_length=1)

    @field_validator("command", mode="before")
    @classmethod
    def validate_command(cls, v: Any) -> Any:
        """Accept a single shell string as well as an argv list."""
        return shell_form(v)


class CopyStep(StepBase):
    """Copy a file or directory from the plan context into the image."""

    verb: Literal["copy"] = "copy"
    source: str = Field(min_length=1)
    target: str

    @field_validator("target")
    @classmethod
    def validate_target(cls, v: str) -> str:
        """Validate target starts with /."""
        if not v.startswith("/"):
            raise ValueError("target must start with '/'")
        return v


class EnvStep(StepBase):
    """Set environment variables in the image configuration."""

    verb: Literal["env"] = "env"
    values: dict[str, str]

    @field_validator("values")
    @classmethod
    def validate_values(cls, v: dict[str, str]) -> dict[str, str]:
        """Validate KEY=VALUE pairs."""
        return _validate_pairs(v)


class LabelStep(StepBase):
    """Set labels in the image configuration."""

    verb: Literal["label"] = "label"
    values: dict[str, str]

    @field_validator("values")
    @classmethod
    def validate_values(cls, v: dict[str, str]) -> dict[str, str]:
        """Validate KEY=VALUE pairs."""
        return _validate_pairs(v)


class WorkdirStep(StepBase):
    """Set the working directory of the image."""

    verb: Literal["workdir"] = "workdir"
    path: str = Field(min_length=1)


class UserStep(StepBase):
    """Set the default user of the image."""

    verb: Literal["user"] = "user"
    user: str = Field(min_length=1)


class CmdStep(StepBase):
    """Set the default command of the image."""

    verb: Literal["cmd"] = "cmd"
    command: tuple[str, ...] = Field(min_length=1)

    @field_validator("command", mode="before")
    @classmethod
    def validate_command(cls, v: Any) -> Any:
        """Accept a single shell string as well as an argv list."""
        return shell_form(v)


class EntrypointStep(StepBase):
    """Set the entrypoint of the image."""

    verb: Literal["entrypoint"] = "entrypoint"
    command: tuple[str, ...] = Field(min_length=1)

    @field_validator("command", mode="before")
    @classmethod
    def validate_command(cls, v: Any) -> Any:
        """Accept a single shell string as well as an argv list."""
        return shell_form(v)


class ExposeStep(StepBase):
    """Declare ports exposed by the image."""

    verb: Literal["expose"] = "expose"
    ports: tuple[str, ...] = Field(min_length=1)

    @field_validator("ports")
    @classmethod
    def validate_ports(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        """Validate each port is PORT or PORT/PROTO."""
        for port in v:
            if not PORT_PATTERN.match(port):
                raise ValueError(f"invalid port {port!r}")
        return v


class TagStep(StepBase):
    """Tag the current image."""

    verb: Literal["tag"] = "tag"
    name: str = Field(min_length=1)


class DebugStep(StepBase):
    """Print the current image and an optional message."""

    requires_image: ClassVar[bool] = False

    verb: Literal["debug"] = "debug"
    message: str = ""


class InsideStep(StepBase):
    """Run nested steps with a working directory override."""

    verb: Literal["inside"] = "inside"
    path: str = Field(min_length=1)
    body: tuple[Step, ...] = ()


class WithUserStep(StepBase):
    """Run nested steps as another user."""

    verb: Literal["with_user"] = "with_user"
    user: str = Field(min_length=1)
    body: tuple[Step, ...] = ()


class GetenvStep(StepBase):
    """Query an environment variable of the building host."""

    requires_image: ClassVar[bool] = False

    verb: Literal["getenv"] = "getenv"
    name: str = Field(min_length=1)


class GetuidStep(StepBase):
    """Query the numeric id of a user inside the image."""

    verb: Literal["getuid"] = "getuid"
    name: str = Field(min_length=1)


class GetgidStep(StepBase):
    """Query the numeric id of a group inside the image."""

    verb: Literal["getgid"] = "getgid"
    name: str = Field(min_length=1)


class ReadStep(StepBase):
    """Query the content of a file inside the image."""

    verb: Literal["read"] = "read"
    path: str = Field(min_length=1)


Step = Annotated[
    Union[
        FromStep,
        RunStep,
        CopyStep,
        EnvStep,
        LabelStep,
        WorkdirStep,
        UserStep,
        CmdStep,
        EntrypointStep,
        ExposeStep,
        TagStep,
        DebugStep,
        InsideStep,
        WithUserStep,
        GetenvStep,
        GetuidStep,
        GetgidStep,
        ReadStep,
    ],
    Field(discriminator="verb"),
]

InsideStep.model_rebuild()
WithUserStep.model_rebuild()

VERBS: dict[str, type[StepBase]] = {
    "from": FromStep,
    "run": RunStep,
    "copy": CopyStep,
    "env": EnvStep,
    "label": LabelStep,
    "workdir": WorkdirStep,
    "user": UserStep,
    "cmd": CmdStep,
    "entrypoint": EntrypointStep,
    "expose": ExposeStep,
    "tag": TagStep,
    "debug": DebugStep,
    "inside": InsideStep,
    "with_user": WithUserStep,
    "getenv": GetenvStep,
    "getuid": GetuidStep,
    "getgid": GetgidStep,
    "read": ReadStep,
}

BLOCK_VERBS = frozenset({"inside", "with_user"})


class BuildPlan(BaseModel):
    """An immutable, ordered build plan.

    Attributes:
        name: Plan name (usually the file it was loaded from).
        context_dir: Directory that copy sources resolve against.
        steps: Steps in source order.
    """

    model_config = ConfigDict(frozen=True)

    name: str = "plan"
    context_dir: Path = Field(default_factory=Path.cwd)
    steps: tuple[Step, ...] = ()

    def __len__(self) -> int:
        return len(self.steps)


__all__ = [
    "BLOCK_VERBS",
    "VERBS",
    "BuildPlan",
    "CmdStep",
    "CopyStep",
    "DebugStep",
    "EntrypointStep",
    "EnvStep",
    "ExposeStep",
    "FromStep",
    "GetenvStep",
    "GetgidStep",
    "GetuidStep",
    "InsideStep",
    "LabelStep",
    "ReadStep",
    "RunStep",
    "Step",
    "StepBase",
    "TagStep",
    "UserStep",
    "WithUserStep",
    "WorkdirStep",
    "shell_form",
]
