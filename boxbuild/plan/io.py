"""Build plan loading.

This module provides helpers for loading build plans from box scripts and
from structured YAML/JSON plan files. Structured plans use the same step
variants as scripts (``{verb: from, image: debian}``).
"""

import json
import logging
from collections.abc import Collection, Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from boxbuild.errors import ConfigError, PlanError
from boxbuild.plan.parser import VARIABLE_PATTERN, parse_source
from boxbuild.plan.steps import BuildPlan, Step, StepBase

logger = logging.getLogger(__name__)

STRUCTURED_SUFFIXES = {".yaml", ".yml", ".json"}


class PlanFileSchema(BaseModel):
    """Schema of a structured (YAML/JSON) plan file."""

    model_config = ConfigDict(extra="forbid")

    steps: list[Step] = Field(default_factory=list)


def load_yaml(path: Path) -> Any:
    """Load a YAML file and return its contents.

    Args:
        path: Path to the YAML file.

    Returns:
        Parsed YAML content.

    Raises:
        PlanError: If the file is not valid YAML.
    """
    try:
        with open(path, encoding="utf-8") as f:
            return yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise PlanError(f"invalid YAML: {e}", filename=str(path)) from None


def load_json(path: Path) -> Any:
    """Load a JSON file and return its contents.

    Args:
        path: Path to the JSON file.

    Returns:
        Parsed JSON content.

    Raises:
        PlanError: If the file is not valid JSON.
    """
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        raise PlanError(f"invalid JSON: {e}", filename=str(path)) from None


def interpolate_data(data: Any, variables: Mapping[str, str]) -> Any:
    """Recursively interpolate ``${NAME}`` references in string values.

    Args:
        data: Parsed structured plan data.
        variables: Variables supplied to the build.

    Returns:
        Data with every string value interpolated.

    Raises:
        PlanError: If a referenced variable is not defined.
    """
    if isinstance(data, str):

        def _replace(match: Any) -> str:
            name = match.group(1)
            if name not in variables:
                raise PlanError(f"undefined variable {name!r}")
            return variables[name]

        return VARIABLE_PATTERN.sub(_replace, data)
    if isinstance(data, list):
        return [interpolate_data(item, variables) for item in data]
    if isinstance(data, dict):
        return {key: interpolate_data(value, variables) for key, value in data.items()}
    return data


def _drop_omitted(steps: list[StepBase], omit: Collection[str]) -> list[StepBase]:
    kept: list[StepBase] = []
    for step in steps:
        if step.verb in omit:  # type: ignore[attr-defined]
            continue
        body = getattr(step, "body", None)
        if body:
            step = step.model_copy(update={"body": tuple(_drop_omitted(list(body), omit))})
        kept.append(step)
    return kept


def parse_structured(
    data: Any,
    variables: Mapping[str, str] | None = None,
    omit: Collection[str] = (),
) -> list[StepBase]:
    """Validate structured plan data into steps.

    Args:
        data: A mapping with a ``steps`` list, or a bare list of steps.
        variables: Variables for interpolation.
        omit: Verbs to drop.

    Returns:
        Steps in order.

    Raises:
        PlanError: If the data does not match the plan schema.
    """
    if data is None:
        data = {}
    if isinstance(data, list):
        data = {"steps": data}
    if not isinstance(data, dict):
        raise PlanError(f"Expected a mapping or list, got {type(data).__name__}")

    data = interpolate_data(data, variables or {})
    try:
        schema = PlanFileSchema.model_validate(data)
    except ValidationError as e:
        raise PlanError(f"invalid plan: {e}") from None
    return _drop_omitted(list(schema.steps), omit)


def load_plan(
    path: str | Path,
    variables: Mapping[str, str] | None = None,
    omit: Collection[str] = (),
) -> BuildPlan:
    """Load a build plan from a file.

    Files ending in .yaml, .yml or .json are structured plans; anything else
    is parsed as a box script.

    Args:
        path: Path to the plan file.
        variables: Variables for interpolation.
        omit: Verbs to drop from the plan.

    Returns:
        Immutable BuildPlan whose context is the file's directory.

    Raises:
        ConfigError: If the file does not exist or cannot be read.
        PlanError: If the plan is invalid or incomplete.
    """
    file_path = Path(path)
    if not file_path.is_file():
        raise ConfigError(f"Plan file not found: {file_path}")

    if file_path.suffix.lower() in STRUCTURED_SUFFIXES:
        if file_path.suffix.lower() == ".json":
            data = load_json(file_path)
        else:
            data = load_yaml(file_path)
        try:
            steps = parse_structured(data, variables, omit)
        except PlanError as e:
            raise PlanError(
                e.detail, line=e.line, filename=str(file_path)
            ) from None
    else:
        try:
            source = file_path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(f"Cannot read plan file {file_path}: {e}") from e
        try:
            steps = parse_source(source, variables, omit)
        except PlanError as e:
            raise PlanError(
                e.detail, line=e.line, filename=str(file_path), code=e.code
            ) from None

    logger.debug("Loaded plan %s with %d step(s)", file_path, len(steps))
    return BuildPlan(
        name=str(file_path),
        context_dir=file_path.resolve().parent,
        steps=tuple(steps),
    )


__all__ = [
    "STRUCTURED_SUFFIXES",
    "PlanFileSchema",
    "interpolate_data",
    "load_json",
    "load_plan",
    "load_yaml",
    "parse_structured",
]
