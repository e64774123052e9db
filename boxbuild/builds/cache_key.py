"""Cache key computation for build steps.

This module handles:
- Canonical input snapshot creation for one image-producing step
- Deterministic hash computation over normalized inputs

A key covers the parent image, the step arguments, digests of any files the
step copies from the plan context, and the active block overrides. Because
the parent reference is part of every key, a key can only match an entry
produced on top of the same image.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import asdict, dataclass, field
from typing import Any

from boxbuild.plan.steps import StepBase

# Schema version for cache key format; bump when cache key format changes
CACHE_KEY_SCHEMA_VERSION = "1"


@dataclass
class StepInputs:
    """Canonical representation of all inputs of one build step.

    This structure is serialized to JSON and hashed to produce the cache
    key.

    Attributes:
        schema_version: Version of cache key schema.
        parent: Image reference the step is applied to.
        verb: Step verb.
        arguments: Normalized step arguments.
        file_digests: Digest per copied source path.
        context: Active working directory / user overrides.
    """

    schema_version: str = CACHE_KEY_SCHEMA_VERSION
    parent: str = ""
    verb: str = ""
    arguments: dict[str, Any] = field(default_factory=dict)
    file_digests: dict[str, str] = field(default_factory=dict)
    context: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)


def create_step_inputs(
    step: StepBase,
    parent: str,
    file_digests: dict[str, str] | None = None,
    context: dict[str, str] | None = None,
) -> StepInputs:
    """Create canonical inputs for a step.

    Args:
        step: Step variant about to be executed.
        parent: Current image reference.
        file_digests: Digests of files the step reads from the context.
        context: Block overrides in effect (``workdir``, ``user``).

    Returns:
        StepInputs instance.
    """
    return StepInputs(
        parent=parent,
        verb=step.verb,  # type: ignore[attr-defined]
        arguments=step.arguments(),
        file_digests=dict(sorted((file_digests or {}).items())),
        context={k: v for k, v in sorted((context or {}).items()) if v},
    )


def compute_cache_key(inputs: StepInputs) -> str:
    """Compute a cache key hash from step inputs.

    The cache key is a SHA-256 hash of the canonical JSON representation
    of the inputs.

    Args:
        inputs: StepInputs instance.

    Returns:
        Cache key as hex string (sha256:...).
    """
    canonical_json = json.dumps(
        inputs.to_dict(),
        sort_keys=True,
        separators=(",", ":"),
    )
    hash_bytes = hashlib.sha256(canonical_json.encode("utf-8")).hexdigest()
    return f"sha256:{hash_bytes}"


def compute_step_key(
    step: StepBase,
    parent: str,
    file_digests: dict[str, str] | None = None,
    context: dict[str, str] | None = None,
) -> tuple[str, StepInputs]:
    """Convenience function to compute a cache key directly from a step.

    Returns:
        Tuple of (cache_key, StepInputs).
    """
    inputs = create_step_inputs(step, parent, file_digests, context)
    return compute_cache_key(inputs), inputs


__all__ = [
    "CACHE_KEY_SCHEMA_VERSION",
    "StepInputs",
    "compute_cache_key",
    "compute_step_key",
    "create_step_inputs",
]
