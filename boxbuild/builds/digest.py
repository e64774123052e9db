"""Digests of plan context files.

This module handles:
- Resolving copy sources against the plan context directory
- Rejecting sources that escape the context
- Deterministic hashing of files and directory trees for cache keys
"""

from __future__ import annotations

import hashlib
import logging
import stat
from pathlib import Path

from boxbuild.errors import PlanError

logger = logging.getLogger(__name__)


def resolve_source(source: str, context_dir: Path) -> Path:
    """Resolve a copy source inside the plan context directory.

    Args:
        source: Source path as written in the plan.
        context_dir: Directory of the plan.

    Returns:
        The resolved source path.

    Raises:
        PlanError: If the source escapes the context or does not exist.
    """
    resolved_base = context_dir.resolve()
    resolved_path = (context_dir / source).resolve()

    try:
        resolved_path.relative_to(resolved_base)
    except ValueError:
        raise PlanError(
            f"copy source path traversal detected: {source} resolves outside {context_dir}"
        ) from None

    if not resolved_path.exists():
        raise PlanError(f"copy source not found: {source}")

    return resolved_path


def compute_tree_hash(path: Path) -> str:
    """Compute a deterministic hash of a file or directory tree.

    The hash is computed over:
    - Sorted file paths (relative to ``path``)
    - File contents
    - File modes (lower 9 bits: rwxrwxrwx)

    Args:
        path: File or directory to hash.

    Returns:
        SHA-256 hex digest.
    """
    hasher = hashlib.sha256()

    if not path.exists():
        return hasher.hexdigest()

    if path.is_file():
        files = [path]
        root = path.parent
    else:
        files = [p for p in sorted(path.rglob("*")) if p.is_file()]
        root = path

    for file in files:
        rel_path = file.relative_to(root).as_posix()
        mode = stat.S_IMODE(file.stat().st_mode)
        # Hash: path\0mode\0content
        hasher.update(rel_path.encode("utf-8"))
        hasher.update(b"\0")
        hasher.update(f"{mode:o}".encode())
        hasher.update(b"\0")
        hasher.update(file.read_bytes())
        hasher.update(b"\0")

    return hasher.hexdigest()


def digest_sources(sources: list[str], context_dir: Path) -> dict[str, str]:
    """Digest every copy source of a step.

    Args:
        sources: Source paths as written in the plan.
        context_dir: Directory of the plan.

    Returns:
        Mapping of source path to ``sha256:<hex>`` digest.
    """
    digests: dict[str, str] = {}
    for source in sources:
        resolved = resolve_source(source, context_dir)
        digests[source] = f"sha256:{compute_tree_hash(resolved)}"
        logger.debug("Digest of %s: %s", source, digests[source])
    return digests


__all__ = ["compute_tree_hash", "digest_sources", "resolve_source"]
