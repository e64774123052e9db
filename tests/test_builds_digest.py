"""Tests for builds/digest.py module."""

import os
from pathlib import Path

import pytest

from boxbuild.builds.digest import compute_tree_hash, digest_sources, resolve_source
from boxbuild.errors import PlanError


@pytest.fixture
def context_dir(tmp_path: Path) -> Path:
    """Create a plan context with a file and a directory."""
    (tmp_path / "app.conf").write_text("listen 80\n")
    (tmp_path / "www").mkdir()
    (tmp_path / "www" / "index.html").write_text("<h1>hi</h1>\n")
    (tmp_path / "www" / "css").mkdir()
    (tmp_path / "www" / "css" / "site.css").write_text("body {}\n")
    return tmp_path


class TestResolveSource:
    """Test resolving copy sources."""

    def test_resolves_inside_context(self, context_dir: Path) -> None:
        assert resolve_source("app.conf", context_dir) == (context_dir / "app.conf").resolve()

    def test_rejects_traversal(self, context_dir: Path) -> None:
        with pytest.raises(PlanError, match="path traversal"):
            resolve_source("../etc/passwd", context_dir)

    def test_missing_source(self, context_dir: Path) -> None:
        with pytest.raises(PlanError, match="copy source not found"):
            resolve_source("missing.txt", context_dir)


class TestComputeTreeHash:
    """Test deterministic hashing."""

    def test_same_content_same_hash(self, context_dir: Path) -> None:
        assert compute_tree_hash(context_dir / "www") == compute_tree_hash(context_dir / "www")

    def test_content_change_changes_hash(self, context_dir: Path) -> None:
        before = compute_tree_hash(context_dir / "www")
        (context_dir / "www" / "css" / "site.css").write_text("body { color: red }\n")
        assert compute_tree_hash(context_dir / "www") != before

    def test_mode_change_changes_hash(self, context_dir: Path) -> None:
        path = context_dir / "app.conf"
        before = compute_tree_hash(path)
        os.chmod(path, 0o755)
        assert compute_tree_hash(path) != before

    def test_missing_path_hashes_empty(self, tmp_path: Path) -> None:
        assert compute_tree_hash(tmp_path / "nope") == compute_tree_hash(tmp_path / "nada")


class TestDigestSources:
    """Test digesting copy sources."""

    def test_digest_sources(self, context_dir: Path) -> None:
        digests = digest_sources(["app.conf", "www"], context_dir)
        assert set(digests) == {"app.conf", "www"}
        assert all(d.startswith("sha256:") for d in digests.values())
