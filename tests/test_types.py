"""Tests for shared types module."""

import pytest

from boxbuild.errors import EngineError
from boxbuild.types import BASELINE, Baseline, BuildResult, Pending


class TestBuildResult:
    """Test BuildResult dataclass."""

    def test_default_result_succeeded(self) -> None:
        result = BuildResult()
        assert result.value == ""
        assert result.error is None
        assert result.succeeded is True

    def test_result_with_error(self) -> None:
        result = BuildResult(value="sha256:abc", error=EngineError("boom"))
        assert result.succeeded is False
        assert result.error is not None
        assert result.error.code == "engine_error"


class TestContinuation:
    """Test the Baseline / Pending continuation states."""

    def test_baseline_is_baseline(self) -> None:
        assert BASELINE.is_baseline is True
        assert BASELINE == Baseline()

    def test_pending_is_not_baseline(self) -> None:
        pending = Pending(buffer="run 'echo\n", reason="unterminated")
        assert pending.is_baseline is False
        assert pending.buffer == "run 'echo\n"

    def test_pending_is_frozen(self) -> None:
        pending = Pending(buffer="x")
        with pytest.raises(AttributeError):
            pending.buffer = "y"  # type: ignore[misc]
