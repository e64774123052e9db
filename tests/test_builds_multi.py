"""Tests for builds/multi.py module."""

import pytest
from conftest import FakeEngine, make_plan, quiet_logger

from boxbuild.builds.multi import BuildJob, MultiBuild
from boxbuild.builds.orchestrator import BuildConfig, Builder
from boxbuild.errors import EngineError


def make_job(name: str, source: str, fail: set[str] | None = None) -> BuildJob:
    """Create a job with its own fake engine."""
    engine = FakeEngine()
    engine.fail_commands = fail or set()
    builder = Builder(engine, BuildConfig(name=name, output=quiet_logger(name)))
    return BuildJob(builder, make_plan(source, name=name))


class TestMultiBuild:
    """Test concurrent builds."""

    def test_all_succeed(self) -> None:
        jobs = [make_job(f"p{i}", "from debian\nrun make\n") for i in range(3)]
        multi = MultiBuild(jobs)

        multi.start()
        results = multi.wait()

        assert len(results) == 3
        assert all(r.succeeded for r in results)
        for job, result in zip(jobs, results, strict=True):
            assert result.value == job.builder.image_reference

    def test_failure_isolated(self) -> None:
        jobs = [
            make_job("first", "from debian\nrun make\n"),
            make_job("second", "from debian\nrun broken\n", fail={"broken"}),
            make_job("third", "from alpine\nrun make\n"),
        ]
        multi = MultiBuild(jobs)
        multi.start()

        with pytest.raises(EngineError):
            multi.wait()

        first, second, third = multi.results
        assert first is not None and first.succeeded
        assert third is not None and third.succeeded
        assert second is not None and isinstance(second.error, EngineError)
        assert jobs[0].builder.result.value.startswith("sha256:")
        assert jobs[2].builder.result.value.startswith("sha256:")
        assert jobs[1].builder.result.error is second.error

    def test_wait_starts_jobs(self) -> None:
        multi = MultiBuild([make_job("only", "from debian\n")])
        results = multi.wait()
        assert results[0].succeeded

    def test_start_twice_rejected(self) -> None:
        multi = MultiBuild([make_job("only", "from debian\n")])
        multi.start()
        with pytest.raises(RuntimeError, match="already started"):
            multi.start()
        multi.wait()

    def test_no_jobs(self) -> None:
        assert MultiBuild([]).wait() == []
