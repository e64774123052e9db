"""Concurrent execution of independent build plans.

Each job pairs a builder with its plan; every builder has its own engine
adapter, cache store and cancel scope, so one plan's failure never cancels
or blocks the others.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass

from boxbuild.builds.orchestrator import Builder
from boxbuild.errors import BoxError
from boxbuild.plan.steps import BuildPlan
from boxbuild.types import BuildResult

logger = logging.getLogger(__name__)


@dataclass
class BuildJob:
    """One plan to build with its own builder."""

    builder: Builder
    plan: BuildPlan


class MultiBuild:
    """Runs several build jobs concurrently, one thread per plan.

    Attributes:
        jobs: Jobs in submission order.
        results: Result per job, in submission order; None until the job
            finished.
    """

    def __init__(self, jobs: Sequence[BuildJob]) -> None:
        self.jobs = list(jobs)
        self.results: list[BuildResult | None] = [None] * len(self.jobs)
        self._executor: ThreadPoolExecutor | None = None
        self._futures: dict[Future[BuildResult], int] = {}

    def start(self) -> None:
        """Submit every job to the thread pool.

        Raises:
            RuntimeError: If the jobs were already started.
        """
        if self._executor is not None:
            raise RuntimeError("multi-build already started")
        self._executor = ThreadPoolExecutor(
            max_workers=max(len(self.jobs), 1), thread_name_prefix="build"
        )
        for index, job in enumerate(self.jobs):
            future = self._executor.submit(job.builder.run, job.plan)
            self._futures[future] = index
        logger.info("Started %d build(s)", len(self.jobs))

    def wait(self) -> list[BuildResult]:
        """Wait until every job finished.

        Returns:
            Results in submission order.

        Raises:
            BoxError: The first failure, in completion order, once every job
                has finished.
        """
        if self._executor is None:
            self.start()

        first_error: BoxError | None = None
        for future in as_completed(self._futures):
            index = self._futures[future]
            try:
                result = future.result()
            except Exception as e:
                logger.exception("Build %s crashed", self.jobs[index].plan.name)
                result = BuildResult(error=BoxError(f"internal error: {e}"))
            self.results[index] = result
            if result.error is not None and first_error is None:
                first_error = result.error

        if self._executor is not None:
            self._executor.shutdown(wait=True)

        if first_error is not None:
            raise first_error
        return [result for result in self.results if result is not None]


__all__ = ["BuildJob", "MultiBuild"]
