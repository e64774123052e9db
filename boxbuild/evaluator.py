"""Script evaluation on top of the build orchestrator.

The evaluator runs either a whole plan file or one fragment of script text
at a time. Fragments use a continuation protocol: a syntactically incomplete
fragment is not an error but a Pending continuation that the caller passes
back with the next fragment.
"""

from __future__ import annotations

import logging
from collections.abc import Collection, Mapping
from pathlib import Path

from boxbuild.builds.orchestrator import Builder
from boxbuild.cancel import CancelScope
from boxbuild.errors import BoxError, IncompleteStatementError
from boxbuild.plan.io import load_plan
from boxbuild.plan.parser import parse_source
from boxbuild.plan.steps import BuildPlan
from boxbuild.types import BASELINE, BuildResult, Continuation, Pending

logger = logging.getLogger(__name__)


class ScriptEvaluator:
    """Evaluates box scripts through a Builder.

    Attributes:
        builder: Orchestrator that executes the parsed steps.
        variables: Variables available for interpolation.
        omit: Verbs dropped from every parsed plan or fragment.
    """

    def __init__(
        self,
        builder: Builder,
        variables: Mapping[str, str] | None = None,
        omit: Collection[str] = (),
    ) -> None:
        self.builder = builder
        self.variables = dict(variables or {})
        self.omit = tuple(omit)
        self._last = BuildResult()

    def load(self, path: str | Path) -> BuildPlan:
        """Load a plan file with this evaluator's variables and omissions.

        Raises:
            ConfigError: If the file does not exist.
            PlanError: If the plan is invalid.
        """
        return load_plan(path, self.variables, self.omit)

    def run_script(self, path: str | Path) -> BuildResult:
        """Load and run a whole plan file.

        Args:
            path: Plan file to run.

        Returns:
            BuildResult of the run.

        Raises:
            BoxError: The error that ended the build.
        """
        plan = self.load(path)
        result = self.builder.run(plan)
        self._last = result
        if result.error is not None:
            raise result.error
        return result

    def run_fragment(
        self, text: str, continuation: Continuation = BASELINE
    ) -> Continuation:
        """Evaluate one fragment of script text.

        Args:
            text: Newly received text (usually one line).
            continuation: State returned by the previous call.

        Returns:
            BASELINE when every statement was executed, or Pending holding
            the buffered source when the statement is not complete yet.

        Raises:
            BoxError: If the source is invalid or a statement fails. The
                buffered source is discarded.
        """
        prefix = continuation.buffer if isinstance(continuation, Pending) else ""
        source = f"{prefix}{text}\n"

        try:
            steps = parse_source(source, self.variables, self.omit)
        except IncompleteStatementError as e:
            logger.debug("Incomplete statement: %s", e.detail)
            return Pending(buffer=source, reason=e.detail)

        value = ""
        try:
            for step in steps:
                value = self.builder.execute(step)
        except BoxError as e:
            self._last = BuildResult(value=self.builder.image_reference, error=e)
            raise

        self._last = BuildResult(value=value)
        return BASELINE

    def last_result(self) -> BuildResult:
        """Result of the last script run or completed fragment."""
        return self._last

    def use_scope(self, scope: CancelScope) -> None:
        """Install the cancel scope for the next statement."""
        self.builder.use_scope(scope)

    def close(self) -> None:
        """Close the builder and its engine adapter."""
        self.builder.close()


__all__ = ["ScriptEvaluator"]
