"""User-facing build output.

Build progress is printed through a rich Console with one BuildLogger per
plan, so the output of concurrent builds stays attributable to its plan.
Diagnostics go through the standard ``logging`` module instead.
"""

from __future__ import annotations

from rich.console import Console
from rich.markup import escape

from boxbuild.errors import BoxError, BuildCancelledError
from boxbuild.plan.steps import StepBase

# sha256: plus 12 hex characters, as engines usually display image ids
SHORT_REF_LENGTH = 19
MAX_STEP_WIDTH = 100


def short_ref(image_ref: str) -> str:
    """Shorten a content-addressed image reference for display."""
    if image_ref.startswith("sha256:"):
        return image_ref[:SHORT_REF_LENGTH]
    return image_ref


class BuildLogger:
    """Prints the progress of one build plan.

    Attributes:
        name: Plan name shown as a prefix when set.
        console: Console the output is written to.
        trim: Shorten image references and long step descriptions.
        show_run: Print the output of run commands.
    """

    def __init__(
        self,
        name: str = "",
        console: Console | None = None,
        trim: bool = True,
        show_run: bool = True,
    ) -> None:
        self.name = name
        self.console = console or Console()
        self.trim = trim
        self.show_run = show_run

    def _prefix(self) -> str:
        return f"[cyan]\\[{escape(self.name)}][/cyan] " if self.name else ""

    def _ref(self, image_ref: str) -> str:
        return short_ref(image_ref) if self.trim else image_ref

    def _describe(self, step: StepBase) -> str:
        text = step.describe()
        if self.trim and len(text) > MAX_STEP_WIDTH:
            text = text[: MAX_STEP_WIDTH - 3] + "..."
        return escape(text)

    def step(self, step: StepBase) -> None:
        """Announce a step about to be executed."""
        self.console.print(f"{self._prefix()}[bold]+ {self._describe(step)}[/bold]")

    def cache_hit(self, step: StepBase, image_ref: str) -> None:
        """Report a step satisfied from the layer cache."""
        self.console.print(
            f"{self._prefix()}[dim]+ {self._describe(step)} "
            f"(cached {self._ref(image_ref)})[/dim]"
        )

    def output(self, text: str) -> None:
        """Print the output of a run command."""
        if not self.show_run:
            return
        prefix = self._prefix()
        for line in text.rstrip("\n").splitlines():
            self.console.print(f"{prefix}{escape(line)}", highlight=False)

    def debug(self, image_ref: str, message: str = "") -> None:
        """Print the current image for a debug step."""
        suffix = f" {escape(message)}" if message else ""
        current = self._ref(image_ref) if image_ref else "(no image)"
        self.console.print(f"{self._prefix()}[magenta]debug[/magenta] {current}{suffix}")

    def eval_response(self, value: str) -> None:
        """Print the value of an interactively evaluated statement."""
        if value:
            self.console.print(escape(value), highlight=False)

    def tag(self, name: str, image_ref: str) -> None:
        """Report a tagged image."""
        self.console.print(
            f"{self._prefix()}[green]Tagged {self._ref(image_ref)} as {escape(name)}[/green]"
        )

    def finish(self, image_ref: str) -> None:
        """Report the final image of a build."""
        if image_ref:
            self.console.print(f"{self._prefix()}[green]Built {self._ref(image_ref)}[/green]")
        else:
            self.console.print(f"{self._prefix()}[yellow]No image was built[/yellow]")

    def error(self, error: BoxError) -> None:
        """Report the error that ended a build or statement."""
        if isinstance(error, BuildCancelledError):
            self.console.print(f"{self._prefix()}[yellow]{escape(error.message)}[/yellow]")
            return
        self.console.print(f"{self._prefix()}[red]Error: {escape(error.message)}[/red]")


__all__ = ["BuildLogger", "short_ref"]
