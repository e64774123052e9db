"""Interactive build session.

A producer thread reads one line at a time and hands it to the session loop
through a queue of depth one; it does not read the next line until the loop
signals that the previous one was processed. Every statement runs under a
fresh cancel scope registered with the coordinator (in INTERACTIVE mode), so
an interrupt cancels only the statement in progress.
"""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable

from rich.console import Console
from rich.markup import escape

from boxbuild.cancel import CancellationCoordinator, CancelScope
from boxbuild.errors import BoxError, BuildCancelledError
from boxbuild.evaluator import ScriptEvaluator
from boxbuild.types import BASELINE, Continuation

logger = logging.getLogger(__name__)

PROMPT = "box> "
CONTINUATION_PROMPT = "box*> "

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_INTERNAL_ERROR = 2

HELP_TEXT = """
Type box statements one at a time; multi-line statements are continued
until they are complete.

* If you ever need to reset your session, type "reset".
* If you need to cancel a statement, press Control+C.
* Press ^D or type "quit" or "exit" to leave.
"""

# Queue item marking the end of input
_EOF = None


class InteractiveSession:
    """Read-evaluate-print loop over a ScriptEvaluator.

    Args:
        factory: Creates a fresh evaluator (used at start and on reset).
        coordinator: Coordinator in INTERACTIVE mode.
        read_line: Reads one line given a prompt; raises EOFError at end of
            input. Defaults to ``console.input``.
        console: Console for session output.
        poll_interval: Seconds between cancellation checks while waiting
            for input.
    """

    def __init__(
        self,
        factory: Callable[[], ScriptEvaluator],
        coordinator: CancellationCoordinator,
        read_line: Callable[[str], str] | None = None,
        console: Console | None = None,
        poll_interval: float = 0.1,
    ) -> None:
        self.console = console or Console()
        self._factory = factory
        self._coordinator = coordinator
        self._read_line = read_line or self.console.input
        self._poll_interval = poll_interval
        self._lines: queue.Queue[str | None] = queue.Queue(maxsize=1)
        self._ready = threading.Event()
        self._prompt = PROMPT
        self._evaluator: ScriptEvaluator | None = None

    @property
    def prompt(self) -> str:
        """Prompt shown for the next line."""
        return self._prompt

    def _produce(self) -> None:
        while True:
            try:
                line: str | None = self._read_line(self._prompt)
            except EOFError:
                line = _EOF
            except Exception:
                logger.exception("Reading input failed")
                line = _EOF
            self._lines.put(line)
            if line is _EOF:
                return
            self._ready.wait()
            self._ready.clear()

    def _next_line(self, scope: CancelScope) -> str | None:
        while True:
            scope.raise_if_cancelled()
            try:
                return self._lines.get(timeout=self._poll_interval)
            except queue.Empty:
                continue

    def print_help(self) -> None:
        """Print the session help text."""
        self.console.print(HELP_TEXT, highlight=False)

    def reset(self) -> None:
        """Close the current evaluator and start over with a fresh one.

        Raises:
            BoxError: If the new evaluator cannot be created; the session
                is then left without one.
        """
        if self._evaluator is not None:
            self._evaluator.close()
            self._evaluator = None
        self._evaluator = self._factory()
        logger.info("Session reset")

    def run(self) -> int:
        """Run the session until end of input or quit.

        Returns:
            Exit code: 0 on end of input or quit, 1 when a reset cannot
            create a new evaluator, 2 on an internal fault.

        Raises:
            BoxError: If the first evaluator cannot be created.
        """
        self._evaluator = self._factory()
        self.print_help()
        producer = threading.Thread(target=self._produce, name="repl-input", daemon=True)
        producer.start()
        try:
            return self._loop()
        except Exception as e:
            logger.debug("Interpreter error", exc_info=True)
            if self._evaluator is not None:
                self._evaluator.close()
            self.console.print(f"Aborting due to interpreter error: {escape(str(e))}")
            return EXIT_INTERNAL_ERROR

    def _loop(self) -> int:
        continuation: Continuation = BASELINE

        while True:
            scope = CancelScope("statement")
            registration = self._coordinator.register(scope.cancel)
            assert self._evaluator is not None
            self._evaluator.use_scope(scope)

            try:
                try:
                    line = self._next_line(scope)
                except BuildCancelledError:
                    self.console.print("Statement canceled.")
                    continuation = BASELINE
                    self._prompt = PROMPT
                    continue

                if line is _EOF:
                    self._evaluator.close()
                    return EXIT_OK

                try:
                    continuation, done = self._handle(line, continuation)
                finally:
                    self._prompt = PROMPT if continuation.is_baseline else CONTINUATION_PROMPT
                    self._ready.set()
                if self._evaluator is None:
                    return EXIT_ERROR
                if done:
                    self._evaluator.close()
                    return EXIT_OK
            finally:
                registration.release()

    def _handle(self, line: str, continuation: Continuation) -> tuple[Continuation, bool]:
        assert self._evaluator is not None
        command = line.strip()

        if continuation.is_baseline:
            if command in ("quit", "exit"):
                return BASELINE, True
            if command == "help":
                self.print_help()
                return BASELINE, False
            if command == "reset":
                try:
                    self.reset()
                except BoxError as e:
                    self.console.print(f"[red]+++ Error: {escape(e.message)}[/red]")
                return BASELINE, False

        try:
            continuation = self._evaluator.run_fragment(line, continuation)
        except BuildCancelledError:
            self.console.print("Statement canceled.")
            return BASELINE, False
        except BoxError as e:
            self.console.print(f"[red]+++ Error: {escape(e.message)}[/red]")
            return BASELINE, False

        if continuation.is_baseline:
            value = self._evaluator.last_result().value
            self._evaluator.builder.output.eval_response(value or "Executed!")
        return continuation, False


__all__ = [
    "CONTINUATION_PROMPT",
    "EXIT_ERROR",
    "EXIT_INTERNAL_ERROR",
    "EXIT_OK",
    "PROMPT",
    "InteractiveSession",
]
