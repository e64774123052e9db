"""Cancellation coordination for builds and interactive statements.

This module handles:
- Cancel scopes threaded into every engine call
- Runner handles representing in-flight, externally cancellable builds
- A process-wide coordinator that turns termination requests (signals or
  explicit calls) into targeted cancellation

The coordinator is constructed once per process by the CLI and passed to
every component that registers a scope; nothing here is a module global.
"""

from __future__ import annotations

import logging
import signal
import sys
import threading
from collections.abc import Callable
from enum import Enum

from boxbuild.errors import BuildCancelledError

logger = logging.getLogger(__name__)


class CoordinatorMode(str, Enum):
    """Operating mode of the cancellation coordinator."""

    TERMINATE = "terminate"
    INTERACTIVE = "interactive"


class CancelScope:
    """Cancellation context for one build or one interactive statement."""

    def __init__(self, name: str = "") -> None:
        self.name = name
        self._event = threading.Event()

    def cancel(self) -> None:
        """Cancel the scope. Safe to call more than once."""
        if not self._event.is_set():
            logger.debug("Cancelling scope %s", self.name or id(self))
        self._event.set()

    @property
    def cancelled(self) -> bool:
        """Whether the scope has been cancelled."""
        return self._event.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the scope is cancelled or the timeout expires.

        Returns:
            True if the scope was cancelled.
        """
        return self._event.wait(timeout)

    def raise_if_cancelled(self) -> None:
        """Raise BuildCancelledError if the scope was cancelled."""
        if self._event.is_set():
            raise BuildCancelledError(
                f"{self.name} canceled" if self.name else "operation canceled"
            )


class RunnerHandle:
    """Liveness handle for one in-flight build.

    Closing the handle tells the owning build to stop before its next step.
    """

    def __init__(self, name: str = "") -> None:
        self.name = name
        self._closed = threading.Event()
        self._once = threading.Lock()
        self.close_count = 0

    def close(self) -> None:
        """Close the handle. Only the first call has an effect."""
        # Non-blocking acquire never waits, so a signal handler may close
        # the handle while the interrupted code is closing it too
        if not self._once.acquire(blocking=False):
            return
        self.close_count += 1
        self._closed.set()

    @property
    def closed(self) -> bool:
        """Whether the handle has been closed."""
        return self._closed.is_set()


class Registration:
    """A cancel function or runner handle held by the coordinator."""

    def __init__(
        self,
        coordinator: CancellationCoordinator,
        cancel_fn: Callable[[], None] | None = None,
        runner: RunnerHandle | None = None,
    ) -> None:
        self._coordinator = coordinator
        self.cancel_fn = cancel_fn
        self.runner = runner
        self._fired = threading.Lock()

    def fire(self) -> None:
        """Call the cancel function or close the runner, at most once."""
        if not self._fired.acquire(blocking=False):
            return
        if self.cancel_fn is not None:
            self.cancel_fn()
        if self.runner is not None:
            self.runner.close()

    def release(self) -> None:
        """Deregister from the coordinator. No-op after a trigger."""
        self._coordinator._release(self)


class CancellationCoordinator:
    """Process-wide registry of cancel functions and runner handles.

    In TERMINATE mode a trigger is followed by process exit; in INTERACTIVE
    mode only the currently registered scope is cancelled and the process
    keeps running.

    trigger() may run from a signal handler while the main thread is inside
    register() or release(): the registry lock is reentrant, the lists are
    only mutated in place and a registration fires at most once.
    """

    def __init__(
        self,
        mode: CoordinatorMode = CoordinatorMode.TERMINATE,
        exit_fn: Callable[[int], None] | None = None,
    ) -> None:
        self.mode = mode
        self._exit_fn = exit_fn if exit_fn is not None else sys.exit
        self._lock = threading.RLock()
        self._funcs: list[Registration] = []
        self._runners: list[Registration] = []
        self._exiting = threading.Lock()

    def register(self, cancel_fn: Callable[[], None]) -> Registration:
        """Register a cancel function to be called on trigger.

        Args:
            cancel_fn: Callable invoked exactly once when triggered.

        Returns:
            Registration that can be released on completion.
        """
        registration = Registration(self, cancel_fn=cancel_fn)
        with self._lock:
            self._funcs.append(registration)
        return registration

    def register_runner(self, handle: RunnerHandle) -> Registration:
        """Register a runner handle to be closed on trigger.

        Args:
            handle: Runner handle closed exactly once when triggered.

        Returns:
            Registration that can be released on completion.
        """
        registration = Registration(self, runner=handle)
        with self._lock:
            self._runners.append(registration)
        return registration

    def _release(self, registration: Registration) -> None:
        with self._lock:
            for registry in (self._funcs, self._runners):
                try:
                    registry.remove(registration)
                except ValueError:
                    pass

    @property
    def pending(self) -> int:
        """Number of registrations currently held."""
        with self._lock:
            return len(self._funcs) + len(self._runners)

    def trigger(self) -> None:
        """Cancel everything registered and clear the registries.

        Every cancel function is called once and every runner closed once;
        repeated triggers find empty registries. In TERMINATE mode the exit
        function is invoked after the first trigger.
        """
        with self._lock:
            funcs = list(self._funcs)
            self._funcs.clear()
            runners = list(self._runners)
            self._runners.clear()

        logger.info(
            "Cancellation triggered: %d scope(s), %d runner(s)",
            len(funcs),
            len(runners),
        )
        for registration in (*funcs, *runners):
            registration.fire()

        if self.mode is CoordinatorMode.TERMINATE and self._exiting.acquire(blocking=False):
            self._exit_fn(1)

    def install_signal_handlers(self) -> None:
        """Route SIGINT and SIGTERM to trigger().

        Must be called from the main thread.
        """

        def _handler(signum: int, frame: object) -> None:
            logger.debug("Received signal %d", signum)
            self.trigger()

        signal.signal(signal.SIGINT, _handler)
        signal.signal(signal.SIGTERM, _handler)


__all__ = [
    "CancelScope",
    "CancellationCoordinator",
    "CoordinatorMode",
    "Registration",
    "RunnerHandle",
]
