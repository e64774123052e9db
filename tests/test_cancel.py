"""Tests for cancel.py module."""

import signal
import threading
from unittest.mock import MagicMock

import pytest

from boxbuild.cancel import (
    CancellationCoordinator,
    CancelScope,
    CoordinatorMode,
    RunnerHandle,
)
from boxbuild.errors import BuildCancelledError


class TestCancelScope:
    """Test cancel scopes."""

    def test_initial_state(self) -> None:
        scope = CancelScope("build")
        assert not scope.cancelled
        scope.raise_if_cancelled()

    def test_cancel(self) -> None:
        scope = CancelScope("build")
        scope.cancel()
        scope.cancel()

        assert scope.cancelled
        with pytest.raises(BuildCancelledError, match="build canceled"):
            scope.raise_if_cancelled()

    def test_unnamed_message(self) -> None:
        scope = CancelScope()
        scope.cancel()
        with pytest.raises(BuildCancelledError, match="operation canceled"):
            scope.raise_if_cancelled()

    def test_wait(self) -> None:
        scope = CancelScope()
        assert scope.wait(0.01) is False

        threading.Timer(0.01, scope.cancel).start()
        assert scope.wait(5) is True


class TestRunnerHandle:
    """Test runner handles."""

    def test_close_once(self) -> None:
        handle = RunnerHandle("build")
        handle.close()
        handle.close()

        assert handle.closed
        assert handle.close_count == 1


class TestCoordinator:
    """Test the cancellation coordinator."""

    def test_trigger_interactive(self) -> None:
        coordinator = CancellationCoordinator(CoordinatorMode.INTERACTIVE)
        first, second = MagicMock(), MagicMock()
        runners = [RunnerHandle("a"), RunnerHandle("b")]

        coordinator.register(first)
        coordinator.register(second)
        for runner in runners:
            coordinator.register_runner(runner)
        assert coordinator.pending == 4

        coordinator.trigger()
        coordinator.trigger()

        first.assert_called_once_with()
        second.assert_called_once_with()
        assert all(r.close_count == 1 for r in runners)
        assert coordinator.pending == 0

    def test_terminate_exits_once(self) -> None:
        exit_fn = MagicMock()
        coordinator = CancellationCoordinator(CoordinatorMode.TERMINATE, exit_fn=exit_fn)
        cancel_fn = MagicMock()
        coordinator.register(cancel_fn)

        coordinator.trigger()
        coordinator.trigger()

        cancel_fn.assert_called_once_with()
        exit_fn.assert_called_once_with(1)

    def test_interactive_does_not_exit(self) -> None:
        exit_fn = MagicMock()
        coordinator = CancellationCoordinator(CoordinatorMode.INTERACTIVE, exit_fn=exit_fn)

        coordinator.trigger()

        exit_fn.assert_not_called()

    def test_released_registration_not_called(self) -> None:
        coordinator = CancellationCoordinator(CoordinatorMode.INTERACTIVE)
        cancel_fn = MagicMock()
        registration = coordinator.register(cancel_fn)

        registration.release()
        registration.release()
        coordinator.trigger()

        cancel_fn.assert_not_called()
        assert coordinator.pending == 0

    def test_only_current_scope_cancelled(self) -> None:
        coordinator = CancellationCoordinator(CoordinatorMode.INTERACTIVE)
        finished = CancelScope("first")
        registration = coordinator.register(finished.cancel)
        registration.release()

        current = CancelScope("second")
        coordinator.register(current.cancel)
        coordinator.trigger()

        assert not finished.cancelled
        assert current.cancelled

    def test_install_signal_handlers(self) -> None:
        coordinator = CancellationCoordinator(CoordinatorMode.INTERACTIVE)
        with pytest.MonkeyPatch.context() as mp:
            installed = {}
            mp.setattr(
                "boxbuild.cancel.signal.signal",
                lambda signum, handler: installed.__setitem__(signum, handler),
            )
            coordinator.install_signal_handlers()

        scope = CancelScope()
        coordinator.register(scope.cancel)
        for handler in installed.values():
            handler(2, None)

        assert len(installed) == 2
        assert scope.cancelled



class InterruptingList(list):
    """Registry list that runs a callback once, in the middle of append."""

    def __init__(self, items, on_append) -> None:
        super().__init__(items)
        self._on_append = on_append

    def append(self, item) -> None:
        callback, self._on_append = self._on_append, None
        if callback is not None:
            callback()
        super().append(item)


class TestReentrantTrigger:
    """Triggers arriving while the coordinator lock is held."""

    def test_trigger_inside_register(self) -> None:
        coordinator = CancellationCoordinator(CoordinatorMode.INTERACTIVE)
        earlier = CancelScope("earlier")
        coordinator.register(earlier.cancel)
        coordinator._funcs = InterruptingList(coordinator._funcs, coordinator.trigger)

        later = CancelScope("later")
        coordinator.register(later.cancel)

        assert earlier.cancelled
        # registered after the trigger, so it waits for the next one
        assert not later.cancelled
        assert coordinator.pending == 1

        coordinator.trigger()
        assert later.cancelled
        assert coordinator.pending == 0

    def test_trigger_inside_release(self) -> None:
        coordinator = CancellationCoordinator(CoordinatorMode.INTERACTIVE)
        scope = CancelScope()
        registration = coordinator.register(scope.cancel)

        class InterruptingRemove(list):
            def remove(self, item) -> None:
                coordinator.trigger()
                super().remove(item)

        coordinator._funcs = InterruptingRemove(coordinator._funcs)
        registration.release()

        assert scope.cancelled
        assert coordinator.pending == 0

    def test_trigger_inside_cancel_function(self) -> None:
        coordinator = CancellationCoordinator(CoordinatorMode.INTERACTIVE)
        calls: list[str] = []

        def cancel_and_retrigger() -> None:
            calls.append("cancel")
            coordinator.trigger()

        coordinator.register(cancel_and_retrigger)
        runner = RunnerHandle("build")
        coordinator.register_runner(runner)

        coordinator.trigger()

        assert calls == ["cancel"]
        assert runner.close_count == 1
        assert coordinator.pending == 0

    @pytest.mark.skipif(not hasattr(signal, "SIGUSR1"), reason="needs SIGUSR1")
    def test_signal_during_register(self) -> None:
        coordinator = CancellationCoordinator(CoordinatorMode.INTERACTIVE)
        earlier = CancelScope("earlier")
        coordinator.register(earlier.cancel)

        previous = signal.signal(signal.SIGUSR1, lambda signum, frame: coordinator.trigger())
        try:
            coordinator._funcs = InterruptingList(
                coordinator._funcs, lambda: signal.raise_signal(signal.SIGUSR1)
            )
            later = CancelScope("later")
            coordinator.register(later.cancel)
        finally:
            signal.signal(signal.SIGUSR1, previous)

        assert earlier.cancelled
        assert coordinator.pending == 1

    def test_runner_closed_from_within_close(self) -> None:
        handle = RunnerHandle("build")
        coordinator = CancellationCoordinator(CoordinatorMode.INTERACTIVE)
        coordinator.register_runner(handle)

        closed_event = handle._closed

        class InterruptingEvent:
            def set(self) -> None:
                coordinator.trigger()
                closed_event.set()

            def is_set(self) -> bool:
                return closed_event.is_set()

        handle._closed = InterruptingEvent()  # type: ignore[assignment]
        handle.close()

        assert handle.closed
        assert handle.close_count == 1
