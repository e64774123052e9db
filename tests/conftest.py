"""Shared fixtures: an in-process engine adapter and quiet builders."""

import hashlib
import io
from collections.abc import Sequence
from pathlib import Path

import pytest
from rich.console import Console

from boxbuild.builds.orchestrator import BuildConfig, Builder
from boxbuild.cancel import CancelScope
from boxbuild.engine.base import MUTATING_CALLS, ContainerHandle, EngineAdapter
from boxbuild.errors import EngineError
from boxbuild.output import BuildLogger
from boxbuild.plan.parser import parse_source
from boxbuild.plan.steps import BuildPlan

PASSWD = "root:x:0:0:root:/root:/bin/sh\nalice:x:1000:1000::/home/alice:/bin/bash\n"
GROUP = "root:x:0:\nstaff:x:50:alice\n"


class FakeEngine(EngineAdapter):
    """Engine adapter that records calls and fabricates image ids."""

    def __init__(self, files: dict[str, bytes] | None = None) -> None:
        self.calls: list[tuple] = []
        self.images: set[str] = set()
        self.files = files if files is not None else {
            "/etc/passwd": PASSWD.encode(),
            "/etc/group": GROUP.encode(),
        }
        self.fail_commands: set[str] = set()
        self.close_count = 0
        self._current = ""
        self._counter = 0

    def _new_image(self, seed: str) -> str:
        self._counter += 1
        digest = hashlib.sha256(f"{seed}|{self._counter}".encode()).hexdigest()
        image_ref = f"sha256:{digest}"
        self.images.add(image_ref)
        self._current = image_ref
        return image_ref

    @property
    def mutating_calls(self) -> list[tuple]:
        return [call for call in self.calls if call[0] in MUTATING_CALLS]

    def pull(self, ref: str, scope: CancelScope) -> str:
        scope.raise_if_cancelled()
        self.calls.append(("pull", ref))
        return self._new_image(ref)

    def run_command(
        self,
        image_ref: str,
        command: Sequence[str],
        scope: CancelScope,
        workdir: str | None = None,
        user: str | None = None,
    ) -> ContainerHandle:
        scope.raise_if_cancelled()
        self.calls.append(("run_command", image_ref, tuple(command), workdir, user))
        if self.fail_commands.intersection(command):
            raise EngineError(f"Command {' '.join(command)} exited with code 1", exit_code=1)
        return ContainerHandle(id=f"c{len(self.calls)}", image_ref=image_ref)

    def create(self, image_ref: str, scope: CancelScope) -> ContainerHandle:
        scope.raise_if_cancelled()
        self.calls.append(("create", image_ref))
        return ContainerHandle(id=f"c{len(self.calls)}", image_ref=image_ref)

    def copy_into(
        self, handle: ContainerHandle, source: Path, target: str, scope: CancelScope
    ) -> None:
        self.calls.append(("copy_into", handle.id, source, target))

    def commit(
        self, handle: ContainerHandle, scope: CancelScope, changes: Sequence[str] = ()
    ) -> str:
        scope.raise_if_cancelled()
        self.calls.append(("commit", handle.id, tuple(changes)))
        return self._new_image(handle.image_ref)

    def tag(self, image_ref: str, name: str, scope: CancelScope) -> None:
        self.calls.append(("tag", image_ref, name))

    def read_file(self, image_ref: str, path: str, scope: CancelScope) -> bytes:
        self.calls.append(("read_file", image_ref, path))
        if path not in self.files:
            raise EngineError(f"{path}: no such file in image")
        return self.files[path]

    def has_image(self, image_ref: str) -> bool:
        return image_ref in self.images

    def current_image_ref(self) -> str:
        return self._current

    def close(self) -> None:
        self.close_count += 1


def quiet_logger(name: str = "test") -> BuildLogger:
    """Build logger writing to an in-memory console."""
    return BuildLogger(name, console=Console(file=io.StringIO(), width=120))


def make_plan(source: str, context_dir: Path | None = None, name: str = "plan") -> BuildPlan:
    """Parse script source into a plan."""
    return BuildPlan(
        name=name,
        context_dir=context_dir or Path.cwd(),
        steps=tuple(parse_source(source)),
    )


def console_text(logger: BuildLogger) -> str:
    """Everything printed through a quiet logger."""
    return logger.console.file.getvalue()  # type: ignore[attr-defined]


@pytest.fixture
def fake_engine() -> FakeEngine:
    """Create a fake engine adapter."""
    return FakeEngine()


@pytest.fixture
def builder(fake_engine: FakeEngine) -> Builder:
    """Create a caching builder on the fake engine."""
    return Builder(fake_engine, BuildConfig(name="test", output=quiet_logger()))
