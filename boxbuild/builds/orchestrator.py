"""Build orchestrator.

This module turns the steps of a build plan into engine calls:
- Dispatching every step variant to the engine adapter
- Consulting the layer cache before image-producing steps
- Guarding steps and queries that need a base image
- Observing the build's cancel scope and runner handle between steps

Cache flow per image-producing step:
1. Compute the step's cache key from the parent image and its inputs
2. While the cache chain of the run is intact, look the key up; a hit whose
   image still exists is adopted without touching the engine
3. The first miss breaks the chain; no later step of the run looks up
4. Executed steps store their new image under their key
"""

from __future__ import annotations

import json
import logging
import os
import posixpath
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from boxbuild.builds.cache import CacheStore, MemoryCacheStore
from boxbuild.builds.cache_key import compute_step_key
from boxbuild.builds.digest import digest_sources, resolve_source
from boxbuild.builds.lookup import GROUP_PATH, PASSWD_PATH, lookup_gid, lookup_uid
from boxbuild.cancel import CancelScope, Registration, RunnerHandle
from boxbuild.errors import BoxError, BuildCancelledError, PrerequisiteError
from boxbuild.output import BuildLogger
from boxbuild.plan.steps import (
    BuildPlan,
    CmdStep,
    CopyStep,
    DebugStep,
    EntrypointStep,
    EnvStep,
    ExposeStep,
    FromStep,
    GetenvStep,
    GetgidStep,
    GetuidStep,
    InsideStep,
    LabelStep,
    ReadStep,
    RunStep,
    StepBase,
    TagStep,
    UserStep,
    WithUserStep,
    WorkdirStep,
)
from boxbuild.types import BuildResult

if TYPE_CHECKING:
    from boxbuild.cancel import CancellationCoordinator
    from boxbuild.engine.base import EngineAdapter

logger = logging.getLogger(__name__)

CONFIG_STEPS = (
    EnvStep,
    LabelStep,
    WorkdirStep,
    UserStep,
    CmdStep,
    EntrypointStep,
    ExposeStep,
)


@dataclass
class BuildConfig:
    """Per-build options.

    Attributes:
        name: Build name, usually the plan file.
        cache: Whether the layer cache is consulted and filled.
        show_run: Whether run command output is printed.
        output: Output logger; one is created from the other options when
            not given.
    """

    name: str = "plan"
    cache: bool = True
    show_run: bool = True
    output: BuildLogger | None = None


def config_changes(step: StepBase) -> list[str]:
    """Render a configuration step as Dockerfile instructions for commit.

    Args:
        step: One of the configuration step variants.

    Returns:
        Instructions applied to the committed image.
    """
    if isinstance(step, EnvStep):
        return [f"ENV {key}={json.dumps(value)}" for key, value in step.values.items()]
    if isinstance(step, LabelStep):
        return [
            f"LABEL {json.dumps(key)}={json.dumps(value)}"
            for key, value in step.values.items()
        ]
    if isinstance(step, WorkdirStep):
        return [f"WORKDIR {step.path}"]
    if isinstance(step, UserStep):
        return [f"USER {step.user}"]
    if isinstance(step, CmdStep):
        return [f"CMD {json.dumps(list(step.command))}"]
    if isinstance(step, EntrypointStep):
        return [f"ENTRYPOINT {json.dumps(list(step.command))}"]
    if isinstance(step, ExposeStep):
        return [f"EXPOSE {' '.join(step.ports)}"]
    raise TypeError(f"not a configuration step: {type(step).__name__}")


class Builder:
    """Executes build plans against one engine adapter.

    A builder owns its engine adapter, cache store, cancel scope and runner
    handle. Steps run strictly sequentially; the builder is not shared
    between threads.
    """

    def __init__(
        self,
        engine: EngineAdapter,
        config: BuildConfig | None = None,
        cache_store: CacheStore | None = None,
    ) -> None:
        self.engine = engine
        self.config = config or BuildConfig()
        self.output = self.config.output or BuildLogger(
            self.config.name, show_run=self.config.show_run
        )
        if cache_store is None and self.config.cache:
            cache_store = MemoryCacheStore()
        self.cache_store = cache_store
        self.scope = CancelScope(self.config.name)
        self.runner = RunnerHandle(self.config.name)
        self.result = BuildResult()
        self.context_dir = Path.cwd()
        self.plan_name: str | None = None

        self._image = ""
        self._chain_intact = True
        self._workdir: str | None = None
        self._user: str | None = None
        self._registrations: list[Registration] = []
        # name -> image for tags this builder has applied
        self._tagged: dict[str, str] = {}
        self._closed = False

    @property
    def image_reference(self) -> str:
        """Current image reference; empty until a base image is set."""
        return self._image

    def attach(self, coordinator: CancellationCoordinator) -> None:
        """Register the build's cancel scope and runner with a coordinator.

        The registrations are released when the builder is closed.
        """
        self._registrations.append(coordinator.register(self.scope.cancel))
        self._registrations.append(coordinator.register_runner(self.runner))

    def use_scope(self, scope: CancelScope) -> None:
        """Replace the cancel scope used for subsequent engine calls."""
        self.scope = scope

    def run(self, plan: BuildPlan) -> BuildResult:
        """Execute every step of a plan in order.

        Errors from the build pipeline end the run and are captured in the
        result; anything else propagates.

        Args:
            plan: Plan to execute.

        Returns:
            BuildResult with the final image reference or the error. The
            same result is kept on ``self.result``.
        """
        self.context_dir = plan.context_dir
        self.plan_name = plan.name
        self._image = ""
        self._chain_intact = True
        logger.info("Running plan %s (%d step(s))", plan.name, len(plan))

        try:
            for step in plan.steps:
                self.execute(step)
        except BoxError as e:
            logger.debug("Plan %s failed: %s (%s)", plan.name, e.message, e.code)
            self.output.error(e)
            self.result = BuildResult(value=self._image, error=e)
            return self.result

        self.result = BuildResult(value=self._image)
        return self.result

    def execute(self, step: StepBase) -> str:
        """Execute one step.

        Args:
            step: Step variant to execute.

        Returns:
            The step's printable value: the query result, the new image
            reference for image-producing steps, or an empty string.

        Raises:
            BuildCancelledError: If the build was cancelled.
            PrerequisiteError: If the step needs an image and none exists.
            BoxError: If the step fails.
        """
        self._check_cancelled()
        if step.requires_image and not self._image:
            raise PrerequisiteError(step.verb)  # type: ignore[attr-defined]

        if isinstance(step, FromStep):
            return self._produce(step, lambda: self.engine.pull(step.image, self.scope))
        if isinstance(step, RunStep):
            return self._produce(step, lambda: self._run(step))
        if isinstance(step, CopyStep):
            source = resolve_source(step.source, self.context_dir)
            digests = (
                digest_sources([step.source], self.context_dir) if self.config.cache else None
            )
            return self._produce(step, lambda: self._copy(source, step.target), digests)
        if isinstance(step, CONFIG_STEPS):
            return self._produce(step, lambda: self._configure(step))
        if isinstance(step, TagStep):
            self.tag(step.name)
            return ""
        if isinstance(step, DebugStep):
            self.output.debug(self._image, step.message)
            return ""
        if isinstance(step, InsideStep):
            path = posixpath.join(self._workdir or "/", step.path)
            with self._override(workdir=path):
                return self._execute_body(step.body)
        if isinstance(step, WithUserStep):
            with self._override(user=step.user):
                return self._execute_body(step.body)
        if isinstance(step, GetenvStep):
            return os.environ.get(step.name, "")
        if isinstance(step, GetuidStep):
            return self.lookup_uid(step.name)
        if isinstance(step, GetgidStep):
            return self.lookup_gid(step.name)
        if isinstance(step, ReadStep):
            return self.read_file(step.path)
        raise TypeError(f"unsupported step: {type(step).__name__}")

    def tag(self, name: str) -> None:
        """Tag the current image.

        With the cache enabled, a tag this builder already pointed at the
        current image is not re-applied, so a fully cached run issues no
        mutating engine calls.

        Raises:
            PrerequisiteError: If no image has been built.
        """
        if not self._image:
            raise PrerequisiteError("tag")
        self._check_cancelled()
        if self.cache_store is not None and self._tagged.get(name) == self._image:
            logger.debug("%s already tagged as %s", self._image[:19], name)
        else:
            self.engine.tag(self._image, name, self.scope)
            self._tagged[name] = self._image
        self.output.tag(name, self._image)

    def read_file(self, path: str) -> str:
        """Read a file from the current image.

        Raises:
            PrerequisiteError: If no image has been built.
        """
        self._require("read")
        data = self.engine.read_file(self._image, path, self.scope)
        return data.decode("utf-8", errors="replace")

    def lookup_uid(self, name: str) -> str:
        """Look up the numeric id of a user in the current image."""
        self._require("getuid")
        content = self.engine.read_file(self._image, PASSWD_PATH, self.scope)
        return lookup_uid(content.decode("utf-8", errors="replace"), name)

    def lookup_gid(self, name: str) -> str:
        """Look up the numeric id of a group in the current image."""
        self._require("getgid")
        content = self.engine.read_file(self._image, GROUP_PATH, self.scope)
        return lookup_gid(content.decode("utf-8", errors="replace"), name)

    def close(self) -> None:
        """Release the coordinator registrations and the engine adapter.

        Only the first call has an effect.
        """
        if self._closed:
            return
        self._closed = True
        for registration in self._registrations:
            registration.release()
        self._registrations.clear()
        self.runner.close()
        self.engine.close()

    def _require(self, capability: str) -> None:
        if not self._image:
            raise PrerequisiteError(capability)

    def _check_cancelled(self) -> None:
        self.scope.raise_if_cancelled()
        if self.runner.closed:
            raise BuildCancelledError(f"{self.config.name} canceled")

    @contextmanager
    def _override(
        self, workdir: str | None = None, user: str | None = None
    ) -> Iterator[None]:
        saved = (self._workdir, self._user)
        if workdir is not None:
            self._workdir = workdir
        if user is not None:
            self._user = user
        try:
            yield
        finally:
            self._workdir, self._user = saved

    def _execute_body(self, body: tuple[StepBase, ...]) -> str:
        value = ""
        for step in body:
            value = self.execute(step)
        return value

    def _context(self) -> dict[str, str]:
        return {"workdir": self._workdir or "", "user": self._user or ""}

    def _produce(
        self,
        step: StepBase,
        perform: Callable[[], str],
        file_digests: dict[str, str] | None = None,
    ) -> str:
        key: str | None = None
        if self.config.cache and self.cache_store is not None:
            key, _ = compute_step_key(step, self._image, file_digests, self._context())
            if self._chain_intact:
                cached = self.cache_store.get(key)
                if cached and self.engine.has_image(cached):
                    logger.debug("Cache hit for %s: %s", step.verb, key[:23])  # type: ignore[attr-defined]
                    self.output.cache_hit(step, cached)
                    self._image = cached
                    return cached
                if cached:
                    logger.info("Cached image %s no longer exists", cached)
                    self.cache_store.delete(key)
                self._chain_intact = False

        self.output.step(step)
        image_ref = perform()
        self._image = image_ref
        if key is not None and self.cache_store is not None:
            self.cache_store.put(key, image_ref, step.verb, self.plan_name)  # type: ignore[attr-defined]
        return image_ref

    def _run(self, step: RunStep) -> str:
        handle = self.engine.run_command(
            self._image,
            step.command,
            self.scope,
            workdir=self._workdir,
            user=self._user,
        )
        return self.engine.commit(handle, self.scope)

    def _copy(self, source: Path, target: str) -> str:
        handle = self.engine.create(self._image, self.scope)
        self.engine.copy_into(handle, source, target, self.scope)
        return self.engine.commit(handle, self.scope)

    def _configure(self, step: StepBase) -> str:
        handle = self.engine.create(self._image, self.scope)
        return self.engine.commit(handle, self.scope, changes=config_changes(step))


__all__ = ["CONFIG_STEPS", "BuildConfig", "Builder", "config_changes"]
