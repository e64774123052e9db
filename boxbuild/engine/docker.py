"""Docker engine adapter.

This module handles:
- Resolving and pulling base images
- Running commands in working containers and committing them as layers
- Copying plan context files into containers
- Reading files out of images
- Observing cancellation during every long-running Docker call

Blocking SDK calls run on a single worker thread while the calling thread
polls the cancel scope, so a cancelled build returns promptly even when the
daemon is slow to answer. Containers created by the adapter are tracked and
removed when a step fails, is cancelled, or the adapter is closed.
"""

from __future__ import annotations

import io
import logging
import shlex
import tarfile
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor, wait
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeVar

import docker
from docker.errors import DockerException, ImageNotFound, NotFound
from docker.utils import parse_repository_tag
from requests.exceptions import RequestException

from boxbuild.engine.base import ContainerHandle, EngineAdapter
from boxbuild.errors import BuildCancelledError, EngineError

if TYPE_CHECKING:
    from boxbuild.cancel import CancelScope
    from boxbuild.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Image configuration restored on commit so a run command does not leak
# into the committed image
RESTORED_CONFIG_KEYS = ("Cmd", "Entrypoint", "WorkingDir", "User")

# Placeholder command for containers that are created but never started
IDLE_COMMAND = ["true"]

# The SDK lets transport failures from requests through unwrapped
SDK_ERRORS = (DockerException, RequestException)


def get_docker_client(timeout: int = 600) -> Any:
    """Create a Docker client from the environment.

    Args:
        timeout: Default timeout for API requests in seconds.

    Returns:
        docker.DockerClient instance.

    Raises:
        EngineError: If the Docker daemon is not reachable.
    """
    try:
        client = docker.from_env(timeout=timeout)
        client.ping()
        return client
    except SDK_ERRORS as e:
        raise EngineError(f"Docker is not available: {e}") from e


class DockerEngine(EngineAdapter):
    """EngineAdapter backed by the Docker SDK."""

    def __init__(
        self,
        client: Any,
        poll_interval: float = 0.25,
        output: Callable[[str], None] | None = None,
    ) -> None:
        self._client = client
        self._poll_interval = poll_interval
        self._output = output
        self._current = ""
        self._containers: set[str] = set()
        self._pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="docker")
        self._closed = False

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        output: Callable[[str], None] | None = None,
    ) -> DockerEngine:
        """Create an adapter connected to the Docker daemon from settings."""
        client = get_docker_client(timeout=settings.docker_timeout)
        return cls(client, poll_interval=settings.poll_interval, output=output)

    def _call(self, scope: CancelScope, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run a blocking SDK call while watching the cancel scope.

        Raises:
            BuildCancelledError: If the scope is cancelled before the call
                completes.
            EngineError: If the SDK raises.
        """
        scope.raise_if_cancelled()
        future = self._pool.submit(fn, *args, **kwargs)
        while True:
            done, _ = wait([future], timeout=self._poll_interval)
            if done:
                break
            if scope.cancelled:
                future.cancel()
                raise BuildCancelledError("engine call canceled")
        try:
            return future.result()
        except SDK_ERRORS as e:
            raise EngineError(str(e)) from e

    def _image_config(self, image_ref: str) -> dict[str, Any]:
        image = self._client.images.get(image_ref)
        config = image.attrs.get("Config") or {}
        return {key: config.get(key) for key in RESTORED_CONFIG_KEYS}

    def _discard(self, container_id: str) -> None:
        """Force-remove a container created by this adapter."""
        self._containers.discard(container_id)
        try:
            self._client.containers.get(container_id).remove(force=True)
        except NotFound:
            pass
        except SDK_ERRORS as e:
            logger.warning("Failed to remove container %s: %s", container_id[:12], e)

    def pull(self, ref: str, scope: CancelScope) -> str:
        def _resolve() -> str:
            try:
                return self._client.images.get(ref).id
            except ImageNotFound:
                pass
            repository, tag = parse_repository_tag(ref)
            logger.info("Pulling %s", ref)
            return self._client.images.pull(repository, tag=tag or "latest").id

        image_id = self._call(scope, _resolve)
        self._current = image_id
        return image_id

    def create(self, image_ref: str, scope: CancelScope) -> ContainerHandle:
        def _create() -> ContainerHandle:
            config = self._image_config(image_ref)
            container = self._client.containers.create(
                image_ref, command=IDLE_COMMAND, entrypoint=[]
            )
            self._containers.add(container.id)
            return ContainerHandle(id=container.id, image_ref=image_ref, config=config)

        return self._call(scope, _create)

    def run_command(
        self,
        image_ref: str,
        command: Sequence[str],
        scope: CancelScope,
        workdir: str | None = None,
        user: str | None = None,
    ) -> ContainerHandle:
        scope.raise_if_cancelled()
        cmd_str = shlex.join(command)
        logger.info("Running %s in %s", cmd_str, image_ref[:19])

        try:
            config = self._image_config(image_ref)
            container = self._client.containers.create(
                image_ref,
                command=list(command),
                entrypoint=[],
                working_dir=workdir,
                user=user,
            )
        except SDK_ERRORS as e:
            raise EngineError(str(e)) from e

        self._containers.add(container.id)
        try:
            container.start()
            while True:
                container.reload()
                if container.status not in ("created", "running"):
                    break
                if scope.wait(self._poll_interval):
                    logger.info("Killing container %s", container.id[:12])
                    raise BuildCancelledError(f"run {cmd_str} canceled")
            exit_code = container.wait().get("StatusCode", -1)
            output = container.logs().decode("utf-8", errors="replace")
        except BuildCancelledError:
            self._discard(container.id)
            raise
        except SDK_ERRORS as e:
            self._discard(container.id)
            raise EngineError(str(e)) from e

        if output and self._output is not None:
            self._output(output)

        if exit_code != 0:
            self._discard(container.id)
            raise EngineError(
                f"Command {cmd_str} exited with code {exit_code}",
                exit_code=exit_code,
            )

        return ContainerHandle(id=container.id, image_ref=image_ref, config=config)

    def copy_into(
        self,
        handle: ContainerHandle,
        source: Path,
        target: str,
        scope: CancelScope,
    ) -> None:
        buffer = io.BytesIO()
        with tarfile.open(fileobj=buffer, mode="w") as tar:
            tar.add(str(source), arcname=target.lstrip("/"))

        def _put() -> None:
            container = self._client.containers.get(handle.id)
            if not container.put_archive("/", buffer.getvalue()):
                raise EngineError(f"Failed to copy {source} to {target}")

        try:
            self._call(scope, _put)
        except (BuildCancelledError, EngineError):
            self._discard(handle.id)
            raise

    def commit(
        self,
        handle: ContainerHandle,
        scope: CancelScope,
        changes: Sequence[str] = (),
    ) -> str:
        conf = {key: value for key, value in handle.config.items() if value is not None}

        def _commit() -> str:
            container = self._client.containers.get(handle.id)
            image = container.commit(changes=list(changes) or None, conf=conf or None)
            return image.id

        try:
            image_id = self._call(scope, _commit)
        finally:
            self._discard(handle.id)
        self._current = image_id
        return image_id

    def tag(self, image_ref: str, name: str, scope: CancelScope) -> None:
        repository, tag = parse_repository_tag(name)

        def _tag() -> None:
            image = self._client.images.get(image_ref)
            if not image.tag(repository, tag=tag or "latest"):
                raise EngineError(f"Failed to tag {image_ref} as {name}")

        self._call(scope, _tag)

    def read_file(self, image_ref: str, path: str, scope: CancelScope) -> bytes:
        def _read() -> bytes:
            container = self._client.containers.create(
                image_ref, command=IDLE_COMMAND, entrypoint=[]
            )
            self._containers.add(container.id)
            try:
                stream, _ = container.get_archive(path)
                data = b"".join(stream)
            except NotFound:
                raise EngineError(f"{path}: no such file in image") from None
            finally:
                self._discard(container.id)

            with tarfile.open(fileobj=io.BytesIO(data)) as tar:
                for member in tar.getmembers():
                    if member.isfile():
                        extracted = tar.extractfile(member)
                        if extracted is not None:
                            return extracted.read()
            raise EngineError(f"{path} is not a regular file")

        return self._call(scope, _read)

    def has_image(self, image_ref: str) -> bool:
        try:
            self._client.images.get(image_ref)
            return True
        except ImageNotFound:
            return False
        except SDK_ERRORS as e:
            logger.warning("Cannot inspect image %s: %s", image_ref[:19], e)
            return False

    def current_image_ref(self) -> str:
        return self._current

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for container_id in list(self._containers):
            self._discard(container_id)
        self._pool.shutdown(wait=False, cancel_futures=True)
        self._client.close()


__all__ = ["DockerEngine", "get_docker_client"]
