"""Container engine capability interface.

The build engine only needs a narrow slice of a container runtime.  Any
object with these methods satisfies ``ContainerEngine``; ``DockerEngine``
in ``packforge.core.docker_engine`` is the production implementation.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from typing import Protocol, TextIO, runtime_checkable

from packforge.core.credentials import RegistryAuth
from packforge.models.images import ContainerSpec, ImageInfo

logger = logging.getLogger(__name__)

# How long to wait for the output pump after the container exits.
_OUTPUT_DRAIN_SECONDS = 5.0


@runtime_checkable
class ContainerEngine(Protocol):
    """Protocol for container runtimes."""

    # Containers
    def create_container(self, spec: ContainerSpec) -> str: ...

    def start_container(self, container_id: str) -> None: ...

    def wait_container(self, container_id: str, timeout: float | None = None) -> int | None:
        """Block until exit and return the status code.

        Returns ``None`` if *timeout* elapses first.
        """
        ...

    def container_output(self, container_id: str) -> Iterator[tuple[str, bytes]]:
        """Yield ``("stdout" | "stderr", chunk)`` until the container exits."""
        ...

    def kill_container(self, container_id: str) -> None: ...

    def remove_container(self, container_id: str) -> None:
        """Force-remove a container; removing a missing one is a no-op."""
        ...

    def put_archive(self, container_id: str, path: str, data: bytes) -> None: ...

    def get_archive(self, container_id: str, path: str) -> bytes: ...

    # Volumes
    def create_volume(self, name: str) -> None: ...

    def remove_volume(self, name: str) -> None:
        """Remove a volume; removing a missing one is a no-op."""
        ...

    # Images
    def inspect_image(self, ref: str) -> ImageInfo | None:
        """Inspect a local image, ``None`` if it does not exist."""
        ...

    def inspect_remote_image(self, ref: str, auth: RegistryAuth | None = None) -> ImageInfo | None:
        """Inspect an image in its registry, ``None`` if it does not exist."""
        ...

    def pull_image(self, ref: str, auth: RegistryAuth | None = None) -> None:
        """Pull an image; an unknown reference is a no-op."""
        ...

    def remove_image(self, ref: str) -> None:
        """Remove a local image; removing a missing one is a no-op."""
        ...


def _pump_output(
    engine: ContainerEngine,
    container_id: str,
    out: TextIO,
    err: TextIO,
) -> None:
    try:
        for stream, chunk in engine.container_output(container_id):
            (err if stream == "stderr" else out).write(chunk)
    except Exception:  # noqa: BLE001
        logger.debug("Output stream for %s ended with an error", container_id, exc_info=True)
    finally:
        out.flush()
        err.flush()


def run_to_completion(
    engine: ContainerEngine,
    container_id: str,
    out: TextIO,
    err: TextIO,
    *,
    cancel: threading.Event | None = None,
    poll_interval: float = 1.0,
) -> int | None:
    """Start a created container, stream its output, and wait for it.

    Output is copied to *out*/*err* on a background thread while this call
    waits.  Returns the exit code, or ``None`` if *cancel* was set, in
    which case the container has been killed.  Any exception while waiting
    (including ``KeyboardInterrupt``) also kills the container.
    """
    engine.start_container(container_id)
    pump = threading.Thread(
        target=_pump_output,
        args=(engine, container_id, out, err),
        name=f"output-{container_id[:12]}",
        daemon=True,
    )
    pump.start()
    try:
        while True:
            if cancel is not None and cancel.is_set():
                engine.kill_container(container_id)
                return None
            exit_code = engine.wait_container(container_id, timeout=poll_interval)
            if exit_code is not None:
                return exit_code
    except BaseException:
        engine.kill_container(container_id)
        raise
    finally:
        pump.join(timeout=_OUTPUT_DRAIN_SECONDS)
