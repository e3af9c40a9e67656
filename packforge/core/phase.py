"""Phase executor — one lifecycle stage in one ephemeral container.

A ``Phase`` owns exactly one container.  ``run()`` creates and starts it,
streams its output, and blocks until it exits; ``cleanup()`` removes it.
Use the phase as a context manager so the container is released on every
exit path::

    with lifecycle.new_phase(PhaseName.DETECT, args) as phase:
        phase.run(cancel)
"""

from __future__ import annotations

import logging
import threading

from packforge.core.engine import ContainerEngine, run_to_completion
from packforge.core.errors import PhaseCancelledError, PhaseExecutionError
from packforge.models.images import ContainerSpec
from packforge.models.phases import DETECT_NO_GROUP_EXIT_CODE, PhaseName
from packforge.output import BuildLogger

logger = logging.getLogger(__name__)


class Phase:
    """A single run of one of the six lifecycle executables.

    Parameters
    ----------
    name:
        Which stage this is.
    spec:
        Fully built container spec (image, command, mounts, access).
    engine:
        Engine to run the container on.
    build_logger:
        Sink receiving the container's stdout/stderr.
    poll_interval:
        Seconds between cancellation checks while waiting.
    """

    def __init__(
        self,
        name: PhaseName,
        spec: ContainerSpec,
        engine: ContainerEngine,
        build_logger: BuildLogger,
        *,
        poll_interval: float = 1.0,
    ) -> None:
        self.name = name
        self.spec = spec
        self._engine = engine
        self._logger = build_logger
        self._poll_interval = poll_interval
        self.container_id: str | None = None
        self.exit_code: int | None = None

    def run(self, cancel: threading.Event | None = None) -> None:
        """Run the container to completion.

        Raises
        ------
        PhaseExecutionError
            The container exited non-zero.
        PhaseCancelledError
            *cancel* was set before the container exited.
        """
        self.container_id = self._engine.create_container(self.spec)
        logger.debug("Phase %s running in %s", self.name.value, self.container_id[:12])
        exit_code = run_to_completion(
            self._engine,
            self.container_id,
            self._logger.verbose_writer(self.name.value),
            self._logger.verbose_error_writer(self.name.value),
            cancel=cancel,
            poll_interval=self._poll_interval,
        )
        if exit_code is None:
            raise PhaseCancelledError(self.name.stage)
        self.exit_code = exit_code
        if exit_code != 0:
            raise PhaseExecutionError(self.name.stage, exit_code)

    @property
    def no_buildpack_group(self) -> bool:
        """True when detect exited because no buildpack group passed."""
        return (
            self.name is PhaseName.DETECT
            and self.exit_code == DETECT_NO_GROUP_EXIT_CODE
        )

    def cleanup(self) -> None:
        """Remove the container.  Safe to call repeatedly or after a failure."""
        if self.container_id is None:
            return
        container_id, self.container_id = self.container_id, None
        self._engine.remove_container(container_id)
        logger.debug("Phase %s container %s removed", self.name.value, container_id[:12])

    def __enter__(self) -> Phase:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.cleanup()

    def __repr__(self) -> str:
        return f"<Phase {self.name.value} args={self.spec.cmd[1:]!r}>"
