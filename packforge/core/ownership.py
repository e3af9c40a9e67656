"""Ownership reconciliation for workspace content.

Phases run as different users: daemon-access phases run as root, the
detect and build phases as the builder's unprivileged user.  The exported
image must contain files owned by the identity the run image's app user
expects, so after any phase that may have written as someone else the
workspace is handed back to the identity the builder declares through
``PACK_USER_ID`` / ``PACK_GROUP_ID``.
"""

from __future__ import annotations

import logging
import threading

from packforge.core.engine import ContainerEngine, run_to_completion
from packforge.core.errors import (
    BuilderImageNotFoundError,
    MalformedIdentityError,
    MissingIdentityError,
    OwnershipError,
    PhaseCancelledError,
)
from packforge.core.workspace import WorkspaceVolume
from packforge.models.images import ContainerSpec
from packforge.output import BuildLogger

logger = logging.getLogger(__name__)

USER_ID_ENV = "PACK_USER_ID"
GROUP_ID_ENV = "PACK_GROUP_ID"


def resolve_identity(engine: ContainerEngine, builder_image: str) -> tuple[int, int]:
    """Return the ``(uid, gid)`` declared in the builder image's env.

    Raises
    ------
    MissingIdentityError
        Either declaration is absent or empty.
    MalformedIdentityError
        Either declaration is not an integer.
    """
    image = engine.inspect_image(builder_image)
    if image is None:
        raise BuilderImageNotFoundError(builder_image)

    raw_uid = image.env_value(USER_ID_ENV)
    raw_gid = image.env_value(GROUP_ID_ENV)
    if not raw_uid or not raw_gid:
        raise MissingIdentityError(
            f"builder image '{builder_image}' does not declare "
            f"{USER_ID_ENV} and {GROUP_ID_ENV}"
        )
    try:
        uid = int(raw_uid)
    except ValueError as exc:
        raise MalformedIdentityError(f"parsing pack uid: {raw_uid!r}") from exc
    try:
        gid = int(raw_gid)
    except ValueError as exc:
        raise MalformedIdentityError(f"parsing pack gid: {raw_gid!r}") from exc
    return uid, gid


def chown(
    engine: ContainerEngine,
    workspace: WorkspaceVolume,
    image: str,
    path: str,
    uid: int,
    gid: int,
    *,
    build_logger: BuildLogger,
    cancel: threading.Event | None = None,
    poll_interval: float = 1.0,
) -> None:
    """Recursively chown *path* inside the workspace with a root helper.

    The helper container is removed whether or not the chown succeeds.
    """
    container_id = engine.create_container(
        ContainerSpec(
            image=image,
            cmd=["chown", "-R", f"{uid}:{gid}", path],
            user="root",
            binds=[workspace.bind],
            labels={"author": "packforge"},
        )
    )
    try:
        exit_code = run_to_completion(
            engine,
            container_id,
            build_logger.verbose_writer("chown"),
            build_logger.verbose_error_writer("chown"),
            cancel=cancel,
            poll_interval=poll_interval,
        )
    finally:
        engine.remove_container(container_id)
    if exit_code is None:
        raise PhaseCancelledError("chown")
    if exit_code != 0:
        raise OwnershipError(path, exit_code)
    logger.debug("Chowned %s to %d:%d in %s", path, uid, gid, workspace.name)


class OwnershipReconciler:
    """Resolves the builder identity once and reapplies it on demand."""

    def __init__(
        self,
        engine: ContainerEngine,
        builder_image: str,
        workspace: WorkspaceVolume,
        build_logger: BuildLogger,
        *,
        poll_interval: float = 1.0,
    ) -> None:
        self._engine = engine
        self._builder = builder_image
        self._workspace = workspace
        self._logger = build_logger
        self._poll_interval = poll_interval
        self._identity: tuple[int, int] | None = None

    @property
    def identity(self) -> tuple[int, int]:
        if self._identity is None:
            self._identity = resolve_identity(self._engine, self._builder)
        return self._identity

    def reconcile(self, path: str, cancel: threading.Event | None = None) -> None:
        uid, gid = self.identity
        chown(
            self._engine,
            self._workspace,
            self._builder,
            path,
            uid,
            gid,
            build_logger=self._logger,
            cancel=cancel,
            poll_interval=self._poll_interval,
        )
