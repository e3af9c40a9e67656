"""Lifecycle orchestrator — owns one build's workspace from start to end.

Constructing a ``Lifecycle`` provisions the workspace volume and stages
everything the phases read from it:

* the app source at ``/workspace/app``, owned by the builder identity,
* custom buildpacks and their order descriptor, when given,
* the env overlay as one file per variable under ``<platform>/env``.

If provisioning fails the volume is removed before the error propagates.
``cleanup()`` removes it at the end; it logs instead of raising, so a
teardown problem never masks the build's own result.
"""

from __future__ import annotations

import logging
import posixpath
from collections.abc import Sequence
from pathlib import Path

from packforge.core.credentials import AnonymousCredentials, CredentialProvider, registry_auth_env
from packforge.core.engine import ContainerEngine
from packforge.core.errors import WorkspaceError
from packforge.core.ownership import OwnershipReconciler
from packforge.core.phase import Phase
from packforge.core.workspace import WORKSPACE_DIR, TarBuilder, WorkspaceVolume
from packforge.models.build import LifecycleConfig
from packforge.models.descriptors import (
    BuildpackDescriptor,
    BuildpackRef,
    GroupDescriptor,
    OrderDescriptor,
    OrderGroup,
)
from packforge.models.images import ContainerSpec
from packforge.models.phases import AccessMode, DaemonAccess, NoAccess, PhaseName, RegistryAccess
from packforge.output import BuildLogger

logger = logging.getLogger(__name__)

LAUNCH_DIR = WORKSPACE_DIR
APP_DIR = f"{WORKSPACE_DIR}/app"
BUILDPACKS_DIR = "/buildpacks"
ORDER_PATH = f"{BUILDPACKS_DIR}/order.toml"
GROUP_PATH = f"{WORKSPACE_DIR}/group.toml"
PLAN_PATH = f"{WORKSPACE_DIR}/plan.toml"

# Staging area inside the single workspace volume for inputs that must not
# shadow the builder's own /buildpacks.
STAGING_DIR = f"{WORKSPACE_DIR}/.pack"
STAGED_BUILDPACKS_DIR = f"{STAGING_DIR}/buildpacks"
STAGED_ORDER_PATH = f"{STAGED_BUILDPACKS_DIR}/order.toml"
PLATFORM_DIR = f"{STAGING_DIR}/platform"

DEFAULT_LIFECYCLE_DIR = "/lifecycle"
DEFAULT_DAEMON_SOCKET = "/var/run/docker.sock"


def _archive_name(path: str) -> str:
    """Tar member name for an absolute path unpacked at ``/``."""
    return path.lstrip("/")


class Lifecycle:
    """Workspace owner and phase factory for one build.

    Parameters
    ----------
    config:
        Builder image, app dir, buildpacks and env overlay.
    engine:
        Container engine for the volume and every phase.
    build_logger:
        Output sink shared by all phases.
    credentials:
        Provider for registry-access phases.
    lifecycle_dir:
        Directory holding the six executables inside the builder.
    daemon_socket:
        Engine control socket bound into daemon-access phases.
    poll_interval:
        Seconds between cancellation checks while a phase runs.
    """

    def __init__(
        self,
        config: LifecycleConfig,
        engine: ContainerEngine,
        build_logger: BuildLogger,
        *,
        credentials: CredentialProvider | None = None,
        lifecycle_dir: str = DEFAULT_LIFECYCLE_DIR,
        daemon_socket: str = DEFAULT_DAEMON_SOCKET,
        poll_interval: float = 1.0,
    ) -> None:
        self.config = config
        self.builder_image = config.builder_image
        self._engine = engine
        self._logger = build_logger
        self._credentials = credentials or AnonymousCredentials()
        self._lifecycle_dir = lifecycle_dir
        self._daemon_socket = daemon_socket
        self.poll_interval = poll_interval

        self.workspace = WorkspaceVolume(engine, config.builder_image)
        self.ownership = OwnershipReconciler(
            engine,
            config.builder_image,
            self.workspace,
            build_logger,
            poll_interval=poll_interval,
        )
        self.buildpacks_dir = BUILDPACKS_DIR
        self.order_path = ORDER_PATH
        self.platform_dir = PLATFORM_DIR

        self.workspace.create()
        try:
            self._provision()
        except BaseException:
            self.cleanup()
            raise

    @property
    def workspace_volume(self) -> str:
        return self.workspace.name

    # ------------------------------------------------------------------
    # Provisioning
    # ------------------------------------------------------------------

    def _provision(self) -> None:
        uid, gid = self.ownership.identity
        tar = TarBuilder(uid, gid)

        app_dir = Path(self.config.app_dir)
        if not app_dir.is_dir():
            raise WorkspaceError(f"app directory '{app_dir}' does not exist")
        tar.add_tree(app_dir, _archive_name(APP_DIR))

        if self.config.buildpacks:
            self._stage_buildpacks(tar, self.config.buildpacks)

        tar.add_directory(_archive_name(f"{self.platform_dir}/env"))
        for key, value in sorted(self.config.env.items()):
            tar.add_file(_archive_name(f"{self.platform_dir}/env/{key}"), value.encode("utf-8"))

        self.workspace.copy_in(tar.build())
        self._logger.verbose(
            "Copied app '%s' into workspace volume '%s'", app_dir, self.workspace.name
        )

    def _stage_buildpacks(self, tar: TarBuilder, buildpacks: Sequence[str]) -> None:
        refs: list[BuildpackRef] = []
        for entry in buildpacks:
            path = Path(entry)
            if path.is_dir():
                descriptor_file = path / "buildpack.toml"
                if not descriptor_file.is_file():
                    raise WorkspaceError(f"directory buildpack '{path}' has no buildpack.toml")
                descriptor = BuildpackDescriptor.from_toml(descriptor_file.read_bytes())
                dest = f"{STAGED_BUILDPACKS_DIR}/{descriptor.id}/{descriptor.version}"
                tar.add_tree(path, _archive_name(dest))
                refs.append(BuildpackRef(id=descriptor.id, version=descriptor.version))
                self._logger.verbose("Staged directory buildpack '%s'", descriptor.id)
            else:
                ref = BuildpackRef.parse(entry)
                dest = f"{STAGED_BUILDPACKS_DIR}/{ref.id}/{ref.version}"
                tar.add_symlink(
                    _archive_name(dest), posixpath.join(BUILDPACKS_DIR, ref.id, ref.version)
                )
                refs.append(ref)

        order = OrderDescriptor(groups=[OrderGroup(buildpacks=refs)])
        tar.add_file(_archive_name(STAGED_ORDER_PATH), order.to_toml().encode("utf-8"))
        self.buildpacks_dir = STAGED_BUILDPACKS_DIR
        self.order_path = STAGED_ORDER_PATH

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def new_phase(
        self,
        name: PhaseName,
        args: Sequence[str] = (),
        *,
        access: AccessMode | None = None,
        binds: Sequence[str] = (),
    ) -> Phase:
        """Build (but do not start) the container for one stage."""
        access = access if access is not None else NoAccess()
        all_binds = [self.workspace.bind, *binds]
        env: dict[str, str] = {}
        user = ""
        network_mode = ""

        if isinstance(access, DaemonAccess):
            all_binds.append(f"{self._daemon_socket}:{self._daemon_socket}")
            user = "root"
        elif isinstance(access, RegistryAccess):
            env.update(
                registry_auth_env(self._credentials, [access.repo_name, access.run_image])
            )
            network_mode = "host"

        spec = ContainerSpec(
            image=self.builder_image,
            cmd=[posixpath.join(self._lifecycle_dir, name.value), *args],
            user=user,
            env=env,
            binds=all_binds,
            labels={"author": "packforge"},
            network_mode=network_mode,
        )
        return Phase(name, spec, self._engine, self._logger, poll_interval=self.poll_interval)

    def read_group(self) -> GroupDescriptor:
        """The group detect chose, read back from the workspace."""
        return GroupDescriptor.from_toml(self.workspace.read_file(GROUP_PATH))

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def cleanup(self) -> None:
        """Remove the workspace volume.  Never raises."""
        try:
            self.workspace.destroy()
        except Exception as exc:  # noqa: BLE001
            self._logger.verbose(
                "Failed to remove workspace volume '%s': %s", self.workspace.name, exc
            )
            logger.warning("Leaked workspace volume %s: %s", self.workspace.name, exc)

    def __enter__(self) -> Lifecycle:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.cleanup()
