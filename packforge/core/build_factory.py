"""Build factory and the six-stage pipeline.

``BuildFactory.build_config_from_flags()`` turns raw flags into a validated
``BuildConfig``: it picks the builder, resolves and stack-checks the run
image, and parses the env file.  Every resolution failure surfaces here,
before any container runs.

``BuildConfig.run()`` then drives::

    detect -> restore -> analyze -> build -> export -> cache

strictly in order inside one ``Lifecycle``.  The first failure stops the
pipeline; the workspace volume and any phase container are released on
every path.
"""

from __future__ import annotations

import hashlib
import logging
import os
import threading
from collections.abc import Callable
from pathlib import Path
from typing import Any, TextIO

from packforge.config import PackConfig
from packforge.core.cache import Cache, new_cache
from packforge.core.credentials import (
    AnonymousCredentials,
    CredentialProvider,
    DockerConfigCredentials,
)
from packforge.core.engine import ContainerEngine
from packforge.core.errors import (
    BuilderImageNotFoundError,
    BuildStageError,
    CacheError,
    MetadataError,
    PackError,
    PhaseCancelledError,
    PhaseExecutionError,
)
from packforge.core.layer_tracker import LayerTracker, previous_metadata
from packforge.core.lifecycle import GROUP_PATH, LAUNCH_DIR, PLAN_PATH, Lifecycle
from packforge.core.reference import registry_of
from packforge.core.run_image import RunImageResolver
from packforge.models.build import BuildFlags, BuildSpec, LifecycleConfig
from packforge.models.images import ImageInfo
from packforge.models.metadata import METADATA_LABEL, RUN_IMAGE_LABEL, AppImageMetadata
from packforge.models.phases import DaemonAccess, PhaseName, RegistryAccess
from packforge.output import BuildLogger

logger = logging.getLogger(__name__)


def default_app_dir(flags: BuildFlags, build_logger: BuildLogger) -> Path:
    """The app dir from *flags*, or the current directory."""
    if flags.app_dir is None:
        app_dir = Path.cwd()
        build_logger.verbose(
            "Defaulting app directory to current working directory '%s' "
            "(use --path to override)",
            app_dir,
        )
        return app_dir
    return Path(flags.app_dir).resolve()


def repository_name(app_dir: Path, repo_name: str = "") -> str:
    """*repo_name*, or a stable local name derived from the app path."""
    if repo_name:
        return repo_name
    digest = hashlib.md5(str(Path(app_dir).resolve()).encode("utf-8")).hexdigest()
    return f"pack.local/run/{digest}"


def parse_env_file(path: Path) -> dict[str, str]:
    """Parse ``KEY=VALUE`` lines.

    Values keep everything after the first ``=``, including spaces.  A bare
    ``KEY`` takes its value from the current process environment.  Blank
    lines are skipped.  Each key names a file under ``<platform>/env``, so
    empty keys and keys containing ``/`` are rejected.
    """
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise PackError(f"open {path}: {exc}") from exc
    env: dict[str, str] = {}
    for raw in text.splitlines():
        line = raw.strip()
        if not line:
            continue
        key, sep, value = line.partition("=")
        if not key or "/" in key or key in (".", ".."):
            raise PackError(f"{path}: invalid env variable name '{key}' in line '{line}'")
        env[key] = value if sep else os.environ.get(key, "")
    return env


class BuildConfig:
    """A validated build, ready to run.

    Holds the immutable ``BuildSpec`` plus the collaborators every stage
    needs.  Stage methods may also be called one at a time against an
    existing ``Lifecycle``.
    """

    def __init__(
        self,
        spec: BuildSpec,
        *,
        engine: ContainerEngine,
        cache: Cache,
        build_logger: BuildLogger,
        credentials: CredentialProvider | None = None,
        config: PackConfig | None = None,
    ) -> None:
        self.spec = spec
        self.engine = engine
        self.cache = cache
        self.logger = build_logger
        self.credentials = credentials or AnonymousCredentials()
        self.config = config or PackConfig()
        self.layers: LayerTracker | None = None

    # Convenience accessors
    @property
    def builder(self) -> str:
        return self.spec.builder

    @property
    def run_image(self) -> str:
        return self.spec.run_image

    @property
    def repo_name(self) -> str:
        return self.spec.repo_name

    # ------------------------------------------------------------------
    # Full pipeline
    # ------------------------------------------------------------------

    def new_lifecycle(self) -> Lifecycle:
        return Lifecycle(
            self.spec.lifecycle,
            self.engine,
            self.logger,
            credentials=self.credentials,
            lifecycle_dir=self.config.lifecycle_dir,
            daemon_socket=self.config.daemon_socket,
            poll_interval=self.config.poll_interval_seconds,
        )

    def _stages(self) -> list[tuple[PhaseName, Callable[..., None]]]:
        return [
            (PhaseName.DETECT, self.detect),
            (PhaseName.RESTORE, self.restore),
            (PhaseName.ANALYZE, self.analyze),
            (PhaseName.BUILD, self.build),
            (PhaseName.EXPORT, self.export),
            (PhaseName.CACHE, self.cache_layers),
        ]

    def run(self, cancel: threading.Event | None = None) -> None:
        """Run all six stages; raise the first stage error."""
        with self.new_lifecycle() as lifecycle:
            for phase, stage in self._stages():
                self.logger.step(phase.step_label)
                try:
                    stage(lifecycle, cancel=cancel)
                except (PhaseExecutionError, PhaseCancelledError, BuildStageError):
                    raise
                except Exception as exc:
                    raise BuildStageError(phase.stage, exc) from exc

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _run_phase(
        self,
        lifecycle: Lifecycle,
        phase_name: PhaseName,
        args: list[str],
        cancel: threading.Event | None,
        **kwargs: Any,
    ) -> None:
        with lifecycle.new_phase(phase_name, args, **kwargs) as phase:
            phase.run(cancel)

    def detect(self, lifecycle: Lifecycle, *, cancel: threading.Event | None = None) -> None:
        if self.spec.clear_cache:
            try:
                self.cache.clear()
            except CacheError:
                raise
            except Exception as exc:
                raise CacheError(f"clearing cache: {exc}") from exc
            self.logger.verbose("Cache '%s' cleared", self.cache.image())

        self._run_phase(
            lifecycle,
            PhaseName.DETECT,
            [
                "-buildpacks", lifecycle.buildpacks_dir,
                "-order", lifecycle.order_path,
                "-group", GROUP_PATH,
                "-plan", PLAN_PATH,
                "-platform", lifecycle.platform_dir,
            ],
            cancel,
        )

    def restore(self, lifecycle: Lifecycle, *, cancel: threading.Event | None = None) -> None:
        # Always runs; an empty or missing cache restores nothing.
        self._run_phase(
            lifecycle,
            PhaseName.RESTORE,
            ["-group", GROUP_PATH, "-layers", LAUNCH_DIR, *self.cache.phase_args()],
            cancel,
            access=DaemonAccess(),
            binds=self.cache.binds(),
        )

    def _image_access(self) -> DaemonAccess | RegistryAccess:
        if self.spec.publish:
            return RegistryAccess(repo_name=self.repo_name, run_image=self.run_image)
        return DaemonAccess()

    def analyze(self, lifecycle: Lifecycle, *, cancel: threading.Event | None = None) -> None:
        self.logger.verbose("Reading information from previous image for possible re-use")
        if self.config.track_layers:
            self.layers = self._new_tracker()

        args = ["-layers", LAUNCH_DIR, "-group", GROUP_PATH]
        if not self.spec.publish:
            args.append("-daemon")
        args.append(self.repo_name)
        self._run_phase(lifecycle, PhaseName.ANALYZE, args, cancel, access=self._image_access())

        lifecycle.ownership.reconcile(LAUNCH_DIR, cancel)

    def build(self, lifecycle: Lifecycle, *, cancel: threading.Event | None = None) -> None:
        self._run_phase(
            lifecycle,
            PhaseName.BUILD,
            [
                "-buildpacks", lifecycle.buildpacks_dir,
                "-layers", LAUNCH_DIR,
                "-group", GROUP_PATH,
                "-plan", PLAN_PATH,
                "-platform", lifecycle.platform_dir,
            ],
            cancel,
        )

    def export(self, lifecycle: Lifecycle, *, cancel: threading.Event | None = None) -> None:
        # Build wrote as the builder user; hand everything to the app identity
        # before the exporter packages it.
        lifecycle.ownership.reconcile(LAUNCH_DIR, cancel)

        tracker = self.layers
        if self.config.track_layers and (tracker is None or tracker.recorded):
            tracker = self._new_tracker()

        args = ["-image", self.run_image, "-layers", LAUNCH_DIR, "-group", GROUP_PATH]
        if not self.spec.locally_configured_run_image:
            args += ["-label", f"{RUN_IMAGE_LABEL}={self.run_image}"]
        if not self.spec.publish:
            args.append("-daemon")
        args.append(self.repo_name)
        self._run_phase(lifecycle, PhaseName.EXPORT, args, cancel, access=self._image_access())

        if tracker is not None:
            self._record_export(tracker)

    def cache_layers(self, lifecycle: Lifecycle, *, cancel: threading.Event | None = None) -> None:
        self._run_phase(
            lifecycle,
            PhaseName.CACHE,
            ["-group", GROUP_PATH, "-layers", LAUNCH_DIR, *self.cache.phase_args()],
            cancel,
            access=DaemonAccess(),
            binds=self.cache.binds(),
        )

    # ------------------------------------------------------------------
    # Metadata bookkeeping
    # ------------------------------------------------------------------

    def _app_image(self) -> ImageInfo | None:
        if self.spec.publish:
            return self.engine.inspect_remote_image(
                self.repo_name, self.credentials.auth_for(registry_of(self.repo_name))
            )
        return self.engine.inspect_image(self.repo_name)

    def _new_tracker(self) -> LayerTracker | None:
        # Reads for layer tracking never fail the build.
        try:
            image = self._app_image()
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "Cannot read previous image %s, layer tracking disabled: %s", self.repo_name, exc
            )
            return None
        return LayerTracker(previous_metadata(image))

    def _record_export(self, tracker: LayerTracker) -> None:
        try:
            image = self._app_image()
        except Exception as exc:  # noqa: BLE001
            logger.warning("Cannot read exported image %s: %s", self.repo_name, exc)
            self.layers = tracker
            return
        label = image.label(METADATA_LABEL) if image is not None else ""
        if not label:
            self.logger.verbose("Exported image '%s' carries no layer metadata", self.repo_name)
            self.layers = tracker
            return
        try:
            exported = AppImageMetadata.from_label(label)
        except MetadataError as exc:
            logger.warning("Exported image %s has unreadable metadata: %s", self.repo_name, exc)
            self.layers = tracker
            return
        tracker.record(exported)
        tracker.mark_exported()
        self.layers = tracker
        for bp_id, name in tracker.reused():
            self.logger.verbose("Reusing layer '%s:%s'", bp_id, name)
        summary = tracker.summary()
        self.logger.verbose(
            "Layers: %d reused, %d rebuilt, %d dropped",
            summary["reused"], summary["rebuilt"], summary["dropped"],
        )


class BuildFactory:
    """Turns ``BuildFlags`` into a ready-to-run ``BuildConfig``.

    Parameters
    ----------
    engine:
        Container engine for image inspection and the build itself.
    build_logger:
        Output sink.
    config:
        Engine configuration (default builder, mirrors, cache kind).
    credentials:
        Registry credentials, passed explicitly to every consumer.
    cache:
        Cache to use.  Built from ``config.cache_kind`` and the resolved
        repository name when omitted.
    """

    def __init__(
        self,
        engine: ContainerEngine,
        build_logger: BuildLogger,
        *,
        config: PackConfig | None = None,
        credentials: CredentialProvider | None = None,
        cache: Cache | None = None,
    ) -> None:
        self.engine = engine
        self.logger = build_logger
        self.config = config or PackConfig()
        self.credentials = credentials or AnonymousCredentials()
        self.cache = cache

    def _builder_image(self, builder: str, *, pull: bool) -> ImageInfo:
        if pull:
            self.logger.verbose(
                "Pulling builder image '%s' (use --no-pull flag to skip this step)", builder
            )
            self.engine.pull_image(builder, self.credentials.auth_for(registry_of(builder)))
        image = self.engine.inspect_image(builder)
        if image is None:
            raise BuilderImageNotFoundError(builder)
        return image

    def build_config_from_flags(self, flags: BuildFlags) -> BuildConfig:
        """Validate *flags* and resolve images.  Runs no phase."""
        app_dir = default_app_dir(flags, self.logger)
        repo_name = repository_name(app_dir, flags.repo_name)

        env = parse_env_file(flags.env_file) if flags.env_file is not None else {}

        if flags.builder:
            builder = flags.builder
            self.logger.verbose("Using user-provided builder image '%s'", builder)
        else:
            builder = self.config.default_builder
            self.logger.verbose("Using default builder image '%s'", builder)

        builder_image = self._builder_image(builder, pull=not flags.no_pull)

        resolver = RunImageResolver(
            self.engine, self.config, credentials=self.credentials, build_logger=self.logger
        )
        resolved = resolver.resolve(
            builder_image,
            flags.run_image,
            self.config.registry_for(repo_name),
            publish=flags.publish,
            pull=not flags.no_pull,
        )

        cache = self.cache or new_cache(self.config.cache_kind, repo_name, self.engine)
        self.logger.verbose("Using cache '%s'", cache.image())

        spec = BuildSpec(
            builder=builder,
            run_image=resolved.ref,
            repo_name=repo_name,
            publish=flags.publish,
            clear_cache=flags.clear_cache,
            locally_configured_run_image=resolved.locally_configured,
            lifecycle=LifecycleConfig(
                builder_image=builder,
                app_dir=app_dir,
                buildpacks=list(flags.buildpacks),
                env=env,
            ),
        )
        return BuildConfig(
            spec,
            engine=self.engine,
            cache=cache,
            build_logger=self.logger,
            credentials=self.credentials,
            config=self.config,
        )


def build(
    app_dir: Path | str,
    builder: str = "",
    run_image: str = "",
    repo_name: str = "",
    *,
    publish: bool = False,
    clear_cache: bool = False,
    out: TextIO | None = None,
    err: TextIO | None = None,
    engine: ContainerEngine | None = None,
    config: PackConfig | None = None,
    cancel: threading.Event | None = None,
) -> BuildConfig:
    """One-call build against the local docker engine."""
    config = config or PackConfig()
    if engine is None:
        from packforge.core.docker_engine import DockerEngine

        engine = DockerEngine()
    credentials: CredentialProvider = AnonymousCredentials()
    if config.docker_config_dir is not None:
        credentials = DockerConfigCredentials(config.docker_config_dir)

    build_logger = BuildLogger(out, err, verbose=True)
    factory = BuildFactory(engine, build_logger, config=config, credentials=credentials)
    build_config = factory.build_config_from_flags(
        BuildFlags(
            app_dir=Path(app_dir),
            builder=builder,
            run_image=run_image,
            repo_name=repo_name,
            publish=publish,
            clear_cache=clear_cache,
        )
    )
    build_config.run(cancel)
    return build_config
