"""Run-image resolution and stack validation.

Selection order when the user did not name a run image:

1. mirrors configured locally for the builder's default run image,
2. the builder's default run image,
3. the builder's declared mirrors,

picking the first candidate hosted on the registry the app image will be
published to, and falling back to the builder's default otherwise.  The
stack check afterwards is mandatory: a builder and run image with
different stacks never produce an image.
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, ConfigDict

from packforge.config import PackConfig
from packforge.core.credentials import AnonymousCredentials, CredentialProvider
from packforge.core.engine import ContainerEngine
from packforge.core.errors import (
    MissingStackLabelError,
    RunImageNotFoundError,
    StackMismatchError,
)
from packforge.core.reference import normalize_registry, registry_of
from packforge.models.images import ImageInfo
from packforge.models.metadata import BUILDER_METADATA_LABEL, STACK_LABEL, BuilderImageMetadata
from packforge.output import BuildLogger

logger = logging.getLogger(__name__)


class ResolvedRunImage(BaseModel):
    """Outcome of run-image selection."""

    model_config = ConfigDict(frozen=True)

    ref: str
    locally_configured: bool = False


def image_by_registry(registry: str, candidates: list[str], default: str) -> str:
    """First candidate hosted on *registry*, else *default*."""
    registry = normalize_registry(registry)
    for candidate in candidates:
        if registry_of(candidate) == registry:
            return candidate
    return default


def stack_of(image: ImageInfo, *, role: str) -> str:
    """Return the stack id, raising if the label is empty."""
    stack = image.label(STACK_LABEL)
    if not stack:
        raise MissingStackLabelError(image.ref, STACK_LABEL, role=role)
    return stack


class RunImageResolver:
    """Selects the run image for a build and validates it against the builder.

    Parameters
    ----------
    engine:
        Used to inspect (and optionally pull) the run image.
    config:
        Source of locally configured run-image mirrors.
    credentials:
        Used for remote lookups when publishing.
    build_logger:
        Receives verbose progress messages.
    """

    def __init__(
        self,
        engine: ContainerEngine,
        config: PackConfig,
        *,
        credentials: CredentialProvider | None = None,
        build_logger: BuildLogger | None = None,
    ) -> None:
        self._engine = engine
        self._config = config
        self._credentials = credentials or AnonymousCredentials()
        self._logger = build_logger or BuildLogger()

    def select(self, builder: ImageInfo, user_override: str, registry: str) -> ResolvedRunImage:
        """Pick the run image reference without touching the run image itself."""
        if user_override:
            self._logger.verbose("Using user-provided run image '%s'", user_override)
            return ResolvedRunImage(ref=user_override, locally_configured=True)

        metadata = BuilderImageMetadata.from_label(
            builder.label(BUILDER_METADATA_LABEL), builder=builder.ref
        )
        default = metadata.run_image.image

        local_mirrors: list[str] = []
        local_entry = self._config.get_run_image(default)
        if local_entry is not None:
            local_mirrors = list(local_entry.mirrors)

        candidates = [*local_mirrors, default, *metadata.run_image.mirrors]
        selected = image_by_registry(registry, candidates, default)
        self._logger.verbose(
            "Selected run image '%s' from builder '%s'", selected, builder.ref
        )
        return ResolvedRunImage(ref=selected, locally_configured=selected in local_mirrors)

    def fetch(self, ref: str, *, publish: bool, pull: bool) -> ImageInfo:
        """Locate the run image where the export will need it."""
        if publish:
            auth = self._credentials.auth_for(registry_of(ref))
            image = self._engine.inspect_remote_image(ref, auth)
        else:
            if pull:
                self._logger.verbose(
                    "Pulling run image '%s' (use --no-pull flag to skip this step)", ref
                )
                self._engine.pull_image(ref, self._credentials.auth_for(registry_of(ref)))
            image = self._engine.inspect_image(ref)
        if image is None:
            raise RunImageNotFoundError(ref, remote=publish)
        return image

    def validate(self, builder: ImageInfo, run_image: ImageInfo) -> str:
        """Ensure both images declare the same stack; return it."""
        builder_stack = stack_of(builder, role="builder")
        run_stack = stack_of(run_image, role="run")
        if builder_stack != run_stack:
            raise StackMismatchError(
                run_stack,
                builder_stack,
                run_image=run_image.ref,
                builder=builder.ref,
            )
        logger.debug("Stack %s matches for %s and %s", run_stack, builder.ref, run_image.ref)
        return run_stack

    def resolve(
        self,
        builder: ImageInfo,
        user_override: str,
        registry: str,
        *,
        publish: bool = False,
        pull: bool = True,
    ) -> ResolvedRunImage:
        """Select, fetch and validate the run image in one step."""
        stack_of(builder, role="builder")
        selected = self.select(builder, user_override, registry)
        run_image = self.fetch(selected.ref, publish=publish, pull=pull)
        self.validate(builder, run_image)
        return selected
