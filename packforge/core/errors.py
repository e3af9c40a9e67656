"""Error taxonomy for the build engine.

Every error raised by packforge derives from ``PackError`` so callers can
catch the whole family.  No error here is retried internally; retry policy
belongs to the caller.
"""

from __future__ import annotations

# Exit code the detector uses when no buildpack group passes.
DETECT_NO_GROUP_EXIT_CODE = 6


class PackError(RuntimeError):
    """Base class for all packforge errors."""


# ---------------------------------------------------------------------------
# Resolution: raised before any phase runs
# ---------------------------------------------------------------------------


class ResolutionError(PackError):
    """Builder or run image could not be resolved or validated."""


class BuilderImageNotFoundError(ResolutionError):
    """The builder image is not available locally."""

    def __init__(self, builder: str) -> None:
        self.builder = builder
        super().__init__(f"builder image '{builder}' does not exist")


class MissingBuilderMetadataError(ResolutionError):
    """The builder metadata label is absent or cannot be parsed."""


class RunImageNotFoundError(ResolutionError):
    """The selected run image does not exist where the build needs it."""

    def __init__(self, run_image: str, *, remote: bool) -> None:
        self.run_image = run_image
        self.remote = remote
        where = "remote" if remote else "local"
        super().__init__(f"{where} run image '{run_image}' does not exist")


class MissingStackLabelError(ResolutionError):
    """The stack label is empty on the builder or the run image."""

    def __init__(self, image: str, label: str, *, role: str) -> None:
        self.image = image
        self.label = label
        self.role = role
        super().__init__(
            f"invalid {role} image '{image}': missing required label '{label}'"
        )


class StackMismatchError(ResolutionError):
    """Builder and run image declare different stacks."""

    def __init__(
        self,
        run_stack: str,
        builder_stack: str,
        *,
        run_image: str = "",
        builder: str = "",
    ) -> None:
        self.run_stack = run_stack
        self.builder_stack = builder_stack
        self.run_image = run_image
        self.builder = builder
        super().__init__(
            f"invalid stack: stack '{run_stack}' from run image '{run_image}' "
            f"does not match stack '{builder_stack}' from builder image '{builder}'"
        )


# ---------------------------------------------------------------------------
# Phase execution
# ---------------------------------------------------------------------------


class PhaseExecutionError(PackError):
    """A phase container exited with a non-zero status."""

    def __init__(self, phase: str, exit_code: int) -> None:
        self.phase = phase
        self.exit_code = exit_code
        super().__init__(
            f"run {phase} container: failed with status code: {exit_code}"
        )

    @property
    def no_buildpack_group(self) -> bool:
        """True when detect found no buildpack group for the app."""
        return self.phase == "detect" and self.exit_code == DETECT_NO_GROUP_EXIT_CODE


class PhaseCancelledError(PackError):
    """A phase was cancelled while its container was running."""

    def __init__(self, phase: str) -> None:
        self.phase = phase
        super().__init__(f"run {phase} container: cancelled")


class BuildStageError(PackError):
    """A non-phase failure inside a pipeline stage, tagged with the stage."""

    def __init__(self, stage: str, cause: BaseException) -> None:
        self.stage = stage
        self.cause = cause
        super().__init__(f"{stage}: {cause}")


# ---------------------------------------------------------------------------
# Identity / ownership
# ---------------------------------------------------------------------------


class IdentityError(PackError):
    """The builder's numeric user/group declaration is unusable."""


class MissingIdentityError(IdentityError):
    """PACK_USER_ID or PACK_GROUP_ID is not declared on the builder."""


class MalformedIdentityError(IdentityError):
    """PACK_USER_ID or PACK_GROUP_ID is not numeric."""


class OwnershipError(PackError):
    """The ownership helper container failed."""

    def __init__(self, path: str, exit_code: int) -> None:
        self.path = path
        self.exit_code = exit_code
        super().__init__(f"chown {path}: failed with status code: {exit_code}")


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------


class CacheError(PackError):
    """Clearing or persisting the build cache failed."""


class WorkspaceError(PackError):
    """The workspace volume could not be provisioned or written."""


class MetadataError(PackError):
    """A metadata label or descriptor could not be parsed.

    Recoverable when reading a previous image: the build continues as if
    there were no previous image.
    """
