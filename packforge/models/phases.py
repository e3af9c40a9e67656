"""Phase and layer state models — the fixed pipeline and its access modes."""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from packforge.core.errors import DETECT_NO_GROUP_EXIT_CODE


class PhaseName(str, Enum):
    """The six fixed lifecycle entry points, in pipeline order.

    Values are the executable names under ``/lifecycle`` in the builder.
    """

    DETECT = "detector"
    RESTORE = "restorer"
    ANALYZE = "analyzer"
    BUILD = "builder"
    EXPORT = "exporter"
    CACHE = "cacher"

    @property
    def stage(self) -> str:
        """Short stage name used in messages (``detect``, ``export``, ...)."""
        return _STAGE_NAMES[self]

    @property
    def step_label(self) -> str:
        """Banner shown before the stage runs."""
        return _STEP_LABELS[self]


_STAGE_NAMES: dict[PhaseName, str] = {
    PhaseName.DETECT: "detect",
    PhaseName.RESTORE: "restore",
    PhaseName.ANALYZE: "analyze",
    PhaseName.BUILD: "build",
    PhaseName.EXPORT: "export",
    PhaseName.CACHE: "cache",
}

_STEP_LABELS: dict[PhaseName, str] = {
    PhaseName.DETECT: "DETECTING",
    PhaseName.RESTORE: "RESTORING",
    PhaseName.ANALYZE: "ANALYZING",
    PhaseName.BUILD: "BUILDING",
    PhaseName.EXPORT: "EXPORTING",
    PhaseName.CACHE: "CACHING",
}

PHASE_ORDER: list[PhaseName] = list(PhaseName)


# ---------------------------------------------------------------------------
# Access modes (exactly one per phase)
# ---------------------------------------------------------------------------


class NoAccess(BaseModel):
    """The phase gets no access to images outside the workspace."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["none"] = "none"


class DaemonAccess(BaseModel):
    """The phase talks to the local engine through its control socket."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["daemon"] = "daemon"


class RegistryAccess(BaseModel):
    """The phase gets registry credentials scoped to two references."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["registry"] = "registry"
    repo_name: str
    run_image: str


AccessMode = Annotated[
    Union[NoAccess, DaemonAccess, RegistryAccess],
    Field(discriminator="kind"),
]


# ---------------------------------------------------------------------------
# Layer reuse state machine (across builds)
# ---------------------------------------------------------------------------


class LayerState(str, Enum):
    """Lifecycle of one buildpack layer from analyze to export."""

    UNKNOWN = "unknown"
    REUSED = "reused"
    REBUILT = "rebuilt"
    RECORDED = "recorded"
    EXPORTED = "exported"


# EXPORTED is terminal. A layer left in UNKNOWN was not part of the new image.
VALID_LAYER_TRANSITIONS: dict[LayerState, set[LayerState]] = {
    LayerState.UNKNOWN: {LayerState.REUSED, LayerState.REBUILT},
    LayerState.REUSED: {LayerState.RECORDED},
    LayerState.REBUILT: {LayerState.RECORDED},
    LayerState.RECORDED: {LayerState.EXPORTED},
    LayerState.EXPORTED: set(),
}
