"""Layer reuse tracking across builds.

Every layer starts UNKNOWN when analyze begins.  Once export has written
the new image, each layer in the new metadata is classified against the
previous image's record:

* REUSED  — same digest as before (content came from the previous image
  or was rebuilt byte-for-byte identical),
* REBUILT — new layer, or digest changed,

then RECORDED, and EXPORTED only after the new label has been read back.
Nothing is recorded when export fails, so a failed export leaves no trace
for the next build.
"""

from __future__ import annotations

import logging

from packforge.core.errors import MetadataError, PackError
from packforge.models.images import ImageInfo
from packforge.models.metadata import METADATA_LABEL, AppImageMetadata
from packforge.models.phases import VALID_LAYER_TRANSITIONS, LayerState

logger = logging.getLogger(__name__)

LayerKey = tuple[str, str]  # (buildpack id, layer name)


class InvalidLayerTransitionError(PackError):
    """Raised when a layer is moved along an edge the state machine forbids."""


def previous_metadata(image: ImageInfo | None) -> AppImageMetadata | None:
    """Read the metadata label from a previous app image.

    A missing image or label means a from-scratch build.  A malformed
    label is logged and treated the same way.
    """
    if image is None:
        return None
    label = image.label(METADATA_LABEL)
    if not label:
        return None
    try:
        return AppImageMetadata.from_label(label)
    except MetadataError as exc:
        logger.warning(
            "Ignoring unreadable metadata on previous image %s: %s", image.ref, exc
        )
        return None


class LayerTracker:
    """Per-build view of which layers were reused and which rebuilt.

    Parameters
    ----------
    previous:
        Metadata of the image this build replaces, if any.
    """

    def __init__(self, previous: AppImageMetadata | None = None) -> None:
        self.previous = previous
        self._states: dict[LayerKey, LayerState] = {}
        self._outcomes: dict[LayerKey, LayerState] = {}
        if previous is not None:
            for bp_id, name, _ in previous.iter_layers():
                self._states[(bp_id, name)] = LayerState.UNKNOWN

    # ------------------------------------------------------------------
    # State management
    # ------------------------------------------------------------------

    def state(self, buildpack_id: str, layer: str) -> LayerState:
        return self._states.get((buildpack_id, layer), LayerState.UNKNOWN)

    def states(self) -> dict[LayerKey, LayerState]:
        return dict(self._states)

    def _transition(self, key: LayerKey, target: LayerState) -> None:
        current = self._states.get(key, LayerState.UNKNOWN)
        if target not in VALID_LAYER_TRANSITIONS[current]:
            raise InvalidLayerTransitionError(
                f"Cannot move layer {key[0]}:{key[1]} from {current.value} "
                f"to {target.value}"
            )
        self._states[key] = target

    # ------------------------------------------------------------------
    # Export bookkeeping
    # ------------------------------------------------------------------

    def record(self, exported: AppImageMetadata) -> None:
        """Classify and record every layer present in the new metadata."""
        for bp_id, name, layer in exported.iter_layers():
            key = (bp_id, name)
            self._states.setdefault(key, LayerState.UNKNOWN)
            before = self.previous.layer(bp_id, name) if self.previous else None
            if before is not None and before.sha and before.sha == layer.sha:
                self._transition(key, LayerState.REUSED)
                self._outcomes[key] = LayerState.REUSED
            else:
                self._transition(key, LayerState.REBUILT)
                self._outcomes[key] = LayerState.REBUILT
            self._transition(key, LayerState.RECORDED)

    def mark_exported(self) -> None:
        """Move every recorded layer to EXPORTED."""
        for key, state in list(self._states.items()):
            if state is LayerState.RECORDED:
                self._transition(key, LayerState.EXPORTED)

    @property
    def recorded(self) -> bool:
        """True once an export has been recorded on this tracker."""
        return bool(self._outcomes)

    def outcome(self, buildpack_id: str, layer: str) -> LayerState | None:
        """REUSED or REBUILT once the layer has been recorded, else None."""
        return self._outcomes.get((buildpack_id, layer))

    def reused(self) -> list[LayerKey]:
        return sorted(k for k, v in self._outcomes.items() if v is LayerState.REUSED)

    def rebuilt(self) -> list[LayerKey]:
        return sorted(k for k, v in self._outcomes.items() if v is LayerState.REBUILT)

    def dropped(self) -> list[LayerKey]:
        """Layers of the previous image that the new image no longer has."""
        return sorted(k for k, v in self._states.items() if v is LayerState.UNKNOWN)

    def summary(self) -> dict[str, int]:
        return {
            "reused": len(self.reused()),
            "rebuilt": len(self.rebuilt()),
            "dropped": len(self.dropped()),
        }
