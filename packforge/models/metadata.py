"""Image label models — the only state that survives between builds.

The app image carries ``io.buildpacks.lifecycle.metadata``; the builder
carries ``io.buildpacks.builder.metadata``.  Both are JSON documents whose
keys use the lifecycle's camelCase spelling, so every model here serializes
by alias.
"""

from __future__ import annotations

import json
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from packforge.core.errors import MetadataError, MissingBuilderMetadataError

METADATA_LABEL = "io.buildpacks.lifecycle.metadata"
RUN_IMAGE_LABEL = "io.buildpacks.run-image"
STACK_LABEL = "io.buildpacks.stack.id"
BUILDER_METADATA_LABEL = "io.buildpacks.builder.metadata"


class _LabelModel(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)


class RunImageMetadata(_LabelModel):
    """Digest and top layer of the run image the app was exported onto."""

    sha: str = ""
    top_layer: str = Field("", alias="topLayer")


class DigestMetadata(_LabelModel):
    sha: str = ""


class LayerMetadata(_LabelModel):
    """One exported layer.

    ``data`` is whatever the buildpack wrote under ``[metadata]`` in the
    layer descriptor.  It is copied verbatim and never inspected.
    """

    sha: str = ""
    launch: bool = False
    data: dict[str, Any] = Field(default_factory=dict)


class BuildpackMetadata(_LabelModel):
    id: str = Field(alias="key")
    version: str = ""
    layers: dict[str, LayerMetadata] = Field(default_factory=dict)


class AppImageMetadata(_LabelModel):
    """The cross-build contract written by export and read by analyze."""

    run_image: RunImageMetadata = Field(default_factory=RunImageMetadata, alias="runImage")
    app: DigestMetadata = Field(default_factory=DigestMetadata)
    config: DigestMetadata = Field(default_factory=DigestMetadata)
    buildpacks: list[BuildpackMetadata] = Field(default_factory=list)

    @classmethod
    def from_label(cls, label: str) -> AppImageMetadata:
        """Parse the label value.  Raises ``MetadataError`` if malformed."""
        try:
            return cls.model_validate_json(label)
        except ValidationError as exc:
            raise MetadataError(f"invalid {METADATA_LABEL} label: {exc}") from exc

    def to_label(self) -> str:
        return self.model_dump_json(by_alias=True)

    def buildpack(self, buildpack_id: str) -> BuildpackMetadata | None:
        for bp in self.buildpacks:
            if bp.id == buildpack_id:
                return bp
        return None

    def layer(self, buildpack_id: str, name: str) -> LayerMetadata | None:
        bp = self.buildpack(buildpack_id)
        if bp is None:
            return None
        return bp.layers.get(name)

    def iter_layers(self):
        """Yield ``(buildpack_id, layer_name, LayerMetadata)`` triples."""
        for bp in self.buildpacks:
            for name, layer in bp.layers.items():
                yield bp.id, name, layer


class BuilderRunImage(_LabelModel):
    image: str
    mirrors: list[str] = Field(default_factory=list)


class BuilderImageMetadata(_LabelModel):
    """Default run image and its mirrors, as declared by the builder."""

    run_image: BuilderRunImage = Field(alias="runImage")

    @classmethod
    def from_label(cls, label: str, *, builder: str = "") -> BuilderImageMetadata:
        """Parse the builder label, raising ``MissingBuilderMetadataError``."""
        if not label:
            raise MissingBuilderMetadataError(
                f"invalid builder image '{builder}': missing required label "
                f"'{BUILDER_METADATA_LABEL}' -- try recreating builder"
            )
        try:
            payload = json.loads(label)
            return cls.model_validate(payload)
        except (ValueError, ValidationError) as exc:
            raise MissingBuilderMetadataError(
                f"invalid builder image metadata on '{builder}': {exc}"
            ) from exc

    def to_label(self) -> str:
        return self.model_dump_json(by_alias=True)
