"""TOML descriptors exchanged through the workspace.

* ``order.toml``      — candidate buildpack groups, written before detect.
* ``group.toml``      — the group that passed detection.
* ``<bp>/<layer>.toml`` — per-layer flags plus opaque ``[metadata]``.
* ``buildpack.toml``  — identity of a directory buildpack.
"""

from __future__ import annotations

import tomllib
from typing import Any

import tomli_w
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from packforge.core.errors import MetadataError


def _load(text: str | bytes, what: str) -> dict[str, Any]:
    if isinstance(text, bytes):
        text = text.decode("utf-8")
    try:
        return tomllib.loads(text)
    except tomllib.TOMLDecodeError as exc:
        raise MetadataError(f"invalid {what}: {exc}") from exc


class BuildpackRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    version: str = "latest"
    optional: bool = False

    @classmethod
    def parse(cls, reference: str) -> BuildpackRef:
        """Parse ``id@version``; the version defaults to ``latest``."""
        bp_id, _, version = reference.partition("@")
        return cls(id=bp_id, version=version or "latest")


class OrderGroup(BaseModel):
    model_config = ConfigDict(frozen=True)

    buildpacks: list[BuildpackRef] = Field(default_factory=list)


class OrderDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    groups: list[OrderGroup] = Field(default_factory=list)

    def to_toml(self) -> str:
        groups = []
        for group in self.groups:
            entries = []
            for bp in group.buildpacks:
                entry: dict[str, Any] = {"id": bp.id, "version": bp.version}
                if bp.optional:
                    entry["optional"] = True
                entries.append(entry)
            groups.append({"buildpacks": entries})
        return tomli_w.dumps({"groups": groups})


class GroupDescriptor(BaseModel):
    """The detected group.  Equality compares the buildpacks in order."""

    model_config = ConfigDict(frozen=True)

    buildpacks: list[BuildpackRef] = Field(default_factory=list)

    @classmethod
    def from_toml(cls, text: str | bytes) -> GroupDescriptor:
        payload = _load(text, "group descriptor")
        try:
            return cls.model_validate({"buildpacks": payload.get("buildpacks", [])})
        except ValidationError as exc:
            raise MetadataError(f"invalid group descriptor: {exc}") from exc


class LayerDescriptor(BaseModel):
    """A buildpack's ``<layer>.toml``."""

    model_config = ConfigDict(frozen=True)

    launch: bool = False
    build: bool = False
    cache: bool = False
    metadata: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_toml(cls, text: str | bytes) -> LayerDescriptor:
        payload = _load(text, "layer descriptor")
        try:
            return cls.model_validate(payload)
        except ValidationError as exc:
            raise MetadataError(f"invalid layer descriptor: {exc}") from exc

    def to_toml(self) -> str:
        payload: dict[str, Any] = {
            "launch": self.launch,
            "build": self.build,
            "cache": self.cache,
        }
        if self.metadata:
            payload["metadata"] = self.metadata
        return tomli_w.dumps(payload)


class BuildpackDescriptor(BaseModel):
    """Identity fields from a directory buildpack's ``buildpack.toml``."""

    model_config = ConfigDict(frozen=True)

    id: str
    version: str
    name: str = ""

    @classmethod
    def from_toml(cls, text: str | bytes) -> BuildpackDescriptor:
        payload = _load(text, "buildpack.toml")
        section = payload.get("buildpack")
        if not isinstance(section, dict):
            raise MetadataError("invalid buildpack.toml: missing [buildpack] table")
        try:
            return cls.model_validate(section)
        except ValidationError as exc:
            raise MetadataError(f"invalid buildpack.toml: {exc}") from exc
