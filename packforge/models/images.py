"""Engine-facing value types: image descriptors and container specs."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class ImageInfo(BaseModel):
    """What the engine reports about one image."""

    model_config = ConfigDict(frozen=True)

    ref: str
    id: str = ""
    repo_digests: list[str] = Field(default_factory=list)
    labels: dict[str, str] = Field(default_factory=dict)
    env: list[str] = Field(default_factory=list)
    layers: list[str] = Field(default_factory=list)

    def label(self, name: str) -> str:
        """Return the label value, or ``""`` when absent."""
        return self.labels.get(name, "")

    def env_value(self, name: str) -> str | None:
        """Return the value of a ``NAME=value`` declaration, if present."""
        for item in self.env:
            key, sep, value = item.partition("=")
            if sep and key == name:
                return value
        return None

    @property
    def digest(self) -> str:
        """Content digest: the first repo digest, else the image ID."""
        if self.repo_digests:
            return self.repo_digests[0].split("@", 1)[-1]
        return self.id

    @property
    def top_layer(self) -> str:
        return self.layers[-1] if self.layers else ""


class ContainerSpec(BaseModel):
    """Everything needed to create one container."""

    model_config = ConfigDict(frozen=True)

    image: str
    cmd: list[str]
    user: str = ""
    env: dict[str, str] = Field(default_factory=dict)
    binds: list[str] = Field(default_factory=list)
    labels: dict[str, str] = Field(default_factory=dict)
    network_mode: str = ""
