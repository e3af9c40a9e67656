"""Per-invocation build inputs."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


class BuildFlags(BaseModel):
    """Raw, unvalidated input as collected by a CLI or caller."""

    model_config = ConfigDict(frozen=True)

    app_dir: Path | None = None
    builder: str = ""
    run_image: str = ""
    env_file: Path | None = None
    repo_name: str = ""
    publish: bool = False
    no_pull: bool = False
    clear_cache: bool = False
    buildpacks: list[str] = Field(default_factory=list)


class LifecycleConfig(BaseModel):
    """What the workspace needs to be provisioned."""

    model_config = ConfigDict(frozen=True)

    builder_image: str
    app_dir: Path
    buildpacks: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)


class BuildSpec(BaseModel):
    """Validated, immutable description of one build."""

    model_config = ConfigDict(frozen=True)

    builder: str
    run_image: str
    repo_name: str
    publish: bool = False
    clear_cache: bool = False
    locally_configured_run_image: bool = False
    lifecycle: LifecycleConfig
