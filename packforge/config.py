"""Configuration — env-driven, with an optional TOML file.

Centralized settings using pydantic-settings.  Values come from, in order
of precedence: constructor arguments, ``PACKFORGE_*`` environment
variables, a ``.env`` file, then ``~/.packforge/config.toml``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

from packforge.core.reference import registry_of

DEFAULT_CONFIG_FILE = Path.home() / ".packforge" / "config.toml"


class RunImageConfig(BaseModel):
    """Locally configured mirrors for one run image."""

    model_config = ConfigDict(frozen=True)

    image: str
    mirrors: list[str] = Field(default_factory=list)


class PackConfig(BaseSettings):
    """Build engine configuration with environment variable overrides.

    Examples
    --------
    Override via environment::

        export PACKFORGE_DEFAULT_BUILDER=registry.example.com/builder:bionic
        export PACKFORGE_CACHE_KIND=volume
        export PACKFORGE_RUN_IMAGES='[{"image": "packs/run", "mirrors": ["gcr.io/me/run"]}]'

    Or via ``~/.packforge/config.toml``::

        default_builder = "packs/samples"

        [[run_images]]
        image = "packs/run"
        mirrors = ["registry.example.com/packs/run"]
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PACKFORGE_",
        env_file_encoding="utf-8",
        toml_file=DEFAULT_CONFIG_FILE,
        extra="ignore",
    )

    # Builder selection
    default_builder: str = "packs/samples"
    run_images: list[RunImageConfig] = Field(default_factory=list)

    # Engine
    lifecycle_dir: str = "/lifecycle"
    daemon_socket: str = "/var/run/docker.sock"
    docker_config_dir: Path | None = None
    poll_interval_seconds: float = 1.0

    # Cache store backing
    cache_kind: Literal["image", "volume"] = "image"

    # Read previous/exported metadata to report layer reuse
    track_layers: bool = True

    # Logging
    log_level: str = "INFO"
    verbose: bool = False

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls),
        )

    def get_run_image(self, image: str) -> RunImageConfig | None:
        """Return the local mirror entry for *image*, if one is configured."""
        for run_image in self.run_images:
            if run_image.image == image:
                return run_image
        return None

    def registry_for(self, repo_name: str) -> str:
        """Registry host that *repo_name* will be published to."""
        return registry_of(repo_name)

