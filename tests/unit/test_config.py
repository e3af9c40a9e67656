"""Unit tests for PackConfig — defaults, env overrides, TOML file, helpers."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic_settings import SettingsConfigDict

from packforge.config import PackConfig, RunImageConfig


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    """Isolate from the developer's environment, .env and config file."""
    for name in (
        "PACKFORGE_DEFAULT_BUILDER",
        "PACKFORGE_CACHE_KIND",
        "PACKFORGE_RUN_IMAGES",
        "PACKFORGE_VERBOSE",
        "PACKFORGE_TRACK_LAYERS",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


def _config_with_file(path: Path) -> type[PackConfig]:
    class FileConfig(PackConfig):
        model_config = SettingsConfigDict(toml_file=path)

    return FileConfig


class TestDefaults:
    def test_defaults(self):
        config = _config_with_file(Path("missing.toml"))()
        assert config.default_builder == "packs/samples"
        assert config.lifecycle_dir == "/lifecycle"
        assert config.daemon_socket == "/var/run/docker.sock"
        assert config.cache_kind == "image"
        assert config.track_layers is True
        assert config.run_images == []
        assert config.docker_config_dir is None

    def test_init_arguments_win(self):
        config = PackConfig(default_builder="mine/builder", cache_kind="volume")
        assert config.default_builder == "mine/builder"
        assert config.cache_kind == "volume"


class TestEnvOverrides:
    def test_prefixed_env(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("PACKFORGE_DEFAULT_BUILDER", "env/builder")
        monkeypatch.setenv("PACKFORGE_CACHE_KIND", "volume")
        config = PackConfig()
        assert config.default_builder == "env/builder"
        assert config.cache_kind == "volume"

    def test_run_images_from_json_env(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv(
            "PACKFORGE_RUN_IMAGES",
            '[{"image": "packs/run", "mirrors": ["registry.example.com/packs/run"]}]',
        )
        config = PackConfig()
        assert config.run_images == [
            RunImageConfig(image="packs/run", mirrors=["registry.example.com/packs/run"])
        ]

    def test_dotenv_file(self, tmp_path: Path):
        (tmp_path / ".env").write_text("PACKFORGE_VERBOSE=true\n")
        assert PackConfig().verbose is True

    def test_invalid_cache_kind_rejected(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("PACKFORGE_CACHE_KIND", "s3")
        with pytest.raises(ValueError):
            PackConfig()


class TestTomlFile:
    def test_reads_config_file(self, tmp_path: Path):
        path = tmp_path / "config.toml"
        path.write_text(
            'default_builder = "file/builder"\n'
            "\n"
            "[[run_images]]\n"
            'image = "packs/run"\n'
            'mirrors = ["local.example.com/run"]\n'
        )
        config = _config_with_file(path)()
        assert config.default_builder == "file/builder"
        assert config.get_run_image("packs/run").mirrors == ["local.example.com/run"]

    def test_env_beats_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        path = tmp_path / "config.toml"
        path.write_text('default_builder = "file/builder"\n')
        monkeypatch.setenv("PACKFORGE_DEFAULT_BUILDER", "env/builder")
        assert _config_with_file(path)().default_builder == "env/builder"


class TestHelpers:
    def test_get_run_image_miss(self):
        config = PackConfig(run_images=[RunImageConfig(image="a/run")])
        assert config.get_run_image("b/run") is None
        assert config.get_run_image("a/run").mirrors == []

    def test_registry_for(self):
        config = PackConfig()
        assert config.registry_for("registry.example.com/me/app") == "registry.example.com"
        assert config.registry_for("me/app") == "index.docker.io"
