"""Unit tests for Lifecycle — workspace provisioning, phase specs, teardown."""

from __future__ import annotations

import json
import tomllib
from pathlib import Path

import pytest

from packforge.core.credentials import REGISTRY_AUTH_ENV, RegistryAuth, StaticCredentials
from packforge.core.errors import MissingIdentityError, WorkspaceError
from packforge.core.lifecycle import BUILDPACKS_DIR, ORDER_PATH, STAGED_BUILDPACKS_DIR, Lifecycle
from packforge.models.build import LifecycleConfig
from packforge.models.phases import DaemonAccess, PhaseName, RegistryAccess
from packforge.output import BuildLogger
from tests.fakes import APP_GID, APP_UID, BUILDER, FakeEngine


@pytest.fixture
def make_lifecycle(engine: FakeEngine, build_logger: BuildLogger, app_dir: Path):
    def _factory(**overrides) -> Lifecycle:
        fields = {"builder_image": BUILDER, "app_dir": app_dir}
        credentials = overrides.pop("credentials", None)
        fields.update(overrides)
        return Lifecycle(
            LifecycleConfig(**fields), engine, build_logger, credentials=credentials, poll_interval=0.001
        )

    return _factory


class TestProvisioning:
    def test_app_owned_by_builder_identity(self, make_lifecycle, engine: FakeEngine):
        lifecycle = make_lifecycle()
        files = engine.volumes[lifecycle.workspace_volume]
        assert files["app/main.py"].data == b"print('hello')\n"
        app_entries = {k: v for k, v in files.items() if k.startswith("app")}
        assert {(e.uid, e.gid) for e in app_entries.values()} == {(APP_UID, APP_GID)}
        assert files["app/bin/run"].mode & 0o777 == 0o755

    def test_env_overlay_one_file_per_variable(self, make_lifecycle, engine: FakeEngine):
        lifecycle = make_lifecycle(env={"GREETING": "hello world", "EMPTY": ""})
        files = engine.volumes[lifecycle.workspace_volume]
        env_dir = lifecycle.platform_dir.removeprefix("/workspace/") + "/env"
        assert files[f"{env_dir}/GREETING"].data == b"hello world"
        assert files[f"{env_dir}/EMPTY"].data == b""
        assert files[env_dir].kind == "dir"

    def test_builtin_buildpacks_by_default(self, make_lifecycle):
        lifecycle = make_lifecycle()
        assert lifecycle.buildpacks_dir == BUILDPACKS_DIR
        assert lifecycle.order_path == ORDER_PATH

    def test_custom_buildpacks(self, make_lifecycle, engine: FakeEngine, tmp_path: Path):
        bp_dir = tmp_path / "my-bp"
        (bp_dir / "bin").mkdir(parents=True)
        (bp_dir / "buildpack.toml").write_text('[buildpack]\nid = "my.bp"\nversion = "0.1"\n')
        (bp_dir / "bin" / "build").write_text("#!/bin/sh\n")
        (bp_dir / "bin" / "build").chmod(0o755)

        lifecycle = make_lifecycle(buildpacks=[str(bp_dir), "io.example.go@1.2"])
        files = engine.volumes[lifecycle.workspace_volume]
        staged = STAGED_BUILDPACKS_DIR.removeprefix("/workspace/")

        assert lifecycle.buildpacks_dir == STAGED_BUILDPACKS_DIR
        assert files[f"{staged}/my.bp/0.1/bin/build"].mode & 0o777 == 0o755
        link = files[f"{staged}/io.example.go/1.2"]
        assert link.kind == "symlink"
        assert link.linkname == "/buildpacks/io.example.go/1.2"

        order = tomllib.loads(files[f"{staged}/order.toml"].data.decode())
        assert order["groups"][0]["buildpacks"] == [
            {"id": "my.bp", "version": "0.1"},
            {"id": "io.example.go", "version": "1.2"},
        ]

    def test_directory_buildpack_needs_descriptor(self, make_lifecycle, engine: FakeEngine, tmp_path: Path):
        (tmp_path / "empty-bp").mkdir()
        with pytest.raises(WorkspaceError, match="buildpack.toml"):
            make_lifecycle(buildpacks=[str(tmp_path / "empty-bp")])
        assert engine.volumes == {}

    def test_missing_app_dir_removes_volume(self, make_lifecycle, engine: FakeEngine, tmp_path: Path):
        with pytest.raises(WorkspaceError, match="does not exist"):
            make_lifecycle(app_dir=tmp_path / "nope")
        assert engine.volumes == {}

    def test_identity_error_removes_volume(self, make_lifecycle, engine: FakeEngine):
        engine.add_image("anon/builder", env=[])
        with pytest.raises(MissingIdentityError):
            make_lifecycle(builder_image="anon/builder")
        assert engine.volumes == {}


class TestNewPhase:
    def test_no_access(self, make_lifecycle):
        lifecycle = make_lifecycle()
        phase = lifecycle.new_phase(PhaseName.DETECT, ["-group", "/workspace/group.toml"])
        spec = phase.spec
        assert spec.image == BUILDER
        assert spec.cmd == ["/lifecycle/detector", "-group", "/workspace/group.toml"]
        assert spec.binds == [f"{lifecycle.workspace_volume}:/workspace"]
        assert spec.user == ""
        assert spec.env == {}
        assert spec.labels == {"author": "packforge"}

    def test_daemon_access(self, make_lifecycle):
        lifecycle = make_lifecycle()
        spec = lifecycle.new_phase(
            PhaseName.RESTORE, access=DaemonAccess(), binds=["cache:/cache"]
        ).spec
        assert spec.user == "root"
        assert "/var/run/docker.sock:/var/run/docker.sock" in spec.binds
        assert "cache:/cache" in spec.binds
        assert REGISTRY_AUTH_ENV not in spec.env

    def test_registry_access(self, make_lifecycle):
        credentials = StaticCredentials(
            {
                "registry.example.com": RegistryAuth(username="u", password="p"),
                "elsewhere.example.com": RegistryAuth(identity_token="nope"),
            }
        )
        lifecycle = make_lifecycle(credentials=credentials)
        spec = lifecycle.new_phase(
            PhaseName.EXPORT,
            access=RegistryAccess(
                repo_name="registry.example.com/me/app",
                run_image="registry.example.com/packs/run",
            ),
        ).spec
        assert spec.network_mode == "host"
        assert spec.user == ""
        assert not any("docker.sock" in bind for bind in spec.binds)
        assert list(json.loads(spec.env[REGISTRY_AUTH_ENV])) == ["registry.example.com"]

    def test_custom_lifecycle_dir(self, engine: FakeEngine, build_logger: BuildLogger, app_dir: Path):
        lifecycle = Lifecycle(
            LifecycleConfig(builder_image=BUILDER, app_dir=app_dir),
            engine,
            build_logger,
            lifecycle_dir="/cnb/lifecycle",
        )
        assert lifecycle.new_phase(PhaseName.CACHE).spec.cmd == ["/cnb/lifecycle/cacher"]


class TestTeardown:
    def test_context_manager_removes_volume(self, make_lifecycle, engine: FakeEngine):
        with make_lifecycle() as lifecycle:
            name = lifecycle.workspace_volume
            assert name in engine.volumes
        assert name not in engine.volumes

    def test_cleanup_never_raises(self, make_lifecycle, engine: FakeEngine, monkeypatch: pytest.MonkeyPatch):
        lifecycle = make_lifecycle()

        def _refuse(name: str) -> None:
            raise RuntimeError("volume in use")

        monkeypatch.setattr(engine, "remove_volume", _refuse)
        lifecycle.cleanup()

    def test_read_group(self, make_lifecycle, engine: FakeEngine):
        lifecycle = make_lifecycle()
        with lifecycle.new_phase(
            PhaseName.DETECT,
            [
                "-buildpacks", lifecycle.buildpacks_dir,
                "-order", lifecycle.order_path,
                "-group", "/workspace/group.toml",
                "-plan", "/workspace/plan.toml",
                "-platform", lifecycle.platform_dir,
            ],
        ) as phase:
            phase.run()
        group = lifecycle.read_group()
        assert [bp.id for bp in group.buildpacks] == ["sample.bp"]
