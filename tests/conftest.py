"""Shared test fixtures for packforge."""

from __future__ import annotations

import io
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from packforge.config import PackConfig
from packforge.core.build_factory import BuildFactory
from packforge.models.build import BuildFlags
from packforge.models.metadata import STACK_LABEL
from packforge.output import BuildLogger
from tests.fakes import (
    APP_GID,
    APP_UID,
    BUILDER,
    RUN_IMAGE,
    RUN_MIRROR,
    STACK,
    FakeEngine,
    builder_labels,
)


@pytest.fixture
def engine() -> FakeEngine:
    """A fake engine holding a builder and its run images, locally and remotely."""
    fake = FakeEngine()
    fake.add_image(
        BUILDER,
        labels=builder_labels(),
        env=[f"PACK_USER_ID={APP_UID}", f"PACK_GROUP_ID={APP_GID}", "PATH=/usr/bin"],
    )
    for remote in (False, True):
        for ref in (RUN_IMAGE, RUN_MIRROR):
            fake.add_image(
                ref,
                remote=remote,
                labels={STACK_LABEL: STACK},
                repo_digests=[f"{ref}@sha256:{'a' * 64}"],
                layers=["sha256:base", "sha256:top"],
            )
    return fake


@pytest.fixture
def app_dir(tmp_path: Path) -> Path:
    """A small app source tree with one executable file."""
    root = tmp_path / "app"
    (root / "bin").mkdir(parents=True)
    (root / "main.py").write_text("print('hello')\n")
    script = root / "bin" / "run"
    script.write_text("#!/bin/sh\nexec python main.py\n")
    script.chmod(0o755)
    return root


@pytest.fixture
def pack_config() -> PackConfig:
    """Configuration pointing at the fake builder, with a fast poll."""
    return PackConfig(
        default_builder=BUILDER,
        poll_interval_seconds=0.001,
        cache_kind="image",
        track_layers=True,
    )


@pytest.fixture
def out() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def err() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def build_logger(out: io.StringIO, err: io.StringIO) -> BuildLogger:
    """A verbose logger writing to in-memory streams."""
    return BuildLogger(out, err, verbose=True)


@pytest.fixture
def factory(engine: FakeEngine, build_logger: BuildLogger, pack_config: PackConfig) -> BuildFactory:
    return BuildFactory(engine, build_logger, config=pack_config)


@pytest.fixture
def make_flags(app_dir: Path) -> Callable[..., BuildFlags]:
    """Factory fixture: build BuildFlags with sensible defaults."""

    def _factory(**overrides: Any) -> BuildFlags:
        defaults: dict[str, Any] = {
            "app_dir": app_dir,
            "repo_name": "my/app",
            "no_pull": True,
        }
        defaults.update(overrides)
        return BuildFlags(**defaults)

    return _factory
