"""``packforge build`` — build an app image from source."""

from __future__ import annotations

import logging
import sys
import threading
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from packforge.config import PackConfig
from packforge.core.build_factory import BuildFactory
from packforge.core.credentials import (
    AnonymousCredentials,
    CredentialProvider,
    DockerConfigCredentials,
)
from packforge.core.errors import PackError, PhaseExecutionError
from packforge.models.build import BuildFlags
from packforge.output import BuildLogger

console = Console(stderr=True)


def _engine():
    from packforge.core.docker_engine import DockerEngine

    return DockerEngine()


def build_cmd(
    repo_name: str = typer.Argument("", help="Name of the image to build."),
    path: Optional[Path] = typer.Option(
        None, "--path", "-p", help="Path to the app dir (defaults to the current directory)."
    ),
    builder: str = typer.Option("", "--builder", help="Builder image."),
    run_image: str = typer.Option("", "--run-image", help="Run image (defaults to the builder's)."),
    env_file: Optional[Path] = typer.Option(
        None, "--env-file", help="File of KEY=VALUE lines exposed to buildpacks."
    ),
    buildpack: list[str] = typer.Option(
        [], "--buildpack", "-b", help="Buildpack dir or id@version (repeatable)."
    ),
    publish: bool = typer.Option(False, "--publish", help="Push to the registry instead of the daemon."),
    no_pull: bool = typer.Option(False, "--no-pull", help="Skip pulling builder and run images."),
    clear_cache: bool = typer.Option(False, "--clear-cache", help="Clear the build cache first."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show phase output."),
) -> None:
    """Build an app image from source with the builder's buildpacks."""
    config = PackConfig()
    logging.basicConfig(level=config.log_level)

    credentials: CredentialProvider = AnonymousCredentials()
    if config.docker_config_dir is not None:
        credentials = DockerConfigCredentials(config.docker_config_dir)

    build_logger = BuildLogger(sys.stdout, sys.stderr, verbose=verbose or config.verbose)
    factory = BuildFactory(_engine(), build_logger, config=config, credentials=credentials)
    flags = BuildFlags(
        app_dir=path,
        builder=builder,
        run_image=run_image,
        env_file=env_file,
        repo_name=repo_name,
        publish=publish,
        no_pull=no_pull,
        clear_cache=clear_cache,
        buildpacks=buildpack,
    )

    cancel = threading.Event()
    try:
        build_config = factory.build_config_from_flags(flags)
        build_config.run(cancel)
    except KeyboardInterrupt:
        cancel.set()
        console.print("[yellow]Build cancelled.[/yellow]")
        raise typer.Exit(code=130)
    except PhaseExecutionError as exc:
        build_logger.error("%s", exc)
        if exc.no_buildpack_group:
            console.print("[dim]No buildpack group passed detection for this app.[/dim]")
        raise typer.Exit(code=1)
    except PackError as exc:
        build_logger.error("%s", exc)
        raise typer.Exit(code=1)

    build_logger.info("Successfully built image %s", build_config.repo_name)
