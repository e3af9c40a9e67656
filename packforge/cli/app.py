"""Main Typer application — imports and registers all CLI commands.

Entry point: ``packforge`` (configured via pyproject.toml scripts).
"""

from __future__ import annotations

import typer

from packforge.cli.commands.build import build_cmd
from packforge.cli.commands.inspect_image import inspect_image_cmd

app = typer.Typer(
    name="packforge",
    help="packforge: build app images from source with buildpacks.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)

app.command(name="build", help="Build an app image from source.")(build_cmd)
app.command(name="inspect-image", help="Show the layer metadata of a built image.")(inspect_image_cmd)


@app.command(name="config", help="Show the active configuration.")
def config_cmd() -> None:
    """Print the effective settings after env and file overrides."""
    from rich.console import Console
    from rich.table import Table

    from packforge.config import PackConfig

    console = Console()
    settings = PackConfig()

    table = Table(title="packforge configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    for name, value in settings.model_dump().items():
        if name == "run_images":
            value = ", ".join(
                f"{entry['image']} -> {entry['mirrors']}" for entry in value
            ) or "-"
        table.add_row(name, str(value))
    console.print(table)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
