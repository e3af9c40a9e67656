"""``packforge inspect-image`` — show an app image's layer metadata."""

from __future__ import annotations

import json

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from packforge.core.errors import MetadataError
from packforge.models.metadata import METADATA_LABEL, RUN_IMAGE_LABEL, AppImageMetadata

console = Console()


def _engine():
    from packforge.core.docker_engine import DockerEngine

    return DockerEngine()


def inspect_image_cmd(
    image: str = typer.Argument(..., help="Local app image to inspect."),
    as_json: bool = typer.Option(False, "--json", help="Print the raw metadata label."),
) -> None:
    """Show run image, digests and buildpack layers recorded on an image."""
    info = _engine().inspect_image(image)
    if info is None:
        console.print(f"[red]Image '{image}' not found.[/red]")
        raise typer.Exit(code=1)

    label = info.label(METADATA_LABEL)
    if not label:
        console.print(f"[yellow]Image '{image}' has no {METADATA_LABEL} label.[/yellow]")
        raise typer.Exit(code=1)
    try:
        metadata = AppImageMetadata.from_label(label)
    except MetadataError as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(code=1)

    if as_json:
        console.print_json(json.dumps(json.loads(metadata.to_label())))
        return

    run_image_label = info.label(RUN_IMAGE_LABEL)
    console.print(f"[bold]Run image:[/bold]  {run_image_label or '[dim](locally configured)[/dim]'}")
    console.print(f"[bold]Run SHA:[/bold]    {metadata.run_image.sha}")
    console.print(f"[bold]Top layer:[/bold]  {metadata.run_image.top_layer}")
    console.print(f"[bold]App SHA:[/bold]    {metadata.app.sha}")
    console.print(f"[bold]Config SHA:[/bold] {metadata.config.sha}")

    table = Table(title="Buildpack Layers")
    table.add_column("Buildpack", style="cyan")
    table.add_column("Layer", style="green")
    table.add_column("Launch", justify="center")
    table.add_column("SHA")
    for bp_id, name, layer in metadata.iter_layers():
        table.add_row(bp_id, name, "yes" if layer.launch else "no", layer.sha)
    console.print(table)
