"""packforge CLI — Typer-based command-line interface.

Provides the ``packforge`` command with subcommands for building an app
image, inspecting the metadata label of a built image, and showing the
active configuration.

All output uses Rich for formatted terminal display.
"""
