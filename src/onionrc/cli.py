"""
Command Line Interface for onionrc.

Renders torrc from a YAML configuration, inspects bridge catalogs and
probes local ports.

Built with Typer for automatic tab completion.
"""

from enum import Enum
from pathlib import Path
from typing import Annotated, List, Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from . import __version__
from .bridge_list import BridgeType, filter_bridges, open_builtin_bridges, read_default_bridges
from .core.config import BuilderSettings, Settings
from .core.logging import setup_logging
from .net import is_local_port_open
from .settings import BuilderVariant
from .torrc import generate_torrc, write_torrc

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(
    name="onionrc",
    help="onionrc - torrc generator with bridge and pluggable transport support",
    add_completion=True,
    rich_markup_mode="rich",
)


class VariantChoice(str, Enum):
    legacy = "legacy"
    current = "current"


def version_callback(value: bool):
    if value:
        console.print(f"onionrc version {__version__}")
        raise typer.Exit()


def _load_settings(config: str) -> Settings:
    config_file = Path(config)
    try:
        if config_file.exists():
            return Settings.load_from_yaml(config_file)
        return Settings()
    except (ValidationError, ValueError) as e:
        err_console.print(f"[red]Invalid configuration in {config}:[/red]\n{e}")
        raise typer.Exit(code=1)


@app.callback()
def main(
    version: Annotated[bool, typer.Option("--version", callback=version_callback, is_eager=True, help="Show version and exit.")] = False,
):
    """
    onionrc - torrc generator

    Turns Tor preferences into a torrc file, selecting bridges and
    pluggable transports for censored networks.
    """
    pass


@app.command()
def init(
    output: Annotated[str, typer.Option("--output", "-o", help="Output path for configuration file")] = "config/config.yaml",
    force: Annotated[bool, typer.Option("--force", "-f", help="Overwrite an existing file")] = False,
):
    """Write a configuration file with default settings."""
    output_path = Path(output)
    if output_path.exists() and not force:
        if not typer.confirm(f"Configuration file {output} already exists. Overwrite?"):
            raise typer.Abort()

    Settings().save_to_yaml(output_path)
    console.print(f"[green]Configuration file created: {output}[/green]")


@app.command()
def generate(
    config: Annotated[str, typer.Option("--config", "-c", help="Path to configuration file")] = "config/config.yaml",
    output: Annotated[Optional[str], typer.Option("--output", "-o", help="Where to write torrc (overrides config)")] = None,
    bridges: Annotated[Optional[Path], typer.Option("--bridges", "-b", help="Bridge catalog to pick bridges from")] = None,
    custom_bridges: Annotated[Optional[Path], typer.Option("--custom-bridges", help="File of custom bridge lines, one per row")] = None,
    variant: Annotated[Optional[VariantChoice], typer.Option("--variant", help="torrc rule set")] = None,
    stdout: Annotated[bool, typer.Option("--stdout", help="Print torrc instead of writing it")] = False,
):
    """Render torrc from the configuration."""
    cfg = _load_settings(config)
    setup_logging(cfg.log.level, cfg.log.format, cfg.log.file)

    if variant is not None:
        cfg = cfg.model_copy(update={
            "builder": BuilderSettings(
                variant=BuilderVariant(variant.value),
                max_bridges=cfg.builder.max_bridges,
            )
        })

    try:
        content = generate_torrc(cfg, bridges=bridges, custom_bridges=custom_bridges)
    except (OSError, ValueError) as e:
        err_console.print(f"[red]Failed to generate torrc:[/red] {e}")
        raise typer.Exit(code=1)

    if stdout:
        typer.echo(content, nl=False)
        return

    target = Path(output) if output else cfg.get_torrc_file()
    try:
        write_torrc(content, target)
    except OSError as e:
        err_console.print(f"[red]Failed to write torrc:[/red] {e}")
        raise typer.Exit(code=1)
    console.print(f"[green]torrc written: {target}[/green]")


@app.command("bridges")
def list_bridges(
    file: Annotated[Optional[Path], typer.Option("--file", "-f", help="Bridge catalog (default: packaged list)")] = None,
    bridge_type: Annotated[Optional[List[BridgeType]], typer.Option("--type", "-t", help="Only show this transport")] = None,
):
    """List bridges from a catalog."""
    try:
        if file is not None:
            with open(file, "rb") as stream:
                entries = read_default_bridges(stream)
        else:
            with open_builtin_bridges() as stream:
                entries = read_default_bridges(stream)
    except OSError as e:
        err_console.print(f"[red]Cannot read bridge catalog:[/red] {e}")
        raise typer.Exit(code=1)

    if bridge_type:
        entries = filter_bridges(entries, bridge_type)

    if not entries:
        console.print("[yellow]No bridges found[/yellow]")
        return

    table = Table(title="Bridges")
    table.add_column("Transport", style="cyan")
    table.add_column("Bridge line", overflow="fold")
    for entry in entries:
        table.add_row(entry.type, entry.config)
    console.print(table)


@app.command("check-port")
def check_port(
    port: Annotated[int, typer.Argument(help="Loopback port to probe")],
):
    """Check whether a loopback port is already in use."""
    if is_local_port_open(port):
        console.print(f"[yellow]Port {port} is in use[/yellow] - SOCKSPort would fall back to auto")
        raise typer.Exit(code=1)
    console.print(f"[green]Port {port} is free[/green]")


# Entry point for the CLI
def cli():
    """Main entry point."""
    app()


if __name__ == "__main__":
    cli()
