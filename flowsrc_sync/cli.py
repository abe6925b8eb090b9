"""
CLI commands for flowsrc-sync.

Provides the `flowsrc` command-line interface for creating a config file,
checking status, one-shot pulls and continuous bidirectional watching.
"""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from config.defaults import DEFAULT_CONFIG_FILENAME, DEFAULT_SETTINGS
from config.loader import ConfigurationLoader
from core.errors import ConfigurationError, FilesystemError, FlowSyncError
from core.models.config import GlobalSettings, SyncConfig
from core.models.manifest import ApplyStats, Manifest
from core.sync.engine import FlowSyncEngine
from core.sync.watcher import FlowSourceWatcher
from core.transport.client import NodeRedClient
from core.transport.comms import FlowsChangeListener

from . import __version__

console = Console()


def _setup_logging(verbose: bool) -> None:
    settings = GlobalSettings()
    level = logging.DEBUG if verbose else getattr(logging, settings.log_level)
    logging.basicConfig(level=level, format=settings.log_format)


def _load_config(config_path: Optional[str]) -> SyncConfig:
    """Load the config or exit with the error printed"""
    try:
        return ConfigurationLoader().load(config_path)
    except ConfigurationError as e:
        console.print(f"[red]❌ {e}[/red]")
        sys.exit(1)


config_option = click.option(
    '--config', '-c', 'config_path',
    type=click.Path(dir_okay=False),
    help=f'Path to the config file (default: ./{DEFAULT_CONFIG_FILENAME})'
)


@click.group()
@click.version_option(version=__version__, prog_name="flowsrc")
@click.option('--verbose', '-v', is_flag=True, help='Enable debug logging')
def main(verbose: bool):
    """
    flowsrc - Node-RED flows as source files.

    Keeps the function and template code of a Node-RED instance in sync with a
    local source tree, in both directions.
    """
    _setup_logging(verbose)


@main.command()
@click.option(
    '--force', '-f',
    is_flag=True,
    help='Overwrite existing configuration'
)
@click.option(
    '--node-red-url',
    default=DEFAULT_SETTINGS['node_red']['url'],
    help=f"Node-RED base URL (default: {DEFAULT_SETTINGS['node_red']['url']})"
)
@config_option
def init(force: bool, node_red_url: str, config_path: Optional[str]):
    """Create a starter config file."""
    config_file = Path(config_path) if config_path else Path.cwd() / DEFAULT_CONFIG_FILENAME

    if config_file.exists() and not force:
        console.print("[yellow]⚠️  Config file already exists. Use --force to overwrite.[/yellow]")
        return

    try:
        written = ConfigurationLoader().write_default(config_file, node_red_url, overwrite=force)
    except ConfigurationError as e:
        console.print(f"[red]❌ {e}[/red]")
        sys.exit(1)

    console.print(f"[green]✅ Created {written}[/green]")
    console.print("\n[blue]Next steps:[/blue]")
    console.print("1. Set the bearer token if Node-RED has admin authentication enabled")
    console.print(f"2. Project the flows: [bold]flowsrc pull -c {written}[/bold]")
    console.print(f"3. Keep both sides in sync: [bold]flowsrc watch -c {written}[/bold]")


@main.command()
@config_option
def status(config_path: Optional[str]):
    """Show configuration, manifest and Node-RED reachability."""
    config = _load_config(config_path)

    table = Table(title="flowsrc Status")
    table.add_column("Component", style="cyan", no_wrap=True)
    table.add_column("Status", style="white", no_wrap=True)
    table.add_column("Details", style="dim", overflow="fold")

    table.add_row("Config", "[green]✅ Loaded[/green]", str(config.config_dir))

    if config.source_path.is_dir():
        table.add_row("Source Path", "[green]✅ Present[/green]", str(config.source_path))
    else:
        table.add_row("Source Path", "[yellow]⚠️  Missing[/yellow]", f"{config.source_path} (run 'flowsrc pull')")

    manifest = Manifest.load(config.manifest_file)
    if manifest:
        table.add_row(
            "Manifest",
            "[green]✅ Present[/green]",
            f"{len(manifest.items)} items, {manifest.file_count} files, rev {manifest.rev or '-'}"
        )
    else:
        table.add_row("Manifest", "[yellow]⚠️  Missing[/yellow]", str(config.manifest_file))

    client = NodeRedClient.from_config(config)
    try:
        reachable = client.check_connection()
    finally:
        client.close()

    if reachable:
        table.add_row("Node-RED", "[green]✅ Connected[/green]", config.node_red_url)
    else:
        table.add_row("Node-RED", "[red]❌ Not available[/red]", config.node_red_url)

    console.print(table)


@main.command()
@config_option
@click.option('--clean', is_flag=True, help='Clear the source directory before projecting')
def pull(config_path: Optional[str], clean: bool):
    """Project the current flows onto the source tree once."""
    config = _load_config(config_path)
    if clean:
        config.clean_on_start = True

    try:
        stats = asyncio.run(_run_pull(config))
    except FlowSyncError as e:
        console.print(f"[red]❌ Pull failed: {e}[/red]")
        sys.exit(1)

    _print_stats(stats)


@main.command()
@config_option
def watch(config_path: Optional[str]):
    """Sync once, then keep flows and source tree in sync until interrupted."""
    config = _load_config(config_path)

    try:
        asyncio.run(_run_watch(config))
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped.[/yellow]")
    except FlowSyncError as e:
        console.print(f"[red]❌ Watch failed: {e}[/red]")
        sys.exit(1)


async def _run_pull(config: SyncConfig) -> ApplyStats:
    """Run a one-shot remote to local projection."""
    client = NodeRedClient.from_config(config)
    try:
        engine = FlowSyncEngine(config, client)
        return await engine.initial_sync()
    finally:
        client.close()


async def _run_watch(config: SyncConfig) -> None:
    """Run the initial sync, then both triggers until cancelled."""
    client = NodeRedClient.from_config(config)
    engine = FlowSyncEngine(config, client)

    try:
        stats = await engine.initial_sync()
        _print_stats(stats)

        watcher = FlowSourceWatcher(
            config.source_path,
            engine.submit_local_changes,
            debounce_ms=config.file_change_delay_ms
        )
        listener = FlowsChangeListener.from_config(config, engine.notify_remote_revision)

        async with engine:
            if not await watcher.start_monitoring():
                raise FilesystemError(f"Could not watch {config.source_path}", config.source_path)

            console.print(f"[blue]👀 Watching {config.source_path} and {config.node_red_url}[/blue]")
            listener_task = asyncio.create_task(listener.run())
            try:
                await listener_task
            finally:
                await listener.stop()
                listener_task.cancel()
                await asyncio.gather(listener_task, return_exceptions=True)
                await watcher.stop_monitoring()
    finally:
        client.close()


def _print_stats(stats: ApplyStats) -> None:
    if stats.total_modified == 0:
        console.print("[green]✅ Source tree is up to date[/green]")
        return

    table = Table(title="Source Tree Changes")
    table.add_column("Change", style="cyan")
    table.add_column("Count", justify="right")
    for name, value in stats.to_dict().items():
        if name != "total_modified":
            table.add_row(name.replace('_', ' ').capitalize(), str(value))
    console.print(table)


if __name__ == "__main__":
    main()
