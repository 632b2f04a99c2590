"""Command-line interface for Mursfoto Core."""

from __future__ import annotations

import json
import logging
import sys

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from mursfoto_core import MursfotoCore
from mursfoto_core.config import CoreConfig, plugin_dirs_from_env
from mursfoto_core.errors import CommandExecutionError, MursfotoCoreError

console = Console()


def _setup_logging(verbose: bool) -> None:
    """Send package logs to stderr through rich."""
    package_logger = logging.getLogger("mursfoto_core")
    for handler in list(package_logger.handlers):
        if isinstance(handler, RichHandler):
            package_logger.removeHandler(handler)
    package_logger.addHandler(RichHandler(console=Console(stderr=True), show_path=False))
    package_logger.setLevel(logging.INFO if verbose else logging.WARNING)


def _fail(error: Exception) -> None:
    """Print an error with its kind and exit."""
    console.print(f"[red]✗ {type(error).__name__}[/red]: {escape(str(error))}")
    if isinstance(error, CommandExecutionError):
        console.print(f"  [dim]caused by {type(error.cause).__name__}: {escape(str(error.cause))}[/dim]")
    sys.exit(1)


def _build_core(ctx: click.Context) -> MursfotoCore:
    """Create and initialize the core from the global options."""
    obj = ctx.obj
    try:
        config = CoreConfig.from_file(obj["config_path"]) if obj["config_path"] else CoreConfig()
        config = config.with_plugin_dirs(*plugin_dirs_from_env(), *obj["plugin_dirs"])
        if obj["no_autoload"] or obj["verbose"]:
            config = CoreConfig(
                auto_load_plugins=config.auto_load_plugins and not obj["no_autoload"],
                verbose=config.verbose or obj["verbose"],
                plugin_config=config.plugin_config,
                command_config=config.command_config,
            )
        core = MursfotoCore(config)
        core.initialize()
    except MursfotoCoreError as e:
        _fail(e)
    return core


def _parse_options(pairs: tuple[str, ...]) -> dict[str, str]:
    options = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected key=value, got '{pair}'", param_hint="--option")
        options[key] = value
    return options


@click.group()
@click.option("--config", "-c", type=click.Path(exists=True, dir_okay=False), help="Configuration file path (JSON)")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.option("--plugin-dir", "plugin_dirs", multiple=True, type=click.Path(), help="Extra plugin directory")
@click.option("--no-autoload", is_flag=True, help="Do not load plugins on startup")
@click.version_option(package_name="mursfoto-core")
@click.pass_context
def cli(
    ctx: click.Context,
    config: str | None,
    verbose: bool,
    plugin_dirs: tuple[str, ...],
    no_autoload: bool,
) -> None:
    """Mursfoto Core - plugin loading and command dispatch."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["config_path"] = config
    ctx.obj["plugin_dirs"] = plugin_dirs
    ctx.obj["no_autoload"] = no_autoload
    _setup_logging(verbose)


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show core status."""
    core = _build_core(ctx)
    try:
        snapshot = core.get_status()
    finally:
        core.shutdown()

    table = Table(title="Core Status")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Core Version", snapshot.core_version)
    table.add_row("State", snapshot.state.value)
    table.add_row("Loaded Plugins", str(snapshot.loaded_plugins))
    table.add_row("Registered Commands", str(snapshot.registered_commands))
    table.add_row("Auto-load Plugins", "Yes" if snapshot.config["auto_load_plugins"] else "No")

    console.print(table)

    if ctx.obj.get("verbose"):
        console.print_json(data=snapshot.config)


@cli.command()
@click.pass_context
def plugins(ctx: click.Context) -> None:
    """List known plugins, including failed ones."""
    core = _build_core(ctx)
    try:
        records = core.plugin_manager.get_all_plugins()
    finally:
        core.shutdown()

    if not records:
        console.print("[yellow]No plugins found.[/yellow]")
        return

    table = Table(title="Plugins")
    table.add_column("Name", style="cyan")
    table.add_column("State", style="white")
    table.add_column("Version", style="blue")
    table.add_column("Error", style="red")

    for record in records:
        state_color = {
            "loaded": "green",
            "failed": "red",
            "loading": "yellow",
            "unloaded": "dim",
        }.get(record.state.value, "white")

        table.add_row(
            record.name,
            f"[{state_color}]{record.state.value}[/{state_color}]",
            record.metadata.version if record.metadata else "-",
            escape(str(record.error.cause)) if record.error else "",
        )

    console.print(table)


@cli.command()
@click.pass_context
def commands(ctx: click.Context) -> None:
    """List registered commands."""
    core = _build_core(ctx)
    try:
        records = core.get_registered_commands()
    finally:
        core.shutdown()

    table = Table(title="Commands")
    table.add_column("Name", style="cyan")
    table.add_column("Aliases", style="blue")
    table.add_column("Owner", style="green")
    table.add_column("Description", style="white")

    for record in records:
        table.add_row(
            record.name,
            ", ".join(record.aliases),
            record.owner,
            record.description[:50] + "..." if len(record.description) > 50 else record.description,
        )

    console.print(table)


@cli.command(context_settings={"ignore_unknown_options": True})
@click.option("--option", "-o", "option_pairs", multiple=True, help="Command option as key=value")
@click.argument("name")
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
@click.pass_context
def run(ctx: click.Context, option_pairs: tuple[str, ...], name: str, args: tuple[str, ...]) -> None:
    """Execute a registered command."""
    options = _parse_options(option_pairs)
    core = _build_core(ctx)

    try:
        result = core.execute_command(name, list(args), options)
    except MursfotoCoreError as e:
        _fail(e)
    finally:
        core.shutdown()

    if result is None:
        return
    if isinstance(result, str):
        console.print(result)
    else:
        console.print_json(json.dumps(result, default=str))


def main() -> None:
    """Entry point."""
    cli()


if __name__ == "__main__":
    main()
