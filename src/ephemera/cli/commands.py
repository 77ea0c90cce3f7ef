"""CLI commands for ephemera."""

from __future__ import annotations

import logging
import sys
import time

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ephemera.config import HarnessSettings, load_settings
from ephemera.errors import EphemeraError
from ephemera.infra import EphemeralServer, HealthProbe, HealthProbeResult

# Exit codes
EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_CONFIG_ERROR = 2

console = Console()
err_console = Console(stderr=True)


def setup_logging(verbose: bool) -> None:
    """Configure logging based on verbosity level."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def parse_overrides(pairs: tuple[str, ...]) -> dict[str, str]:
    """Turn ``KEY=VALUE`` pairs into an override mapping."""
    overrides: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise click.BadParameter(f"expected KEY=VALUE, got {pair!r}", param_hint="--set")
        overrides[key.strip()] = value.strip()
    return overrides


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.option("--config", "-c", type=click.Path(exists=True), help="Path to settings YAML file")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, config: str | None) -> None:
    """ephemera - ephemeral backend instances for integration tests."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config
    ctx.obj["verbose"] = verbose

    setup_logging(verbose)


@cli.command("up")
@click.argument("command", nargs=-1, required=False)
@click.option("--root-dir", "-r", type=click.Path(file_okay=False), help="Backend root directory")
@click.option("--set", "-s", "pairs", multiple=True, help="Config override KEY=VALUE (repeatable)")
@click.option("--timeout", "-t", type=float, default=None, help="Readiness deadline in seconds")
@click.pass_context
def up(
    ctx: click.Context,
    command: tuple[str, ...],
    root_dir: str | None,
    pairs: tuple[str, ...],
    timeout: float | None,
) -> None:
    """Start an instance, print its endpoint and keep it up until Ctrl+C.

    COMMAND is the backend's argv; the generated config path is appended.

    \b
    Examples:
        ephemera up -r ./dist -- ./dist/bin/server
        ephemera up -s server.auth.enabled=false -- java -jar server.jar
    """
    overrides: dict[str, object] = {}
    if root_dir:
        overrides["root_dir"] = root_dir
    if command:
        overrides["service_command"] = list(command)
    if timeout is not None:
        overrides["startup_timeout"] = timeout

    try:
        settings = load_settings(ctx.obj.get("config_path"), **overrides)
        server = EphemeralServer(settings, context=parse_overrides(pairs))
    except EphemeraError as e:
        err_console.print(f"[bold red]{escape(str(e))}[/bold red]")
        sys.exit(EXIT_CONFIG_ERROR)

    console.print("[bold]Starting ephemeral instance...[/bold]")
    try:
        server.start()
    except EphemeraError as e:
        err_console.print(f"[bold red]Failed to start instance:[/bold red] {escape(str(e))}")
        if getattr(e, "log_tail", ""):
            err_console.print(e.log_tail, markup=False)
        sys.exit(EXIT_FAILURE)

    _print_runtime(server)
    console.print("[dim]Press Ctrl+C to stop[/dim]")
    try:
        while server.execution is not None and not server.execution.is_done():
            time.sleep(1)
        console.print("[bold yellow]Service exited on its own[/bold yellow]")
    except KeyboardInterrupt:
        pass

    try:
        server.stop()
    except EphemeraError as e:
        err_console.print(f"[bold red]Failed to stop instance:[/bold red] {escape(str(e))}")
        sys.exit(EXIT_FAILURE)
    console.print("[bold green]Instance stopped[/bold green]")
    for warning in server.cleanup_report.warnings if server.cleanup_report else []:
        err_console.print(f"[yellow]{escape(warning)}[/yellow]")


@cli.command("probe")
@click.argument("base_url")
@click.option("--path", "-p", default=None, help="Health endpoint path (default: api/version)")
@click.option("--timeout", "-t", type=float, default=5.0, help="Request timeout in seconds")
def probe(base_url: str, path: str | None, timeout: float) -> None:
    """Issue a single health probe against BASE_URL.

    Exits 0 if the service reports healthy, 1 otherwise.
    """
    health_path = path or HarnessSettings.model_fields["health_path"].default
    with HealthProbe(base_url, path=health_path, timeout=timeout) as health:
        result = health.probe()
    if result is HealthProbeResult.HEALTHY:
        console.print(f"[green]{health.url}: healthy[/green]")
        sys.exit(EXIT_SUCCESS)
    console.print(f"[red]{health.url}: not healthy[/red]")
    sys.exit(EXIT_FAILURE)


def _print_runtime(server: EphemeralServer) -> None:
    runtime = server.runtime_config
    if runtime is None:
        return
    table = Table(title=f"Instance at {runtime.base_url}")
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    table.add_row("config file", str(runtime.config_file))
    table.add_row("storage path", str(runtime.storage_path))
    for key, port in runtime.auxiliary_ports.items():
        table.add_row(key, str(port))
    console.print(table)
