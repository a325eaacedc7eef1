"""zonemetrics command line.

Usage:
    zonemetrics serve [--host HOST] [--port PORT]   # Run the HTTP agent
    zonemetrics scrape <target>                     # Print one scrape (gz = host)
    zonemetrics zones                               # List running zones
    zonemetrics modules                             # List enabled collectors
"""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

import click

from zonemetrics import __version__
from zonemetrics.config import ZoneMetricsConfig, load_config
from zonemetrics.engine import CollectionEngine
from zonemetrics.errors import ZoneMetricsError
from zonemetrics.model import Scope
from zonemetrics.server import run_server

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class CLIContext:
    """Context object for CLI commands."""

    def __init__(self, config_path: str | None = None, verbose: bool = False):
        """Initialize CLI context.

        Args:
            config_path: Path to config file.
            verbose: Enable verbose output.
        """
        self.verbose = verbose
        self.config: ZoneMetricsConfig = load_config(Path(config_path) if config_path else None)

        # Lazy-loaded components
        self._engine: CollectionEngine | None = None

    @property
    def engine(self) -> CollectionEngine:
        """Get or create the collection engine."""
        if self._engine is None:
            self._engine = CollectionEngine.from_config(self.config)
        return self._engine


pass_context = click.make_pass_decorator(CLIContext)


# =============================================================================
# Main CLI Group
# =============================================================================


@click.group()
@click.option(
    "-c", "--config",
    type=click.Path(exists=True, dir_okay=False),
    help="Path to config file",
)
@click.option(
    "-v", "--verbose",
    is_flag=True,
    help="Enable debug logging",
)
@click.version_option(version=__version__, prog_name="zonemetrics")
@click.pass_context
def cli(ctx: click.Context, config: str | None, verbose: bool) -> None:
    """zonemetrics - host and zone counters in Prometheus text format."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        stream=sys.stderr,
    )
    try:
        ctx.obj = CLIContext(config_path=config, verbose=verbose)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--config") from e


# =============================================================================
# Serve Command
# =============================================================================


@cli.command()
@click.option("--host", default=None, help="Address to bind (default from config)")
@click.option("--port", type=int, default=None, help="Port to listen on (default from config)")
@pass_context
def serve(ctx: CLIContext, host: str | None, port: int | None) -> None:
    """Run the metrics agent."""
    host = host or ctx.config.server.host
    port = port or ctx.config.server.port

    try:
        asyncio.run(run_server(ctx.engine, host, port))
    except KeyboardInterrupt:
        click.echo("Shutting down.", err=True)


# =============================================================================
# Scrape Command
# =============================================================================


@cli.command()
@click.argument("target")
@pass_context
def scrape(ctx: CLIContext, target: str) -> None:
    """Collect once for TARGET and print the result (gz is the host)."""

    async def _scrape() -> str:
        engine = ctx.engine
        await engine.start()
        try:
            return await engine.get_metrics(target)
        finally:
            await engine.stop()

    try:
        text = asyncio.run(_scrape())
    except ZoneMetricsError as e:
        click.echo(f"Error ({e.kind}): {e}", err=True)
        sys.exit(1)

    click.echo(text, nl=False)


# =============================================================================
# Inspection Commands
# =============================================================================


@cli.command()
@pass_context
def zones(ctx: CLIContext) -> None:
    """List running zones known to the instance registry."""

    async def _zones():
        await ctx.engine.refresh_registry()
        return ctx.engine.registry.instances

    try:
        instances = asyncio.run(_zones())
    except ZoneMetricsError as e:
        click.echo(f"Error ({e.kind}): {e}", err=True)
        sys.exit(1)

    if not instances:
        click.echo("No running zones.")
        return

    click.echo(f"{'ID':<6} {'UUID':<38} {'Name':<38} {'Brand':<10}")
    click.echo("-" * 94)
    for instance in instances:
        click.echo(
            f"{instance.zone_id:<6} {instance.uuid:<38} {instance.zonename:<38} {instance.brand:<10}"
        )


@cli.command()
@pass_context
def modules(ctx: CLIContext) -> None:
    """List enabled collector modules in output order."""
    for scope in Scope:
        click.echo(f"{scope.value}:")
        for module in ctx.engine.modules[scope]:
            domains = ", ".join(d.value for d in module.domains) or "per-target source"
            click.echo(f"  {module.name:<12} {domains}")


def main() -> None:
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
