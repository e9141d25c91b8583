"""
flannel-registrar CLI entry point.

Usage:
    flannel-registrar [OPTIONS] COMMAND [ARGS]...

Commands:
    run        Run the agent loop (or one cycle with --once)
    reconcile  One route reconciliation pass
    verify     Verify expected routes
    routes     Show overlay routes
    restore    Restore routes from backup
    cleanup    Remove localhost registry entries
    status     Component status
    health     Run health checks and publish
    recover    Escalating recovery
    history    Recovery history
    cooldowns  Recovery cooldowns
    config     Configuration
"""

import asyncio
from typing import Annotated

import typer

from flannelregistrar.agent import get_agent
from flannelregistrar.cli.commands import config_cmd, recovery, routes
from flannelregistrar.cli.formatters import (
    format_reconcile_result,
    format_recovery_report,
    format_status_table,
    format_verify_result,
)
from flannelregistrar.cli.output import console, print_error, print_success, print_warning
from flannelregistrar.config import config, load_config_from_env
from flannelregistrar.models.enums import HealthStatus, LogLevel
from flannelregistrar.utils.logger import configure_logging, get_logger

logger = get_logger(__name__)

app = typer.Typer(
    name="flannel-registrar",
    help="Flannel route registrar and self-healing agent",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

app.add_typer(config_cmd.app, name="config", help="Configuration")

# Route commands
app.command("reconcile")(routes.reconcile)
app.command("verify")(routes.verify)
app.command("routes")(routes.routes)
app.command("restore")(routes.restore)
app.command("cleanup")(routes.cleanup)

# Recovery commands
app.command("recover")(recovery.recover)
app.command("history")(recovery.history)
app.command("cooldowns")(recovery.cooldowns)


@app.callback()
def main(
    log_level: Annotated[
        LogLevel | None,
        typer.Option("--log-level", help="Log level", envvar="LOG_LEVEL"),
    ] = None,
    state_dir: Annotated[
        str | None,
        typer.Option("--state-dir", help="State directory", envvar="COMMON_STATE_DIR"),
    ] = None,
    etcd_endpoint: Annotated[
        str | None,
        typer.Option("--etcd-endpoint", "-e", help="Etcd endpoint", envvar="ETCD_ENDPOINT"),
    ] = None,
):
    """
    Flannel route registrar.

    Keeps host routes to remote flannel subnets in line with etcd and heals
    the overlay when it breaks.
    """
    try:
        load_config_from_env()
    except ValueError as e:
        print_error(str(e))
        raise typer.Exit(2)

    if log_level is not None:
        config.LOG_LEVEL = log_level
    if state_dir:
        config.COMMON_STATE_DIR = state_dir
    if etcd_endpoint:
        config.ETCD_ENDPOINT = etcd_endpoint

    configure_logging(config.LOG_LEVEL)


@app.command("version")
def version():
    """Show version information."""
    from flannelregistrar import __version__

    console.print(f"flannel-registrar v{__version__}")


@app.command("run")
def run_agent(
    once: Annotated[
        bool,
        typer.Option("--once", help="Run a single cycle and exit"),
    ] = False,
):
    """Run the registrar agent."""
    agent = get_agent()

    if once:
        restored = agent.start_up()
        if restored is not None and not restored.reason:
            console.print(f"Restored {restored.restored}/{restored.total} routes from backup")
        result = agent.run_cycle()
        if result.reconcile is not None:
            console.print(format_reconcile_result(result.reconcile))
        if result.verify is not None:
            console.print(format_verify_result(result.verify))
        if result.recovery is not None:
            console.print(format_recovery_report(result.recovery))
        if result.health is None:
            print_error("Health check failed")
            raise typer.Exit(1)
        console.print(f"System status: [bold]{result.health.value}[/bold]")
        if result.health == HealthStatus.CRITICAL:
            raise typer.Exit(1)
        return

    logger.info(f"Running every {config.INTERVAL}s")
    try:
        asyncio.run(agent.run_forever())
    except KeyboardInterrupt:
        logger.info("Interrupted, exiting")


@app.command("status")
def status():
    """Show the last recorded component status."""
    agent = get_agent()
    agent.status.load()
    statuses = agent.status.all()
    if not statuses:
        console.print("[yellow]No component status recorded yet.[/yellow]")
        return
    console.print(format_status_table(statuses, agent.status.system_status()))


@app.command("health")
def health():
    """Run health checks now and publish the health document."""
    agent = get_agent()
    agent.load_state()
    overall = agent.check_health()
    console.print(format_status_table(agent.status.all(), overall))

    results = agent.publish_health(force=True) or {}
    for sink, ok in results.items():
        if ok:
            print_success(f"Published to {sink}")
        else:
            print_warning(f"Publishing to {sink} failed")
    if overall == HealthStatus.CRITICAL:
        raise typer.Exit(1)


def run():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    run()
