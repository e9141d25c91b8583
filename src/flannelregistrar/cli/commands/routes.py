"""Route management commands."""

from typing import Annotated

import typer

from flannelregistrar.agent import get_agent
from flannelregistrar.cli.formatters import (
    format_reconcile_result,
    format_route_table,
    format_verify_result,
)
from flannelregistrar.cli.output import console, print_error, print_success, print_warning
from flannelregistrar.exceptions import RegistrarError


def reconcile(
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Ignore the route update interval"),
    ] = False,
):
    """Run one route reconciliation pass."""
    agent = get_agent()
    try:
        result = agent.reconciler.reconcile(force=force)
    except RegistrarError as e:
        print_error(str(e))
        raise typer.Exit(1)
    console.print(format_reconcile_result(result))
    if result.failed:
        raise typer.Exit(1)


def verify():
    """Check every expected route is present, forcing an update if not."""
    agent = get_agent()
    try:
        result = agent.verify_routes()
    except RegistrarError as e:
        print_error(str(e))
        raise typer.Exit(1)
    console.print(format_verify_result(result))


def routes():
    """Show the overlay routes currently in the kernel."""
    agent = get_agent()
    try:
        summary = agent.reconciler.route_summary()
    except RegistrarError as e:
        print_error(str(e))
        raise typer.Exit(1)
    if not summary["routes"]:
        console.print("[yellow]No overlay routes found.[/yellow]")
        return
    console.print(format_route_table(summary))


def restore():
    """Restore routes from a recent backup."""
    agent = get_agent()
    result = agent.reconciler.restore_routes()
    if result.reason:
        print_warning(f"Nothing restored: {result.reason}")
        return
    print_success(
        f"Restored {result.restored}/{result.total} routes ({result.skipped} skipped)"
    )


def cleanup():
    """Delete subnet leases registered by 127.0.0.1."""
    agent = get_agent()
    try:
        removed = agent.registry.cleanup_localhost_entries()
    except RegistrarError as e:
        print_error(str(e))
        raise typer.Exit(1)
    if removed:
        print_success(f"Removed {removed} localhost entries")
    else:
        console.print("[dim]No localhost entries found.[/dim]")
