"""Recovery commands."""

from typing import Annotated

import typer

from flannelregistrar.agent import get_agent
from flannelregistrar.cli.formatters import (
    format_cooldown_table,
    format_history_table,
    format_recovery_report,
)
from flannelregistrar.cli.output import console, print_error, print_success
from flannelregistrar.models.enums import RecoveryLevel
from flannelregistrar.models.recovery import RecoveryReport


def recover(
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", "-n", help="Show what would be done without acting"),
    ] = False,
    level: Annotated[
        RecoveryLevel | None,
        typer.Option("--level", "-l", help="Attempt only this level, without escalation"),
    ] = None,
):
    """Evaluate health and run escalating recovery when needed."""
    agent = get_agent()
    agent.load_state()
    overall = agent.check_health()
    console.print(f"System status: [bold]{overall.value}[/bold]")

    controller = agent.controller
    if dry_run:
        report = controller.plan()
        if not report.needed:
            print_success("No recovery needed")
            return
        console.print(format_recovery_report(report, title="Recovery plan", dry_run=True))
        return

    if level is not None:
        decision = controller.attempt_level(level, controller.target_components())
        report = RecoveryReport(
            needed=True,
            performed_level=level if decision.attempted else None,
            success=decision.success,
            targets=controller.target_components(),
            decisions=[decision],
        )
    else:
        report = controller.run()

    if not report.needed:
        print_success("No recovery needed")
        return
    console.print(format_recovery_report(report))
    if not report.success:
        raise typer.Exit(1)


def history(
    component: Annotated[
        str | None,
        typer.Option("--component", "-c", help="Only show this component"),
    ] = None,
    limit: Annotated[
        int,
        typer.Option("--limit", "-n", help="Number of entries (0 for all)"),
    ] = 20,
):
    """Show recovery attempts, newest first."""
    agent = get_agent()
    agent.recovery_state.load()
    attempts = agent.controller.history(component, limit)
    if not attempts:
        console.print("[dim]No recovery attempts recorded.[/dim]")
        return
    console.print(format_history_table(attempts))


def cooldowns():
    """Show per-level cooldown state."""
    agent = get_agent()
    state = agent.recovery_state
    state.load()
    started = state.cooldowns()
    rows = []
    for level in RecoveryLevel.ordered():
        action = level.action_name
        rows.append(
            (
                action,
                started.get(action, 0),
                state.cooldown_for(action),
                state.cooldown_remaining(action),
            )
        )
    console.print(format_cooldown_table(rows))
    if state.last_write_error:
        print_error(f"Last state write failed: {state.last_write_error}")
