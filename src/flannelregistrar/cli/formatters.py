"""Rich renderables for registrar state."""

from datetime import datetime

from rich.panel import Panel
from rich.table import Table

from flannelregistrar.models.enums import AttemptResult, HealthStatus
from flannelregistrar.models.recovery import ComponentStatus, RecoveryAttempt, RecoveryReport
from flannelregistrar.models.routes import ReconcileResult, VerifyResult

STATUS_STYLES = {
    HealthStatus.HEALTHY: "green",
    HealthStatus.DEGRADED: "yellow",
    HealthStatus.CRITICAL: "bold red",
    HealthStatus.UNKNOWN: "dim",
}

RESULT_STYLES = {
    AttemptResult.SUCCESS: "green",
    AttemptResult.FAILURE: "red",
    AttemptResult.ATTEMPTED: "yellow",
}


def _ts(timestamp: int | float) -> str:
    if not timestamp:
        return "-"
    return datetime.fromtimestamp(timestamp).strftime("%Y-%m-%d %H:%M:%S")


def _styled(status: HealthStatus) -> str:
    style = STATUS_STYLES[status]
    return f"[{style}]{status.value}[/{style}]"


def format_status_table(statuses: list[ComponentStatus], overall: HealthStatus) -> Table:
    table = Table(title=f"Component Status (system: {overall.value})", show_header=True)
    table.add_column("Component", style="cyan")
    table.add_column("Status")
    table.add_column("Updated")
    table.add_column("Message")
    for entry in sorted(statuses, key=lambda s: s.component):
        table.add_row(entry.component, _styled(entry.status), _ts(entry.timestamp), entry.message)
    return table


def format_history_table(attempts: list[RecoveryAttempt]) -> Table:
    table = Table(title="Recovery History", show_header=True)
    table.add_column("Time")
    table.add_column("Component", style="cyan")
    table.add_column("Action")
    table.add_column("Result")
    table.add_column("Message", overflow="fold")
    for attempt in attempts:
        style = RESULT_STYLES[attempt.result]
        message = attempt.message.split("; diagnostics=", 1)[0]
        table.add_row(
            _ts(attempt.timestamp),
            attempt.component,
            attempt.action,
            f"[{style}]{attempt.result.value}[/{style}]",
            message,
        )
    return table


def format_cooldown_table(rows: list[tuple[str, int, int, int]]) -> Table:
    """Rows of (action, started, period, remaining)."""
    table = Table(title="Recovery Cooldowns", show_header=True)
    table.add_column("Action", style="cyan")
    table.add_column("Started")
    table.add_column("Period", justify="right")
    table.add_column("Remaining", justify="right")
    for action, started, period, remaining in rows:
        table.add_row(
            action,
            _ts(started),
            f"{period}s",
            f"[yellow]{remaining}s[/yellow]" if remaining else "[green]ready[/green]",
        )
    return table


def format_route_table(summary: dict) -> Table:
    table = Table(
        title=(
            f"Routes ({summary['total']} total, {summary['via']} via, "
            f"{summary['bridge']} bridge, {summary['onlink']} onlink)"
        ),
        show_header=True,
    )
    table.add_column("Destination", style="cyan")
    table.add_column("Via")
    table.add_column("Device")
    table.add_column("Flags")
    for route in summary["routes"]:
        flags = []
        if route.onlink:
            flags.append("onlink")
        if route.scope_link:
            flags.append("scope link")
        if route.protocol:
            flags.append(f"proto {route.protocol}")
        table.add_row(route.destination, route.via or "-", route.device or "-", " ".join(flags))
    return table


def format_reconcile_result(result: ReconcileResult) -> Panel:
    if not result.ran:
        return Panel("[dim]Skipped: rate limited (use --force)[/dim]", title="Reconcile")
    lines = [f"{key}: {value}" for key, value in result.to_dict().items() if key != "ran"]
    style = "red" if result.failed else "green"
    return Panel("\n".join(lines), title="Reconcile", border_style=style)


def format_verify_result(result: VerifyResult) -> Panel:
    if not result.missing:
        body = f"[green]All {result.expected} expected routes present[/green]"
    else:
        body = (
            f"[yellow]{len(result.missing)}/{result.expected} routes missing:[/yellow] "
            f"{', '.join(result.missing)}"
        )
        if result.reconciled is not None:
            body += f"\nForced update: {result.reconciled.summary()}"
            if result.ok:
                body += "\n[green]All missing routes restored[/green]"
            else:
                body += f"\n[red]Still missing:[/red] {', '.join(result.still_missing)}"
    return Panel(body, title="Verify")


def format_recovery_report(report: RecoveryReport, title: str = "Recovery", dry_run: bool = False) -> Table:
    status = f"targets {', '.join(report.targets) or 'system'}" if dry_run else report.status
    table = Table(title=f"{title}: {status}", show_header=True)
    table.add_column("Level", style="cyan")
    table.add_column("Attempted")
    table.add_column("Success")
    table.add_column("Reason", overflow="fold")
    for decision in report.decisions:
        table.add_row(
            decision.level.value,
            "yes" if decision.attempted else "no",
            "[green]yes[/green]" if decision.success else "no",
            decision.reason,
        )
    return table
