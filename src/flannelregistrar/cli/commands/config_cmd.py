"""Config management commands."""

import os
from dataclasses import fields

import typer
from rich.table import Table

from flannelregistrar.cli.output import console
from flannelregistrar.config import config

app = typer.Typer(help="Configuration commands")


@app.command("show")
def show_config():
    """Show current configuration."""
    table = Table(title="Current Configuration", show_header=True)
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")
    table.add_column("Source")

    for f in fields(config):
        value = getattr(config, f.name)
        if hasattr(value, "value"):
            value = value.value
        env_name = "REGISTRAR_HOSTNAME" if f.name == "HOSTNAME" else f.name
        table.add_row(
            f.name,
            str(value),
            "env" if os.environ.get(env_name) is not None else "default",
        )

    table.add_row("(hostname)", config.get_hostname(), "derived")
    table.add_row("(subnets prefix)", config.get_subnets_prefix(), "derived")
    table.add_row("(health key)", config.get_health_key(), "derived")
    console.print(table)
