"""Console output helpers shared by CLI commands."""

from rich.console import Console

console = Console()


def print_success(message: str) -> None:
    console.print(f"[bold green]OK[/bold green] {message}")


def print_error(message: str) -> None:
    console.print(f"[bold red]Error:[/bold red] {message}")


def print_warning(message: str) -> None:
    console.print(f"[bold yellow]Warning:[/bold yellow] {message}")
