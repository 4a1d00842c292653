import os
import json
from typing import List, Any, Dict
from rich.console import Console
from rich.table import Table
from rich.panel import Panel

# Environment variable to control CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "LIB_CLI_OUTPUT"

_console = Console()


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def print_list_result(books: List[Any], empty_message: str = "No books available.") -> None:
    """Print available books in the current output mode.
    - plain: 'ID - Title by Author (N available)' lines, or the empty message
    - json: JSON array of the book dicts
    - rich: Rich table
    """
    mode = get_output_mode()

    if not books:
        print(empty_message)
        return

    if mode == "json":
        print(json.dumps([b.to_dict() for b in books], ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="Available Books", show_lines=True, header_style="bold cyan")
        table.add_column("ID", style="magenta", no_wrap=True)
        table.add_column("Title", style="white")
        table.add_column("Author", style="white")
        table.add_column("ISBN", style="white")
        table.add_column("Available", justify="right", style="green")
        for b in books:
            table.add_row(b.id, b.title, b.author, b.isbn, str(b.quantity))
        _console.print(table)
    else:
        for b in books:
            print(f"{b.id} - {b.title} by {b.author} ({b.quantity} available)")


def print_stats_result(stats: Dict[str, Any]) -> None:
    mode = get_output_mode()

    titles = stats.get("total_titles", 0)
    copies = stats.get("available_copies", 0)
    loans = stats.get("active_loans", 0)

    if mode == "json":
        print(json.dumps({"total_titles": titles, "available_copies": copies, "active_loans": loans}))
    elif mode == "rich":
        content = (
            f"[bold]Titles:[/] {titles}\n"
            f"[bold]Available Copies:[/] {copies}\n"
            f"[bold]Active Loans:[/] {loans}"
        )
        _console.print(Panel.fit(content, title="Stats", border_style="blue"))
    else:
        print(f"Total Titles: {titles}")
        print(f"Available Copies: {copies}")
        print(f"Active Loans: {loans}")


def print_user_result(user: Any) -> None:
    mode = get_output_mode()
    role = "librarian" if user.is_librarian else "member"

    if mode == "json":
        print(json.dumps(user.to_dict(), ensure_ascii=False))
    elif mode == "rich":
        _console.print(f"[green]Created {role}[/] [bold]{user.username}[/] <{user.email}> [dim]{user.id}[/]")
    else:
        print(f"Created {role} {user.username} <{user.email}> with id {user.id}")
