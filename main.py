import subprocess
import sys
from typing import Optional

import typer
from rich.console import Console

from accounts import Accounts
from auth import Identity
from config import settings
from database import initialize_database
from errors import LibraryError
from library import Library
from ui_helpers import print_list_result, print_stats_result, print_user_result, set_output_mode

APP_NAME = "Library CLI"

console = Console(stderr=True)

app = typer.Typer(help="Library CLI")


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    )
):
    """Global CLI options (e.g. output mode)."""
    if output:
        set_output_mode(output)


@app.command("init-db")
def cli_init_db():
    """Create the database tables if they do not exist."""
    initialize_database(settings.database_file)
    print(f"Database ready at {settings.database_file}")


@app.command("create-user")
def cli_create_user(
    username: str,
    email: str,
    password: str = typer.Option(..., prompt=True, hide_input=True, confirmation_prompt=True),
    librarian: bool = typer.Option(False, "--librarian", help="Grant the librarian role"),
):
    """Register a user; the only way to create librarians when public signup is closed."""
    try:
        user, _ = Accounts().register(username, email, password, is_librarian=librarian)
    except LibraryError as e:
        console.print(f"[bold red]Error:[/] {e.message}")
        raise typer.Exit(code=1)
    print_user_result(user)


@app.command("list")
def cli_list():
    """List books that have copies available."""
    print_list_result(Library().list_available())


@app.command("loans")
def cli_loans(user_id: str):
    """List the books a user currently has on loan."""
    user = Accounts().find_user(user_id)
    if user is None:
        console.print(f"[bold red]Error:[/] User {user_id} not found")
        raise typer.Exit(code=1)
    # the operator acts as the account owner; the engine still scopes the listing to that user
    identity = Identity(user_id=user.id, is_librarian=user.is_librarian)
    books = Library().list_borrowed_by(user.id, identity)
    print_list_result(books, empty_message=f"{user.username} has no books on loan.")


@app.command("stats")
def cli_stats():
    """Show title, copy and loan counts."""
    print_stats_result(Library().get_statistics())


@app.command("serve")
def cli_serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address (default: API_HOST)"),
    port: Optional[int] = typer.Option(None, "--port", help="Port (default: API_PORT)"),
):
    """Start the API with uvicorn."""
    host = host or settings.api_host
    port = int(port or settings.api_port)
    print(f"Starting API on http://{host}:{port}/")
    args = [
        sys.executable,
        "-m", "uvicorn",
        "api:app",
        "--host", host,
        "--port", str(port),
    ]
    try:
        subprocess.run(args, check=False)
    except KeyboardInterrupt:
        print("Server stopped.")


if __name__ == "__main__":
    app()
