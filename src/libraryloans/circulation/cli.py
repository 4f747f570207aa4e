"""Command-line interface for libraryloans.

Built with Typer for commands and Rich for output. The CLI acts as the
authorization gate for a trusted local operator: ``--as`` names the user a
command runs for, and the role is always read from the users table.
"""

import logging
from datetime import datetime
from typing import NoReturn, Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from .auth import Caller, UserDirectoryGate
from .config import get_config
from .db import get_db
from .db.schemas import BookCreate, UserCreate, UserRole
from .errors import LendingError
from .lending import LendingManager, LoanDetails, LoanStatus

# Create the main app
app = typer.Typer(
    name="libraryloans",
    help="Lend books from a shared inventory.",
    no_args_is_help=True,
)

# Create sub-apps for command groups
user_app = typer.Typer(help="Manage users that can hold loans.")
app.add_typer(user_app, name="user")

book_app = typer.Typer(help="Manage copies in the inventory.")
app.add_typer(book_app, name="book")

loans_app = typer.Typer(help="List loan records.")
app.add_typer(loans_app, name="loans")

# Rich console for pretty output
console = Console()


# ============================================================================
# Helper Functions
# ============================================================================


def print_error(message: str) -> None:
    """Print an error message."""
    console.print(f"[bold red]Error:[/bold red] {message}")


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[bold green]Success:[/bold green] {message}")


def print_info(message: str) -> None:
    """Print an info message."""
    console.print(f"[dim]{message}[/dim]")


def fail(error: LendingError) -> NoReturn:
    """Print a lending error with its stable code and exit with its exit code."""
    print_error(f"{error} [dim]({error.code})[/dim]")
    raise typer.Exit(code=error.exit_code)


def configure_logging(verbose: bool) -> None:
    """Send log records to the Rich console."""
    config = get_config()
    if not isinstance(logging.getLevelName(config.log_level), int):
        print_error(f"Unknown LIBRARY_LOG_LEVEL: {config.log_level}")
        raise typer.Exit(code=1)

    level = logging.DEBUG if verbose else config.log_level
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def get_caller(username: str) -> Caller:
    """Resolve the --as user through the authorization gate."""
    try:
        return UserDirectoryGate(get_db()).resolve_username(username)
    except LendingError as e:
        fail(e)


def format_time(value: Optional[datetime]) -> str:
    if value is None:
        return "-"
    return value.strftime("%Y-%m-%d %H:%M")


def format_status(loan: LoanDetails) -> str:
    if loan.status == LoanStatus.OVERDUE:
        return f"[bold red]OVERDUE ({loan.days_overdue}d)[/bold red]"
    if loan.status == LoanStatus.RETURNED:
        return "[dim]returned[/dim]"
    return "[green]borrowed[/green]"


def format_loan_table(loans: list[LoanDetails], title: str = "Loans") -> Table:
    """Create a rich table for displaying loan records."""
    table = Table(title=title, show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim", justify="right")
    table.add_column("Book", style="cyan", max_width=40)
    table.add_column("Borrower", style="green")
    table.add_column("Borrowed")
    table.add_column("Due")
    table.add_column("Returned")
    table.add_column("Status")

    for loan in loans:
        table.add_row(
            str(loan.id),
            f"{loan.title} [dim]({loan.author})[/dim]",
            loan.username,
            format_time(loan.borrowed_at),
            format_time(loan.due_date),
            format_time(loan.returned_at),
            format_status(loan),
        )

    return table


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
) -> None:
    """Lend books from a shared inventory."""
    configure_logging(verbose)


# ============================================================================
# Setup
# ============================================================================


@app.command()
def init(
    admin: Optional[str] = typer.Option(None, "--admin", help="Create an admin user with this username"),
    email: Optional[str] = typer.Option(None, "--email", help="Email for the admin user"),
) -> None:
    """Create the database and optionally an admin user."""
    config = get_config()
    errors = config.validate()
    if errors:
        for error in errors:
            print_error(error)
        raise typer.Exit(code=1)

    db = get_db()
    print_success(f"Database ready at {config.db_path}")

    if admin:
        try:
            user = db.create_user(
                UserCreate(username=admin, email=email or f"{admin}@localhost", role=UserRole.ADMIN)
            )
        except (ValueError, ValidationError) as e:
            print_error(str(e))
            raise typer.Exit(code=1)
        print_success(f"Created admin user {user.username} (id {user.id})")


@app.command()
def version() -> None:
    """Show version information."""
    from . import __version__

    console.print(f"libraryloans version {__version__}")


# ============================================================================
# Users
# ============================================================================


@user_app.command("add")
def user_add(
    username: str = typer.Argument(..., help="Username"),
    email: str = typer.Argument(..., help="Email address"),
    role: UserRole = typer.Option(UserRole.LENDER, "--role", "-r", help="User role"),
) -> None:
    """Add a user that can borrow books."""
    try:
        user = get_db().create_user(UserCreate(username=username, email=email, role=role))
    except (ValueError, ValidationError) as e:
        print_error(str(e))
        raise typer.Exit(code=1)
    print_success(f"Created {user.role} {user.username} (id {user.id})")


@user_app.command("list")
def user_list() -> None:
    """List users."""
    users = get_db().list_users()
    if not users:
        print_info("No users found")
        return

    table = Table(title="Users", show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim", justify="right")
    table.add_column("Username", style="cyan")
    table.add_column("Email")
    table.add_column("Role", style="yellow")
    for user in users:
        table.add_row(str(user.id), user.username, user.email, user.role)
    console.print(table)


# ============================================================================
# Books
# ============================================================================


@book_app.command("add")
def book_add(
    title: str = typer.Argument(..., help="Book title"),
    author: str = typer.Argument(..., help="Author"),
    isbn: str = typer.Argument(..., help="ISBN"),
    copies: int = typer.Option(1, "--copies", "-c", help="Copies owned"),
    year: Optional[int] = typer.Option(None, "--year", "-y", help="Publication year"),
    genre: Optional[str] = typer.Option(None, "--genre", "-g", help="Genre"),
    as_user: str = typer.Option(..., "--as", "-u", help="Admin username"),
) -> None:
    """Add a title to the inventory."""
    caller = get_caller(as_user)
    manager = LendingManager(get_db())

    try:
        data = BookCreate(
            title=title,
            author=author,
            isbn=isbn,
            publication_year=year,
            genre=genre,
            total_copies=copies,
        )
        book = manager.add_book(caller, data)
    except LendingError as e:
        fail(e)
    except (ValueError, ValidationError) as e:
        print_error(str(e))
        raise typer.Exit(code=1)

    print_success(f"Added '{book.title}' (id {book.id}) with {book.total_copies} copies")


@book_app.command("list")
def book_list() -> None:
    """List books with copy counts."""
    books = LendingManager(get_db()).list_books()
    if not books:
        print_info("No books found")
        return

    table = Table(title="Books", show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim", justify="right")
    table.add_column("Title", style="cyan", max_width=40)
    table.add_column("Author", style="green", max_width=25)
    table.add_column("ISBN")
    table.add_column("Available", justify="center")
    table.add_column("On loan", justify="right")

    for book in books:
        style = "red" if book.available_copies == 0 else "green"
        table.add_row(
            str(book.id),
            book.title,
            book.author,
            book.isbn,
            f"[{style}]{book.available_copies}/{book.total_copies}[/{style}]",
            str(book.on_loan),
        )
    console.print(table)


@book_app.command("set-copies")
def book_set_copies(
    book_id: int = typer.Argument(..., help="Book ID"),
    total: int = typer.Argument(..., help="New number of copies owned"),
    as_user: str = typer.Option(..., "--as", "-u", help="Admin username"),
) -> None:
    """Change the number of copies owned."""
    caller = get_caller(as_user)
    try:
        book = LendingManager(get_db()).set_total_copies(caller, book_id, total)
    except LendingError as e:
        fail(e)
    except ValueError as e:
        print_error(str(e))
        raise typer.Exit(code=1)
    print_success(
        f"'{book.title}' now has {book.total_copies} copies ({book.available_copies} available)"
    )


# ============================================================================
# Lending
# ============================================================================


@app.command()
def borrow(
    book_id: int = typer.Argument(..., help="Book ID to borrow"),
    as_user: str = typer.Option(..., "--as", "-u", help="Borrowing username"),
) -> None:
    """Borrow a copy of a book."""
    caller = get_caller(as_user)
    try:
        record = LendingManager(get_db()).borrow(caller, book_id)
    except LendingError as e:
        fail(e)
    print_success(f"Borrowed book {book_id} (record {record.id})")
    print_info(f"Due: {format_time(record.due_date)}")


@app.command("return")
def return_(
    record_id: int = typer.Argument(..., help="Loan record ID to return"),
    as_user: str = typer.Option(..., "--as", "-u", help="Returning username"),
) -> None:
    """Return a borrowed copy."""
    caller = get_caller(as_user)
    try:
        record = LendingManager(get_db()).return_book(caller, record_id)
    except LendingError as e:
        fail(e)
    print_success(f"Returned record {record.id} (book {record.book_id})")


@loans_app.command("mine")
def loans_mine(
    as_user: str = typer.Option(..., "--as", "-u", help="Username"),
    all_: bool = typer.Option(False, "--all", "-a", help="Include returned loans"),
) -> None:
    """List your loans."""
    caller = get_caller(as_user)
    loans = LendingManager(get_db()).list_my_loans(caller, include_returned=all_)
    if not loans:
        print_info("No loans found")
        return
    console.print(format_loan_table(loans, title=f"Loans for {as_user}"))


@loans_app.command("active")
def loans_active(
    as_user: str = typer.Option(..., "--as", "-u", help="Admin username"),
) -> None:
    """List every open loan."""
    caller = get_caller(as_user)
    try:
        loans = LendingManager(get_db()).list_active(caller)
    except LendingError as e:
        fail(e)
    if not loans:
        print_info("No open loans")
        return
    console.print(format_loan_table(loans, title="Open Loans"))


@loans_app.command("overdue")
def loans_overdue(
    as_user: str = typer.Option(..., "--as", "-u", help="Admin username"),
) -> None:
    """Show overdue loans."""
    caller = get_caller(as_user)
    try:
        report = LendingManager(get_db()).get_overdue_report(caller)
    except LendingError as e:
        fail(e)

    if not report.loans:
        print_success("No overdue loans!")
        return

    console.print(Panel(
        f"[bold red]Overdue Loans: {report.total_overdue}[/bold red]\n"
        f"Oldest: {report.oldest_overdue_days} days overdue",
        style="red",
    ))
    console.print(format_loan_table(report.loans, title="Overdue"))


# ============================================================================
# Reports
# ============================================================================


@app.command()
def stats() -> None:
    """Show lending statistics."""
    s = LendingManager(get_db()).get_stats()
    console.print(Panel(
        f"Titles: {s.total_titles}\n"
        f"Copies: {s.total_copies} ({s.copies_on_loan} on loan)\n"
        f"Open loans: {s.open_loans}\n"
        f"Overdue: [red]{s.overdue_loans}[/red]\n"
        f"Returned: {s.returned_loans}",
        title="Lending Statistics",
    ))


@app.command()
def check(
    book_id: Optional[int] = typer.Option(None, "--book", "-b", help="Check one book"),
) -> None:
    """Verify open loans match copies on loan for every book."""
    discrepancies = LendingManager(get_db()).audit(book_id)
    if not discrepancies:
        print_success("Inventory ledger is consistent")
        return

    table = Table(title="Ledger Mismatches", show_header=True, header_style="bold red")
    table.add_column("Book", justify="right")
    table.add_column("Total", justify="right")
    table.add_column("Available", justify="right")
    table.add_column("Open loans", justify="right")
    for d in discrepancies:
        table.add_row(
            str(d.book_id), str(d.total_copies), str(d.available_copies), str(d.open_loans)
        )
    console.print(table)
    raise typer.Exit(code=1)


# ============================================================================
# Main Entry Point
# ============================================================================


def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
