import logging
import subprocess
import sys
from typing import Optional

import typer
from rich.console import Console

from config import settings
from http_client import APIError, LibraryAPIClient
from utils.ui_helpers import (
    format_date,
    format_money,
    print_active_borrows,
    print_alert,
    print_book,
    print_books,
    print_dashboard,
    print_members,
    print_overdue_borrows,
    set_output_mode,
)
from utils.validators import ISBNValidator

APP_NAME = "Library CLI"

console = Console()
logger = logging.getLogger(__name__)

_state = {"api_url": None}


def get_client() -> LibraryAPIClient:
    """Build the API client for one command."""
    return LibraryAPIClient(base_url=_state["api_url"])


def _fail(message: str) -> None:
    print_alert(message)
    raise typer.Exit(code=1)


# --- Typer CLI application ---
app = typer.Typer(help=APP_NAME, no_args_is_help=True)
books_app = typer.Typer(help="Browse and manage books.", no_args_is_help=True)
members_app = typer.Typer(help="Browse and register members.", no_args_is_help=True)
borrow_app = typer.Typer(help="Borrow and return books.", no_args_is_help=True)
app.add_typer(books_app, name="books")
app.add_typer(members_app, name="members")
app.add_typer(borrow_app, name="borrow")


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None, "--output", "-o", help="Output format: plain | json | rich (default: plain)",
    ),
    api_url: Optional[str] = typer.Option(
        None, "--api-url", envvar="LIBRARY_API_URL", help="Backend base URL",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log HTTP failures to stderr"),
):
    """Global options (output mode, backend URL)."""
    if output:
        set_output_mode(output)
    _state["api_url"] = api_url
    logging.basicConfig(level=logging.INFO if verbose else logging.CRITICAL)


@app.command("dashboard")
def cli_dashboard():
    """Show total books, members and overdue books."""
    with get_client() as client:
        try:
            books = client.books.get_all()
            members = client.members.get_all()
            overdue = client.borrow.get_overdue()
        except APIError as e:
            _fail(e.message)
    print_dashboard({"books": len(books), "members": len(members), "overdue": len(overdue)})


# --- Books ---
@books_app.command("list")
def cli_books_list(available: bool = typer.Option(False, "--available", "-a", help="Only books with copies left")):
    """List all books, or only the available ones."""
    with get_client() as client:
        try:
            books = client.books.get_available() if available else client.books.get_all()
        except APIError as e:
            _fail(e.message)
    print_books(books, available_only=available)


@books_app.command("show")
def cli_books_show(book_id: int):
    """Show one book."""
    with get_client() as client:
        try:
            book = client.books.get_by_id(book_id)
        except APIError as e:
            _fail(e.message)
    print_book(book)


@books_app.command("add")
def cli_books_add(
    title: str = typer.Option(..., "--title", help="Book title"),
    author: str = typer.Option(..., "--author", help="Author name"),
    isbn: str = typer.Option(..., "--isbn", help="ISBN (10 or 13 digits)"),
    category: Optional[str] = typer.Option(None, "--category", help="Category"),
    quantity: int = typer.Option(1, "--quantity", "-q", min=1, help="Total copies"),
    year: Optional[int] = typer.Option(None, "--year", help="Publication year"),
):
    """Add a new book to the inventory."""
    if not title.strip() or not author.strip():
        _fail("Title and author are required.")
    # Checked before any request is made
    if not ISBNValidator.is_valid_isbn(isbn):
        _fail("Invalid ISBN. Must be exactly 10 or 13 digits.")

    payload = {
        "title": title,
        "author": author,
        "isbn": ISBNValidator.normalize_isbn(isbn),
        "category": category,
        "totalQuantity": quantity,
        "publicationYear": year,
    }
    with get_client() as client:
        try:
            book = client.books.add(payload)
        except APIError as e:
            _fail(e.message)
    print(f"Book added successfully! {book['title']} by {book['author']} (id {book['id']})")


@books_app.command("update")
def cli_books_update(
    book_id: int,
    title: Optional[str] = typer.Option(None, "--title"),
    author: Optional[str] = typer.Option(None, "--author"),
    isbn: Optional[str] = typer.Option(None, "--isbn"),
    category: Optional[str] = typer.Option(None, "--category"),
    quantity: Optional[int] = typer.Option(None, "--quantity", "-q", min=1),
    year: Optional[int] = typer.Option(None, "--year"),
):
    """Update fields of an existing book."""
    if isbn is not None and not ISBNValidator.is_valid_isbn(isbn):
        _fail("Invalid ISBN. Must be exactly 10 or 13 digits.")
    changes = {
        "title": title,
        "author": author,
        "isbn": ISBNValidator.normalize_isbn(isbn) if isbn is not None else None,
        "category": category,
        "totalQuantity": quantity,
        "publicationYear": year,
    }
    payload = {k: v for k, v in changes.items() if v is not None}
    if not payload:
        _fail("Nothing to update. Provide at least one field.")
    with get_client() as client:
        try:
            book = client.books.update(book_id, payload)
        except APIError as e:
            _fail(e.message)
    print("Book updated successfully!")
    print_book(book)


@books_app.command("delete")
def cli_books_delete(book_id: int, yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation")):
    """Delete a book."""
    if not yes and not typer.confirm(f"Delete book {book_id}?"):
        raise typer.Exit()
    with get_client() as client:
        try:
            client.books.delete(book_id)
        except APIError as e:
            _fail(e.message)
    print(f"Book {book_id} has been deleted.")


# --- Members ---
@members_app.command("list")
def cli_members_list():
    """List registered members."""
    with get_client() as client:
        try:
            members = client.members.get_all()
        except APIError as e:
            _fail(e.message)
    print_members(members)


@members_app.command("register")
def cli_members_register(
    name: str = typer.Option(..., "--name", help="Full name"),
    email: str = typer.Option(..., "--email", help="Email address"),
    phone: Optional[str] = typer.Option(None, "--phone", help="Phone number"),
):
    """Register a new member."""
    with get_client() as client:
        try:
            member = client.members.register({"name": name, "email": email, "phone": phone})
        except APIError as e:
            _fail(e.message)
    print(f"Member registered successfully! {member['name']} ({member['membershipId']})")


# --- Borrowing ---
@borrow_app.command("create")
def cli_borrow_create(
    book_id: int = typer.Option(..., "--book", "-b", help="Book id"),
    member_id: int = typer.Option(..., "--member", "-m", help="Member id"),
):
    """Borrow a book for a member."""
    with get_client() as client:
        try:
            record = client.borrow.borrow_book(book_id, member_id)
        except APIError as e:
            _fail(e.message)
    print(f"Book borrowed successfully! Due in {settings.loan_period_days} days")
    print(f"Due Date: {format_date(record.get('dueDate'))}")


@borrow_app.command("active")
def cli_borrow_active():
    """List currently borrowed books."""
    with get_client() as client:
        try:
            records = client.borrow.get_active()
        except APIError as e:
            _fail(e.message)
    print_active_borrows(records)


@borrow_app.command("return")
def cli_borrow_return(record_id: int, yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation")):
    """Mark a borrowed book as returned."""
    if not yes and not typer.confirm("Mark this book as returned?"):
        raise typer.Exit()
    with get_client() as client:
        try:
            record = client.borrow.return_book(record_id)
        except APIError as e:
            _fail(e.message)
    fine = record.get("fine") or 0
    if fine > 0:
        print("Book returned!")
        print(f"Overdue fine: {format_money(fine)}")
    else:
        print("Book returned on time!")


@borrow_app.command("overdue")
def cli_borrow_overdue():
    """List books returned late with their fines."""
    with get_client() as client:
        try:
            records = client.borrow.get_overdue()
        except APIError as e:
            _fail(e.message)
    print_overdue_borrows(records)


@app.command("serve")
def cli_serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", help="Port"),
):
    """Start the REST API with uvicorn."""
    host = host or settings.api_host
    port = int(port or settings.api_port)
    url = f"http://{host}:{port}{settings.api_prefix}"
    print(f"Starting library API on {url}")
    args = [
        sys.executable,
        "-m", "uvicorn",
        "api:app",
        "--host", host,
        "--port", str(port),
    ]
    try:
        subprocess.run(args)
    except KeyboardInterrupt:
        console.print("[yellow]Server stopped.[/]")


if __name__ == "__main__":
    app()
