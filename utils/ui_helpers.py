import json
import os
from datetime import datetime
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from config import settings

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


def format_date(value: Optional[str]) -> str:
    """ISO date/time -> '05 Mar 2024'."""
    if not value:
        return "-"
    try:
        return datetime.fromisoformat(value).strftime("%d %b %Y")
    except ValueError:
        return value


def format_money(amount: float) -> str:
    return f"{settings.currency_symbol}{amount:.2f}"


def days_late_from_fine(fine: float) -> int:
    if settings.fine_per_day <= 0:
        return 0
    return round(fine / settings.fine_per_day)


def is_past_due(record: Dict[str, Any], now: Optional[datetime] = None) -> bool:
    due = record.get("dueDate")
    if not due:
        return False
    return (now or datetime.now()) > datetime.fromisoformat(due)


def print_alert(message: str) -> None:
    """Blocking error alert: the server message or the view's fallback."""
    if get_output_mode() == "json":
        print(json.dumps({"error": message}, ensure_ascii=False))
    elif get_output_mode() == "rich":
        _console.print(Panel.fit(message, title="Error", border_style="red"))
    else:
        print(f"Error: {message}")


def print_books(books: List[Dict[str, Any]], available_only: bool = False) -> None:
    """Print the book list in the current output mode.
    - plain: 'ID - Title by Author [ISBN] (available/total available)' lines
    - json: the API payload
    - rich: table
    """
    mode = get_output_mode()
    if mode == "json":
        print(json.dumps(books, ensure_ascii=False))
        return

    if not books:
        print("No books available for borrowing" if available_only else "No books found.")
        return

    if mode == "rich":
        title = "Available Books" if available_only else "Books"
        table = Table(title=title, show_lines=True, header_style="bold cyan")
        table.add_column("ID", style="magenta", no_wrap=True)
        table.add_column("Title", style="white")
        table.add_column("Author", style="white")
        table.add_column("ISBN", no_wrap=True)
        table.add_column("Category")
        table.add_column("Available", justify="right")
        for b in books:
            available = b.get("availableQuantity", 0)
            style = "green" if available > 0 else "red"
            table.add_row(
                str(b.get("id", "")), b.get("title", ""), b.get("author", ""), b.get("isbn") or "",
                b.get("category") or "-",
                f"[{style}]{available}/{b.get('totalQuantity', 0)}[/]",
            )
        _console.print(table)
    else:
        for b in books:
            print(f"{b.get('id')} - {b.get('title')} by {b.get('author')} [ISBN {b.get('isbn')}] "
                  f"({b.get('availableQuantity')}/{b.get('totalQuantity')} available)")


def print_book(book: Dict[str, Any]) -> None:
    mode = get_output_mode()
    if mode == "json":
        print(json.dumps(book, ensure_ascii=False))
        return
    lines = [
        f"Title: {book.get('title')}",
        f"Author: {book.get('author')}",
        f"ISBN: {book.get('isbn')}",
        f"Category: {book.get('category') or '-'}",
        f"Publication Year: {book.get('publicationYear') or '-'}",
        f"Available: {book.get('availableQuantity')}/{book.get('totalQuantity')}",
    ]
    if mode == "rich":
        _console.print(Panel.fit("\n".join(lines), title=f"Book #{book.get('id')}", border_style="blue"))
    else:
        print(f"Book #{book.get('id')}")
        for line in lines:
            print(line)


def print_members(members: List[Dict[str, Any]]) -> None:
    mode = get_output_mode()
    if mode == "json":
        print(json.dumps(members, ensure_ascii=False))
        return

    if not members:
        print("No members registered yet")
        return

    if mode == "rich":
        table = Table(title="Library Members", show_lines=True, header_style="bold cyan")
        table.add_column("Name", style="white")
        table.add_column("Membership ID", style="magenta", no_wrap=True)
        table.add_column("Email")
        table.add_column("Phone")
        table.add_column("Status")
        for m in members:
            style = "green" if m.get("status") == "ACTIVE" else "red"
            table.add_row(m.get("name", ""), m.get("membershipId", ""), m.get("email", ""),
                          m.get("phone") or "-", f"[{style}]{m.get('status')}[/]")
        _console.print(table)
    else:
        for m in members:
            print(f"{m.get('id')} - {m.get('name')} ({m.get('membershipId')}) {m.get('email')} "
                  f"{m.get('phone') or '-'} {m.get('status')}")


def print_active_borrows(records: List[Dict[str, Any]], now: Optional[datetime] = None) -> None:
    """Currently borrowed books, flagging the ones past their due date."""
    mode = get_output_mode()
    if mode == "json":
        print(json.dumps(records, ensure_ascii=False))
        return

    if not records:
        print("No active borrows")
        return

    if mode == "rich":
        table = Table(title="Currently Borrowed Books", show_lines=True, header_style="bold cyan")
        table.add_column("ID", style="magenta", no_wrap=True)
        table.add_column("Book")
        table.add_column("Borrowed by")
        table.add_column("Borrow Date")
        table.add_column("Due Date")
        for r in records:
            due = format_date(r.get("dueDate"))
            if is_past_due(r, now):
                due = f"[bold red]{due} OVERDUE[/]"
            table.add_row(
                str(r.get("id")),
                f"{r['book']['title']}\nby {r['book']['author']}",
                f"{r['member']['name']} ({r['member']['membershipId']})",
                format_date(r.get("borrowDate")),
                due,
            )
        _console.print(table)
    else:
        for r in records:
            print(f"#{r.get('id')} {r['book']['title']} by {r['book']['author']} - "
                  f"Borrowed by: {r['member']['name']} ({r['member']['membershipId']}) - "
                  f"Borrow Date: {format_date(r.get('borrowDate'))} - Due Date: {format_date(r.get('dueDate'))}")
            if is_past_due(r, now):
                print("  OVERDUE - Fine will be calculated on return")
    print(f"Total Active Borrows: {len(records)}")


def print_overdue_borrows(records: List[Dict[str, Any]]) -> None:
    """Late returns with their fines and the total."""
    mode = get_output_mode()
    total_fines = sum(r.get("fine", 0) for r in records)

    if mode == "json":
        print(json.dumps({"records": records, "totalFines": total_fines}, ensure_ascii=False))
        return

    if not records:
        print("No overdue books - Great job!")
        print("All books have been returned on time")
        return

    if mode == "rich":
        table = Table(title="Overdue Books", show_lines=True, header_style="bold red")
        table.add_column("Book")
        table.add_column("Borrowed by")
        table.add_column("Due Date")
        table.add_column("Return Date")
        table.add_column("Days Late", justify="right")
        table.add_column("Fine", justify="right", style="bold red")
        for r in records:
            table.add_row(
                f"{r['book']['title']} - {r['book']['author']}",
                f"{r['member']['name']}\n{r['member']['membershipId']}",
                format_date(r.get("dueDate")),
                format_date(r.get("returnDate")),
                str(days_late_from_fine(r.get("fine", 0))),
                format_money(r.get("fine", 0)),
            )
        _console.print(table)
    else:
        for r in records:
            print(f"#{r.get('id')} {r['book']['title']} - {r['book']['author']} - "
                  f"Borrowed by: {r['member']['name']} ({r['member']['membershipId']}) - "
                  f"Due Date: {format_date(r.get('dueDate'))} - Return Date: {format_date(r.get('returnDate'))} - "
                  f"Fine: {format_money(r.get('fine', 0))} ({days_late_from_fine(r.get('fine', 0))} days late)")
    print(f"Overdue Books: {len(records)}")
    print(f"Total Fines: {format_money(total_fines)}")


def print_dashboard(stats: Dict[str, Any]) -> None:
    """Dashboard cards: total books, members and overdue count."""
    mode = get_output_mode()
    books = stats.get("books", 0)
    members = stats.get("members", 0)
    overdue = stats.get("overdue", 0)

    if mode == "json":
        print(json.dumps({"books": books, "members": members, "overdue": overdue}, ensure_ascii=False))
    elif mode == "rich":
        content = (f"[bold]Total Books:[/] {books}\n[bold]Total Members:[/] {members}\n"
                   f"[bold red]Overdue Books:[/] {overdue}")
        _console.print(Panel.fit(content, title="Library Dashboard", border_style="blue"))
    else:
        print(f"Total Books: {books}")
        print(f"Total Members: {members}")
        print(f"Overdue Books: {overdue}")
