from unittest.mock import MagicMock, patch

import pytest
from typer.testing import CliRunner

import main
from main import app
from http_client import APIError
from utils.ui_helpers import OUTPUT_MODE_ENV

runner = CliRunner()

BOOK = {"title": "Dune", "author": "Frank Herbert", "isbn": "9780441013593", "totalQuantity": 2}


@pytest.fixture(autouse=True)
def plain_output(monkeypatch):
    monkeypatch.setenv(OUTPUT_MODE_ENV, "plain")


def _mock_client():
    client = MagicMock()
    client.__enter__.return_value = client
    client.__exit__.return_value = False
    return client


@pytest.fixture
def cli_client(library_client, monkeypatch):
    monkeypatch.setattr(main, "get_client", lambda: library_client)
    return library_client


def test_books_list_empty(cli_client):
    result = runner.invoke(app, ["books", "list"])
    assert result.exit_code == 0
    assert "No books found." in result.stdout


def test_books_add_success(cli_client):
    result = runner.invoke(app, [
        "books", "add", "--title", "Dune", "--author", "Frank Herbert",
        "--isbn", "9780441013593", "--quantity", "2", "--category", "Sci-Fi",
    ])
    assert result.exit_code == 0, result.stdout
    assert "Book added successfully! Dune by Frank Herbert" in result.stdout

    result = runner.invoke(app, ["books", "list"])
    assert "Dune by Frank Herbert [ISBN 9780441013593] (2/2 available)" in result.stdout


def test_books_add_rejects_nine_digit_isbn_without_request(monkeypatch):
    factory = MagicMock()
    monkeypatch.setattr(main, "get_client", factory)

    result = runner.invoke(app, ["books", "add", "--title", "T", "--author", "A", "--isbn", "123456789"])

    assert result.exit_code == 1
    assert "Must be exactly 10 or 13 digits" in result.stdout
    factory.assert_not_called()


def test_books_add_duplicate_shows_server_message(cli_client):
    cli_client.books.add(BOOK)
    result = runner.invoke(app, [
        "books", "add", "--title", "Dune", "--author", "Frank Herbert", "--isbn", "9780441013593",
    ])
    assert result.exit_code == 1
    assert "Error: Book with ISBN 9780441013593 already exists." in result.stdout


def test_books_show_and_update(cli_client):
    book = cli_client.books.add(BOOK)
    result = runner.invoke(app, ["books", "update", str(book["id"]), "--year", "1965"])
    assert result.exit_code == 0
    assert "Publication Year: 1965" in result.stdout

    result = runner.invoke(app, ["books", "show", str(book["id"])])
    assert "Title: Dune" in result.stdout
    assert "Available: 2/2" in result.stdout


def test_books_delete(cli_client):
    book = cli_client.books.add(BOOK)
    result = runner.invoke(app, ["books", "delete", str(book["id"]), "--yes"])
    assert result.exit_code == 0
    assert f"Book {book['id']} has been deleted." in result.stdout
    assert cli_client.books.get_all() == []


def test_members_register_and_list(cli_client):
    result = runner.invoke(app, ["members", "register", "--name", "Ada Lovelace", "--email", "ada@example.com"])
    assert result.exit_code == 0
    assert "Member registered successfully! Ada Lovelace (MEM000001)" in result.stdout

    result = runner.invoke(app, ["members", "list"])
    assert "Ada Lovelace (MEM000001) ada@example.com - ACTIVE" in result.stdout


def test_members_list_empty(cli_client):
    result = runner.invoke(app, ["members", "list"])
    assert "No members registered yet" in result.stdout


def test_borrow_return_and_overdue_views(cli_client, clock):
    book = cli_client.books.add(BOOK)
    member = cli_client.members.register({"name": "Paul Atreides", "email": "paul@arrakis.example"})

    result = runner.invoke(app, ["borrow", "create", "--book", str(book["id"]), "--member", str(member["id"])])
    assert result.exit_code == 0
    assert "Book borrowed successfully! Due in 14 days" in result.stdout
    assert "Due Date: 15 Mar 2024" in result.stdout

    result = runner.invoke(app, ["borrow", "active"])
    assert "Dune by Frank Herbert" in result.stdout
    assert "Borrowed by: Paul Atreides (MEM000001)" in result.stdout
    assert "Total Active Borrows: 1" in result.stdout

    record_id = cli_client.borrow.get_active()[0]["id"]
    clock.advance(days=18)
    result = runner.invoke(app, ["borrow", "return", str(record_id), "--yes"])
    assert result.exit_code == 0
    assert "Book returned!" in result.stdout
    assert "Overdue fine: ₹40.00" in result.stdout

    result = runner.invoke(app, ["borrow", "overdue"])
    assert "Fine: ₹40.00 (4 days late)" in result.stdout
    assert "Total Fines: ₹40.00" in result.stdout


def test_return_on_time(cli_client, clock):
    book = cli_client.books.add(BOOK)
    member = cli_client.members.register({"name": "Paul Atreides", "email": "paul@arrakis.example"})
    record = cli_client.borrow.borrow_book(book["id"], member["id"])

    result = runner.invoke(app, ["borrow", "return", str(record["id"])], input="y\n")
    assert result.exit_code == 0
    assert "Book returned on time!" in result.stdout


def test_active_view_flags_past_due(cli_client, clock):
    book = cli_client.books.add(BOOK)
    member = cli_client.members.register({"name": "Paul Atreides", "email": "paul@arrakis.example"})
    cli_client.borrow.borrow_book(book["id"], member["id"])

    # the stored due date (March 2024) is in the past relative to the real clock
    result = runner.invoke(app, ["borrow", "active"])
    assert "OVERDUE - Fine will be calculated on return" in result.stdout


def test_borrow_failure_is_alerted(cli_client):
    book = cli_client.books.add(BOOK)
    result = runner.invoke(app, ["borrow", "create", "--book", str(book["id"]), "--member", "9"])
    assert result.exit_code == 1
    assert "Error: Member with id 9 not found." in result.stdout


def test_dashboard_counts_overdue_endpoint(monkeypatch):
    client = _mock_client()
    client.books.get_all.return_value = [{"id": 1}, {"id": 2}]
    client.members.get_all.return_value = [{"id": 1}]
    client.borrow.get_overdue.return_value = [{"id": 5}, {"id": 6}, {"id": 7}]
    monkeypatch.setattr(main, "get_client", lambda: client)

    result = runner.invoke(app, ["dashboard"])

    assert result.exit_code == 0
    assert "Total Books: 2" in result.stdout
    assert "Total Members: 1" in result.stdout
    assert "Overdue Books: 3" in result.stdout
    client.borrow.get_overdue.assert_called_once_with()


def test_dashboard_json_output(monkeypatch):
    client = _mock_client()
    client.books.get_all.return_value = []
    client.members.get_all.return_value = []
    client.borrow.get_overdue.return_value = []
    monkeypatch.setattr(main, "get_client", lambda: client)

    result = runner.invoke(app, ["-o", "json", "dashboard"])
    assert result.exit_code == 0
    assert '{"books": 0, "members": 0, "overdue": 0}' in result.stdout


def test_dashboard_network_failure(monkeypatch):
    client = _mock_client()
    client.books.get_all.side_effect = APIError("Error loading books")
    monkeypatch.setattr(main, "get_client", lambda: client)

    result = runner.invoke(app, ["dashboard"])
    assert result.exit_code == 1
    assert "Error: Error loading books" in result.stdout


@patch("subprocess.run")
def test_serve_command(mock_subprocess_run):
    result = runner.invoke(app, ["serve", "--port", "9000"])
    assert result.exit_code == 0
    assert "Starting library API on" in result.stdout
    mock_subprocess_run.assert_called_once()
    args = mock_subprocess_run.call_args[0][0]
    assert "uvicorn" in args
    assert "api:app" in args
    assert "9000" in args
