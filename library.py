import logging
import sqlite3
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import database
from book import Book
from borrow_record import BorrowRecord, BorrowStatus, calculate_fine, days_late
from config import settings
from database import get_db_connection, initialize_database
from member import Member, MemberStatus
from utils.validators import ContactValidator, ISBNValidator, TextValidator

logger = logging.getLogger(__name__)

_RECORD_SELECT = """
    SELECT r.id AS r_id, r.borrow_date, r.due_date, r.return_date, r.fine, r.status AS r_status,
           b.id AS b_id, b.title, b.author, b.isbn, b.category, b.total_quantity,
           b.available_quantity, b.publication_year,
           m.id AS m_id, m.name, m.email, m.membership_id, m.phone, m.registration_date,
           m.status AS m_status
    FROM borrow_records r
    JOIN books b ON b.id = r.book_id
    JOIN members m ON m.id = r.member_id
"""


def _now() -> datetime:
    """Current local time; tests patch this to move the clock."""
    return datetime.now().replace(microsecond=0)


class Library:
    """Owns books, members and the borrow/return lifecycle, persisted in SQLite."""

    def __init__(self, db_file: Optional[str] = None) -> None:
        self.db_file = db_file or database.resolve_database_file()
        initialize_database(self.db_file)  # Ensure DB and tables exist
        self.loan_period = timedelta(days=settings.loan_period_days)
        self.max_active_borrows = settings.max_active_borrows
        self.fine_per_day = settings.fine_per_day

    def _connect(self) -> sqlite3.Connection:
        return get_db_connection(self.db_file)

    # ------------------------- Books ------------------------- #
    def list_books(self, available_only: bool = False) -> List[Book]:
        query = "SELECT * FROM books"
        if available_only:
            query += " WHERE available_quantity > 0"
        query += " ORDER BY title COLLATE NOCASE, id"
        conn = self._connect()
        try:
            rows = conn.execute(query).fetchall()
            return [Book.from_dict(dict(row)) for row in rows]
        finally:
            conn.close()

    def get_book(self, book_id: int) -> Book:
        conn = self._connect()
        try:
            row = conn.execute("SELECT * FROM books WHERE id = ?", (book_id,)).fetchone()
        finally:
            conn.close()
        if row is None:
            raise BookNotFoundError(f"Book with id {book_id} not found.")
        return Book.from_dict(dict(row))

    def find_book_by_isbn(self, isbn: str) -> Optional[Book]:
        norm = ISBNValidator.normalize_isbn(isbn)
        conn = self._connect()
        try:
            row = conn.execute("SELECT * FROM books WHERE isbn = ?", (norm,)).fetchone()
            return Book.from_dict(dict(row)) if row else None
        finally:
            conn.close()

    def add_book(self, book: Book) -> Book:
        """Add a new title. Every copy starts out available. ISBNs are unique."""
        book.isbn = ISBNValidator.normalize_isbn(book.isbn)
        self._validate_book(book)
        book.available_quantity = book.total_quantity

        if self.find_book_by_isbn(book.isbn):
            raise DuplicateRecordError(f"Book with ISBN {book.isbn} already exists.")

        conn = self._connect()
        try:
            cursor = conn.execute(
                """INSERT INTO books (title, author, isbn, category, total_quantity,
                                      available_quantity, publication_year)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (book.title, book.author, book.isbn, book.category, book.total_quantity,
                 book.available_quantity, book.publication_year),
            )
            conn.commit()
            book.id = cursor.lastrowid
        except sqlite3.IntegrityError as e:
            raise DuplicateRecordError(f"Book with ISBN {book.isbn} already exists.") from e
        finally:
            conn.close()
        logger.info(f"Book added: id={book.id} isbn={book.isbn} copies={book.total_quantity}")
        return book

    def update_book(self, book_id: int, *, title: Optional[str] = None, author: Optional[str] = None,
                    isbn: Optional[str] = None, category: Optional[str] = None,
                    total_quantity: Optional[int] = None, publication_year: Optional[int] = None) -> Book:
        """Partially update a book.

        Changing ``total_quantity`` shifts ``available_quantity`` by the same
        amount; the total may not drop below the number of copies on loan.
        """
        changes = dict(title=title, author=author, isbn=isbn, category=category,
                       total_quantity=total_quantity, publication_year=publication_year)
        if all(v is None for v in changes.values()):
            raise ValueError("Nothing to update. Provide at least one field.")

        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute("SELECT * FROM books WHERE id = ?", (book_id,)).fetchone()
            if row is None:
                raise BookNotFoundError(f"Book with id {book_id} not found.")
            book = Book.from_dict(dict(row))

            if title is not None:
                book.title = title.strip()
            if author is not None:
                book.author = author.strip()
            if category is not None:
                book.category = category.strip() or None
            if publication_year is not None:
                book.publication_year = publication_year
            if isbn is not None:
                new_isbn = ISBNValidator.normalize_isbn(isbn)
                if new_isbn != book.isbn:
                    clash = conn.execute("SELECT id FROM books WHERE isbn = ? AND id != ?",
                                         (new_isbn, book_id)).fetchone()
                    if clash:
                        raise DuplicateRecordError(f"Book with ISBN {new_isbn} already exists.")
                book.isbn = new_isbn
            if total_quantity is not None:
                on_loan = book.on_loan
                if total_quantity < on_loan:
                    raise BorrowRuleError(
                        f"Total quantity cannot be less than the {on_loan} copies currently on loan."
                    )
                book.available_quantity += total_quantity - book.total_quantity
                book.total_quantity = total_quantity

            self._validate_book(book)
            conn.execute(
                """UPDATE books SET title = ?, author = ?, isbn = ?, category = ?, total_quantity = ?,
                                    available_quantity = ?, publication_year = ?
                   WHERE id = ?""",
                (book.title, book.author, book.isbn, book.category, book.total_quantity,
                 book.available_quantity, book.publication_year, book_id),
            )
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
        logger.info(f"Book updated: id={book_id}")
        return book

    def remove_book(self, book_id: int) -> None:
        """Delete a book and its closed borrow history. Refused while copies are on loan."""
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute("SELECT * FROM books WHERE id = ?", (book_id,)).fetchone()
            if row is None:
                raise BookNotFoundError(f"Book with id {book_id} not found.")
            open_loans = conn.execute(
                "SELECT COUNT(*) FROM borrow_records WHERE book_id = ? AND status = ?",
                (book_id, BorrowStatus.BORROWED.value),
            ).fetchone()[0]
            if open_loans:
                raise BorrowRuleError(f"Cannot delete a book with {open_loans} copies on loan.")
            conn.execute("DELETE FROM books WHERE id = ?", (book_id,))
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
        logger.info(f"Book deleted: id={book_id}")

    # ------------------------- Members ------------------------- #
    def list_members(self) -> List[Member]:
        conn = self._connect()
        try:
            rows = conn.execute("SELECT * FROM members ORDER BY id").fetchall()
            return [Member.from_dict(dict(row)) for row in rows]
        finally:
            conn.close()

    def get_member(self, member_id: int) -> Member:
        conn = self._connect()
        try:
            row = conn.execute("SELECT * FROM members WHERE id = ?", (member_id,)).fetchone()
        finally:
            conn.close()
        if row is None:
            raise MemberNotFoundError(f"Member with id {member_id} not found.")
        return Member.from_dict(dict(row))

    def register_member(self, member: Member) -> Member:
        """Register a member. The membership id, registration date and ACTIVE status are assigned here."""
        if not TextValidator.validate_name(member.name):
            raise ValueError("Member name is required.")
        if not ContactValidator.validate_email(member.email):
            raise ValueError(f"Invalid email address: {member.email}")
        if member.phone and not ContactValidator.validate_phone(member.phone):
            raise ValueError(f"Invalid phone number: {member.phone}")

        member.registration_date = _now().date().isoformat()
        member.status = MemberStatus.ACTIVE

        conn = self._connect()
        try:
            cursor = conn.execute(
                "INSERT INTO members (name, email, phone, registration_date, status) VALUES (?, ?, ?, ?, ?)",
                (member.name, member.email, member.phone, member.registration_date, member.status.value),
            )
            member.id = cursor.lastrowid
            member.membership_id = Member.make_membership_id(member.id)
            conn.execute("UPDATE members SET membership_id = ? WHERE id = ?", (member.membership_id, member.id))
            conn.commit()
        except sqlite3.IntegrityError as e:
            conn.rollback()
            raise DuplicateRecordError(f"A member with email {member.email} is already registered.") from e
        finally:
            conn.close()
        logger.info(f"Member registered: id={member.id} membership_id={member.membership_id}")
        return member

    def set_member_status(self, member_id: int, status: MemberStatus | str) -> Member:
        try:
            new_status = MemberStatus(status)
        except ValueError as e:
            raise ValueError(f"Invalid member status: {status}") from e

        member = self.get_member(member_id)
        conn = self._connect()
        try:
            conn.execute("UPDATE members SET status = ? WHERE id = ?", (new_status.value, member_id))
            conn.commit()
        finally:
            conn.close()
        member.status = new_status
        logger.info(f"Member {member_id} status set to {new_status.value}")
        return member

    # ------------------------- Borrowing ------------------------- #
    def borrow_book(self, book_id: int, member_id: int) -> BorrowRecord:
        """Lend one copy of a book to a member.

        Eligibility (book exists, member exists and is ACTIVE, member is under
        the active-borrow limit, a copy is available) is checked and the copy
        taken inside a single write transaction.
        """
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            book_row = conn.execute("SELECT * FROM books WHERE id = ?", (book_id,)).fetchone()
            if book_row is None:
                raise BookNotFoundError(f"Book with id {book_id} not found.")
            member_row = conn.execute("SELECT * FROM members WHERE id = ?", (member_id,)).fetchone()
            if member_row is None:
                raise MemberNotFoundError(f"Member with id {member_id} not found.")

            book = Book.from_dict(dict(book_row))
            member = Member.from_dict(dict(member_row))

            if not member.is_active:
                raise BorrowRuleError(f"Member {member.membership_id} is {member.status.value} and cannot borrow.")
            active = conn.execute(
                "SELECT COUNT(*) FROM borrow_records WHERE member_id = ? AND status = ?",
                (member_id, BorrowStatus.BORROWED.value),
            ).fetchone()[0]
            if active >= self.max_active_borrows:
                raise BorrowRuleError(
                    f"Member {member.membership_id} already has {active} books borrowed "
                    f"(limit {self.max_active_borrows})."
                )
            if not book.is_available():
                raise BorrowRuleError(f"No copies of '{book.title}' are available.")

            borrowed_at = _now()
            due_at = borrowed_at + self.loan_period
            cursor = conn.execute(
                "INSERT INTO borrow_records (book_id, member_id, borrow_date, due_date, fine, status) "
                "VALUES (?, ?, ?, ?, 0, ?)",
                (book_id, member_id, borrowed_at.isoformat(), due_at.isoformat(), BorrowStatus.BORROWED.value),
            )
            conn.execute("UPDATE books SET available_quantity = available_quantity - 1 WHERE id = ?", (book_id,))
            conn.commit()
        except BorrowRuleError as e:
            conn.rollback()
            logger.warning(f"Borrow refused (book={book_id}, member={member_id}): {e}")
            raise
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

        book.available_quantity -= 1
        record = BorrowRecord(
            id=cursor.lastrowid,
            book=book,
            member=member,
            borrow_date=borrowed_at.isoformat(),
            due_date=due_at.isoformat(),
        )
        logger.info(f"Borrow {record.id}: book={book_id} member={member_id} due={record.due_date}")
        return record

    def return_book(self, record_id: int) -> BorrowRecord:
        """Close a borrow record: stamp the return date, settle the fine, restock the copy."""
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(_RECORD_SELECT + " WHERE r.id = ?", (record_id,)).fetchone()
            if row is None:
                raise BorrowRecordNotFoundError(f"Borrow record with id {record_id} not found.")
            record = self._row_to_record(row)
            if not record.is_open:
                raise BorrowRuleError(f"Borrow record {record_id} has already been returned.")

            returned_at = _now()
            due_at = datetime.fromisoformat(record.due_date)
            fine = calculate_fine(due_at, returned_at, self.fine_per_day)
            status = BorrowStatus.OVERDUE if days_late(due_at, returned_at) > 0 else BorrowStatus.RETURNED

            conn.execute(
                "UPDATE borrow_records SET return_date = ?, fine = ?, status = ? WHERE id = ?",
                (returned_at.isoformat(), fine, status.value, record_id),
            )
            conn.execute("UPDATE books SET available_quantity = available_quantity + 1 WHERE id = ?",
                         (record.book.id,))
            conn.commit()
        except BorrowRuleError as e:
            conn.rollback()
            logger.warning(f"Return refused (record={record_id}): {e}")
            raise
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

        record.return_date = returned_at.isoformat()
        record.fine = fine
        record.status = status
        record.book.available_quantity += 1
        logger.info(f"Borrow {record_id} closed as {status.value}, fine={fine:.2f}")
        return record

    def get_borrow(self, record_id: int) -> BorrowRecord:
        conn = self._connect()
        try:
            row = conn.execute(_RECORD_SELECT + " WHERE r.id = ?", (record_id,)).fetchone()
        finally:
            conn.close()
        if row is None:
            raise BorrowRecordNotFoundError(f"Borrow record with id {record_id} not found.")
        return self._row_to_record(row)

    def list_borrows(self, status: Optional[BorrowStatus] = None) -> List[BorrowRecord]:
        query = _RECORD_SELECT
        params: tuple = ()
        if status is not None:
            query += " WHERE r.status = ?"
            params = (BorrowStatus(status).value,)
        query += " ORDER BY r.due_date, r.id"
        conn = self._connect()
        try:
            rows = conn.execute(query, params).fetchall()
            return [self._row_to_record(row) for row in rows]
        finally:
            conn.close()

    def list_active_borrows(self) -> List[BorrowRecord]:
        return self.list_borrows(BorrowStatus.BORROWED)

    def list_overdue_borrows(self) -> List[BorrowRecord]:
        return self.list_borrows(BorrowStatus.OVERDUE)

    def count_active_borrows(self, member_id: int) -> int:
        conn = self._connect()
        try:
            return conn.execute(
                "SELECT COUNT(*) FROM borrow_records WHERE member_id = ? AND status = ?",
                (member_id, BorrowStatus.BORROWED.value),
            ).fetchone()[0]
        finally:
            conn.close()

    def get_statistics(self) -> Dict[str, Any]:
        """Get library statistics."""
        conn = self._connect()
        try:
            cursor = conn.cursor()
            total_books = cursor.execute("SELECT COUNT(*) FROM books").fetchone()[0]
            total_members = cursor.execute("SELECT COUNT(*) FROM members").fetchone()[0]
            active = cursor.execute("SELECT COUNT(*) FROM borrow_records WHERE status = ?",
                                    (BorrowStatus.BORROWED.value,)).fetchone()[0]
            overdue = cursor.execute("SELECT COUNT(*) FROM borrow_records WHERE status = ?",
                                     (BorrowStatus.OVERDUE.value,)).fetchone()[0]
            total_fines = cursor.execute("SELECT COALESCE(SUM(fine), 0) FROM borrow_records").fetchone()[0]
            return {
                "total_books": total_books,
                "total_members": total_members,
                "active_borrows": active,
                "overdue": overdue,
                "total_fines": round(float(total_fines), 2),
            }
        finally:
            conn.close()

    def ping(self) -> bool:
        conn = self._connect()
        try:
            conn.execute("SELECT 1")
            return True
        finally:
            conn.close()

    # ------------------------- Utilities ------------------------- #
    @staticmethod
    def _validate_book(book: Book) -> None:
        if not TextValidator.validate_title(book.title):
            raise ValueError("Title is required.")
        if not TextValidator.validate_author(book.author):
            raise ValueError("Author is required.")
        if not ISBNValidator.is_valid_isbn(book.isbn):
            raise ValueError("Invalid ISBN format. ISBN must be exactly 10 or 13 digits.")
        if book.total_quantity is None or book.total_quantity < 1:
            raise ValueError("Total quantity must be at least 1.")
        if book.publication_year is not None and not (0 < book.publication_year <= _now().year + 1):
            raise ValueError(f"Invalid publication year: {book.publication_year}")

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> BorrowRecord:
        book = Book(
            id=row["b_id"], title=row["title"], author=row["author"], isbn=row["isbn"],
            category=row["category"], total_quantity=row["total_quantity"],
            available_quantity=row["available_quantity"], publication_year=row["publication_year"],
        )
        member = Member(
            id=row["m_id"], name=row["name"], email=row["email"], phone=row["phone"],
            membership_id=row["membership_id"], registration_date=row["registration_date"],
            status=row["m_status"],
        )
        return BorrowRecord(
            id=row["r_id"], book=book, member=member, borrow_date=row["borrow_date"],
            due_date=row["due_date"], return_date=row["return_date"], fine=row["fine"],
            status=row["r_status"],
        )

    def close(self) -> None:
        """Connections are opened per operation, so there is nothing to release."""
        return None


class BookNotFoundError(LookupError):
    """Requested book id does not exist."""


class MemberNotFoundError(LookupError):
    """Requested member id does not exist."""


class BorrowRecordNotFoundError(LookupError):
    """Requested borrow record id does not exist."""


class BorrowRuleError(Exception):
    """A lending rule forbids the operation (availability, member status, limits)."""


class DuplicateRecordError(BorrowRuleError):
    """A unique field (ISBN, member email) is already taken."""
