"""Borrow records and the fine arithmetic attached to them.

A record is created in the BORROWED state and moves exactly once, on return,
to RETURNED (on time) or OVERDUE (late, with a fine).  Both end states are
final.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from book import Book
from member import Member


class BorrowStatus(str, Enum):
    BORROWED = "BORROWED"
    RETURNED = "RETURNED"
    OVERDUE = "OVERDUE"


def days_late(due_date: datetime, returned_at: datetime) -> int:
    """Whole calendar days between the due date and the return, never negative."""
    return max(0, (returned_at.date() - due_date.date()).days)


def calculate_fine(due_date: datetime, returned_at: datetime, fine_per_day: float) -> float:
    return round(days_late(due_date, returned_at) * fine_per_day, 2)


class BorrowRecord:
    """The loan of one copy of a book to one member."""

    def __init__(self, book: Book, member: Member, borrow_date: str, due_date: str,
                 id: int | None = None, return_date: str | None = None, fine: float = 0.0,
                 status: BorrowStatus | str = BorrowStatus.BORROWED) -> None:
        self.id = id
        self.book = book
        self.member = member
        self.borrow_date = borrow_date
        self.due_date = due_date
        self.return_date = return_date
        self.fine = fine
        self.status = BorrowStatus(status)

    @property
    def is_open(self) -> bool:
        return self.status == BorrowStatus.BORROWED

    def is_past_due(self, now: Optional[datetime] = None) -> bool:
        """True while the book is still out and the due date has passed."""
        if not self.is_open:
            return False
        now = now or datetime.now()
        return datetime.fromisoformat(self.due_date) < now

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "book": self.book.to_dict(),
            "member": self.member.to_dict(),
            "borrow_date": self.borrow_date,
            "due_date": self.due_date,
            "return_date": self.return_date,
            "fine": self.fine,
            "status": self.status.value,
        }
