from __future__ import annotations


class Book:
    """Represents a single title in the library inventory."""

    def __init__(self, title: str, author: str, isbn: str, total_quantity: int = 1,
                 available_quantity: int | None = None, category: str | None = None,
                 publication_year: int | None = None, id: int | None = None) -> None:
        self.id = id
        self.title = title.strip()
        self.author = author.strip()
        self.isbn = isbn.strip()
        self.category = category.strip() if category and category.strip() else None
        self.total_quantity = total_quantity
        # A new book starts with every copy on the shelf
        self.available_quantity = total_quantity if available_quantity is None else available_quantity
        self.publication_year = publication_year

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} by {self.author} (ISBN: {self.isbn})"

    @property
    def on_loan(self) -> int:
        return self.total_quantity - self.available_quantity

    def is_available(self) -> bool:
        return self.available_quantity > 0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "isbn": self.isbn,
            "category": self.category,
            "total_quantity": self.total_quantity,
            "available_quantity": self.available_quantity,
            "publication_year": self.publication_year,
        }

    @staticmethod
    def from_dict(data: dict) -> "Book":
        return Book(
            id=data.get("id"),
            title=data["title"],
            author=data["author"],
            isbn=data["isbn"],
            category=data.get("category"),
            total_quantity=data["total_quantity"],
            available_quantity=data.get("available_quantity"),
            publication_year=data.get("publication_year"),
        )
