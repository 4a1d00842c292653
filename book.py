from __future__ import annotations

from typing import List


class Book:
    """A catalog entry together with its available copies and current borrowers."""

    def __init__(self, id: str, title: str, author: str, isbn: str, quantity: int = 0,
                 borrowers: List[str] | None = None, created_at: str | None = None) -> None:
        self.id = id
        self.title = title.strip()
        self.author = author.strip()
        self.isbn = isbn.strip()
        self.quantity = quantity
        self.borrowers = list(borrowers or [])
        self.created_at = created_at

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} by {self.author} (ISBN: {self.isbn})"

    def is_borrowed_by(self, user_id: str) -> bool:
        return user_id in self.borrowers

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "isbn": self.isbn,
            "quantity": self.quantity,
            "borrowers": list(self.borrowers),
            "created_at": self.created_at,
        }

    @staticmethod
    def from_dict(data: dict) -> "Book":
        return Book(
            id=data["id"],
            title=data["title"],
            author=data["author"],
            isbn=data["isbn"],
            quantity=int(data.get("quantity") or 0),
            borrowers=data.get("borrowers"),
            created_at=data.get("created_at"),
        )
