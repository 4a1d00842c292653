import logging
import sqlite3
import uuid
from typing import Any, Dict, List, Optional

from auth import Identity
from book import Book
from config import Settings, settings as default_settings
from database import get_db_connection, initialize_database, transaction
from errors import (
    Conflict,
    Forbidden,
    InternalError,
    NotBorrowed,
    NotFound,
    Unauthenticated,
    Unavailable,
)
from validators import TextValidator

logger = logging.getLogger(__name__)

_BOOK_SELECT = """
    SELECT b.id, b.title, b.author, b.isbn, b.quantity, b.created_at,
           GROUP_CONCAT(l.user_id) AS borrowers
    FROM books b
    LEFT JOIN loans l ON l.book_id = b.id
"""


class Library:
    """Manages the book inventory and the borrow/return state of each book.

    Every mutation of a book's ``quantity`` and its borrower set happens inside
    a single write transaction, and the quantity decrement is guarded by
    ``quantity > 0`` in the UPDATE itself, so concurrent borrows of the last
    copy cannot both succeed.
    """

    def __init__(self, db_file: Optional[str] = None, settings: Optional[Settings] = None) -> None:
        self.settings = settings or default_settings
        self.db_file = db_file or self.settings.database_file
        initialize_database(self.db_file)

    # ------------------------- Catalog ------------------------- #
    def create_book(self, title: str, author: str, isbn: str, quantity: int,
                    identity: Optional[Identity]) -> Book:
        """Add a new title. Only librarians may do this."""
        identity = self._require_identity(identity)
        if not identity.is_librarian:
            raise Forbidden("Only librarians can add books")

        book = Book(
            id=uuid.uuid4().hex,
            title=TextValidator.require_text(title, "title", "Title"),
            author=TextValidator.require_text(author, "author", "Author"),
            isbn=TextValidator.require_text(isbn, "isbn", "ISBN"),
            quantity=TextValidator.require_quantity(quantity),
        )

        conn = self._connect()
        try:
            with transaction(conn):
                if conn.execute("SELECT 1 FROM books WHERE isbn = ?", (book.isbn,)).fetchone():
                    raise Conflict(f"Book with ISBN {book.isbn} already exists.")
                conn.execute(
                    "INSERT INTO books (id, title, author, isbn, quantity) VALUES (?, ?, ?, ?, ?)",
                    (book.id, book.title, book.author, book.isbn, book.quantity),
                )
            row = conn.execute("SELECT created_at FROM books WHERE id = ?", (book.id,)).fetchone()
            if row:
                book.created_at = row["created_at"]
        except sqlite3.IntegrityError as e:
            raise Conflict(f"Book with ISBN {book.isbn} already exists.") from e
        except sqlite3.Error as e:
            logger.error(f"Failed to create book {book.isbn}: {e}")
            raise InternalError() from e
        finally:
            conn.close()

        logger.info(f"Librarian {identity.user_id} added book {book.id} (isbn={book.isbn}, quantity={book.quantity})")
        return book

    def find_book(self, book_id: str) -> Optional[Book]:
        books = self._query_books("WHERE b.id = ?", (book_id,))
        return books[0] if books else None

    def get_book(self, book_id: str) -> Book:
        book = self.find_book(book_id)
        if book is None:
            raise NotFound("Book not found")
        return book

    def list_available(self) -> List[Book]:
        """Books with at least one copy on the shelf. No authentication needed."""
        return self._query_books("WHERE b.quantity > 0")

    def list_borrowed_by(self, user_id: str, identity: Optional[Identity]) -> List[Book]:
        """Books currently on loan to ``user_id``; callers may only list their own loans."""
        identity = self._require_identity(identity)
        if user_id != identity.user_id:
            raise Forbidden("You can only view your own books")
        return self._query_books(
            "WHERE b.id IN (SELECT book_id FROM loans WHERE user_id = ?)", (identity.user_id,)
        )

    # ------------------------- Borrow / return ------------------------- #
    def borrow(self, book_id: str, identity: Optional[Identity]) -> Book:
        """Take one copy of a book on loan for the caller."""
        identity = self._require_identity(identity)
        user_id = identity.user_id

        conn = self._connect()
        try:
            with transaction(conn):
                if conn.execute("SELECT 1 FROM books WHERE id = ?", (book_id,)).fetchone() is None:
                    raise NotFound("Book not found")
                held = conn.execute(
                    "SELECT 1 FROM loans WHERE book_id = ? AND user_id = ?", (book_id, user_id)
                ).fetchone()
                if held:
                    raise Conflict("You have already borrowed this book")
                cursor = conn.execute(
                    "UPDATE books SET quantity = quantity - 1 WHERE id = ? AND quantity > 0", (book_id,)
                )
                if cursor.rowcount == 0:
                    raise Unavailable("Book is not available")
                conn.execute("INSERT INTO loans (book_id, user_id) VALUES (?, ?)", (book_id, user_id))
        except sqlite3.IntegrityError as e:
            raise Conflict("You have already borrowed this book") from e
        except sqlite3.Error as e:
            logger.error(f"Borrow of book {book_id} by {user_id} failed: {e}")
            raise InternalError() from e
        finally:
            conn.close()

        logger.info(f"User {user_id} borrowed book {book_id}")
        return self.get_book(book_id)

    def return_book(self, book_id: str, identity: Optional[Identity],
                    user_id: Optional[str] = None) -> Book:
        """Give back the caller's copy of a book.

        ``user_id`` is accepted only as a consistency check against the token
        identity; it never selects whose loan is returned.
        """
        identity = self._require_identity(identity)
        requested_user_id = user_id
        user_id = identity.user_id

        conn = self._connect()
        try:
            with transaction(conn):
                if conn.execute("SELECT 1 FROM books WHERE id = ?", (book_id,)).fetchone() is None:
                    raise NotFound("Book not found")
                if requested_user_id is not None and requested_user_id != user_id:
                    raise Forbidden("You can only return books that you borrowed")
                cursor = conn.execute(
                    "DELETE FROM loans WHERE book_id = ? AND user_id = ?", (book_id, user_id)
                )
                if cursor.rowcount == 0:
                    raise NotBorrowed("You have not borrowed this book")
                conn.execute("UPDATE books SET quantity = quantity + 1 WHERE id = ?", (book_id,))
        except sqlite3.Error as e:
            logger.error(f"Return of book {book_id} by {user_id} failed: {e}")
            raise InternalError() from e
        finally:
            conn.close()

        logger.info(f"User {user_id} returned book {book_id}")
        return self.get_book(book_id)

    # ------------------------- Statistics ------------------------- #
    def get_statistics(self) -> Dict[str, Any]:
        """Get library statistics."""
        conn = self._connect()
        try:
            total_titles, available_copies = conn.execute(
                "SELECT COUNT(*), COALESCE(SUM(quantity), 0) FROM books"
            ).fetchone()
            active_loans = conn.execute("SELECT COUNT(*) FROM loans").fetchone()[0]
            return {
                "total_titles": total_titles,
                "available_copies": available_copies,
                "active_loans": active_loans,
            }
        except sqlite3.Error as e:
            logger.error(f"Failed to compute statistics: {e}")
            raise InternalError() from e
        finally:
            conn.close()

    # ------------------------- Persistence ------------------------- #
    def _connect(self) -> sqlite3.Connection:
        return get_db_connection(self.db_file, timeout=self.settings.database_timeout)

    def _query_books(self, where: str = "", params: tuple = ()) -> List[Book]:
        conn = self._connect()
        try:
            rows = conn.execute(
                f"{_BOOK_SELECT} {where} GROUP BY b.id ORDER BY b.title, b.id", params
            ).fetchall()
        except sqlite3.Error as e:
            logger.error(f"Failed to load books: {e}")
            raise InternalError() from e
        finally:
            conn.close()

        books = []
        for row in rows:
            data = dict(row)
            borrowers = data.pop("borrowers")
            data["borrowers"] = sorted(borrowers.split(",")) if borrowers else []
            books.append(Book.from_dict(data))
        return books

    # ------------------------- Utilities ------------------------- #
    @staticmethod
    def _require_identity(identity: Optional[Identity]) -> Identity:
        if identity is None or not identity.user_id:
            raise Unauthenticated("Authentication required")
        return identity
