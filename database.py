import os
import sqlite3
from contextlib import contextmanager
from typing import Iterator, Optional

from dotenv import load_dotenv

# Make sure .env is loaded before DATABASE_FILE is resolved, regardless of import order.
load_dotenv()

# Default database file.
# Priority:
# 1) explicit db_file argument passed to the helpers below
# 2) LIBRARY_DB_FILE environment variable (read at call time so tests can override it)
# 3) library.db in the working directory
DEFAULT_DATABASE_FILE = "library.db"


def resolve_database_file(db_file: Optional[str] = None) -> str:
    return db_file or os.environ.get("LIBRARY_DB_FILE") or DEFAULT_DATABASE_FILE


def get_db_connection(db_file: Optional[str] = None, timeout: float = 10.0) -> sqlite3.Connection:
    """Open a connection in autocommit mode; callers group writes with ``transaction()``."""
    conn = sqlite3.connect(
        resolve_database_file(db_file),
        timeout=timeout,
        isolation_level=None,
        check_same_thread=False,
    )
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


@contextmanager
def transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """Run a block as one write transaction.

    ``BEGIN IMMEDIATE`` takes the database write lock up front, so a
    read-check-write sequence inside the block cannot interleave with another
    writer. Any exception rolls the whole block back.
    """
    conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
    except BaseException:
        conn.execute("ROLLBACK")
        raise
    else:
        conn.execute("COMMIT")


def create_tables(db_file: Optional[str] = None) -> None:
    """Create the required tables if they do not exist yet."""
    conn = get_db_connection(db_file)
    try:
        # WAL lets readers proceed while a borrow/return holds the write lock
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("""
            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                username TEXT NOT NULL UNIQUE,
                email TEXT NOT NULL UNIQUE,
                password_hash TEXT NOT NULL,
                is_librarian INTEGER NOT NULL DEFAULT 0,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS books (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                author TEXT NOT NULL,
                isbn TEXT NOT NULL UNIQUE,
                quantity INTEGER NOT NULL CHECK(quantity >= 0),
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)
        # One row per outstanding loan; the primary key allows a single loan per (book, user)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS loans (
                book_id TEXT NOT NULL,
                user_id TEXT NOT NULL,
                borrowed_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                PRIMARY KEY (book_id, user_id),
                FOREIGN KEY (book_id) REFERENCES books(id) ON DELETE CASCADE
            )
        """)

        conn.execute("CREATE INDEX IF NOT EXISTS idx_books_quantity ON books(quantity)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_loans_user_id ON loans(user_id)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_users_email ON users(email)")
    finally:
        conn.close()


def initialize_database(db_file: Optional[str] = None) -> None:
    """Initialize the database, creating tables when needed."""
    create_tables(db_file)
