import os
import sqlite3
from typing import Optional

from dotenv import load_dotenv

# Load .env before reading the environment so the database path is honoured
# regardless of import order (library -> database -> config).
load_dotenv()


def resolve_database_file() -> str:
    """Return the database file to use.

    Priority:
    1) LIBRARY_DB_FILE (explicit override, used by tests)
    2) LIBRARY_DATA_FILE (setting shared with config.py/.env)
    3) library.db in the working directory
    """
    return (
        os.environ.get("LIBRARY_DB_FILE")
        or os.environ.get("LIBRARY_DATA_FILE")
        or "library.db"
    )


DATABASE_FILE = resolve_database_file()


def get_db_connection(db_file: Optional[str] = None) -> sqlite3.Connection:
    """Open a connection to the SQLite database with rows addressable by column name."""
    conn = sqlite3.connect(db_file or DATABASE_FILE)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


def create_tables(db_file: Optional[str] = None) -> None:
    """Create the tables if they do not exist yet."""
    conn = get_db_connection(db_file)
    try:
        cursor = conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS books (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                title TEXT NOT NULL,
                author TEXT NOT NULL,
                isbn TEXT NOT NULL UNIQUE,
                category TEXT,
                total_quantity INTEGER NOT NULL CHECK(total_quantity >= 1),
                available_quantity INTEGER NOT NULL
                    CHECK(available_quantity >= 0 AND available_quantity <= total_quantity),
                publication_year INTEGER,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS members (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                email TEXT NOT NULL UNIQUE COLLATE NOCASE,
                membership_id TEXT UNIQUE,
                phone TEXT,
                registration_date TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'ACTIVE' CHECK(status IN ('ACTIVE', 'SUSPENDED'))
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS borrow_records (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                book_id INTEGER NOT NULL,
                member_id INTEGER NOT NULL,
                borrow_date TEXT NOT NULL,
                due_date TEXT NOT NULL,
                return_date TEXT,
                fine REAL NOT NULL DEFAULT 0,
                status TEXT NOT NULL DEFAULT 'BORROWED'
                    CHECK(status IN ('BORROWED', 'RETURNED', 'OVERDUE')),
                FOREIGN KEY (book_id) REFERENCES books(id) ON DELETE CASCADE,
                FOREIGN KEY (member_id) REFERENCES members(id)
            )
        """)

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_books_title ON books(title)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_borrow_records_status ON borrow_records(status)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_borrow_records_member ON borrow_records(member_id, status)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_borrow_records_book ON borrow_records(book_id, status)")

        conn.commit()
    finally:
        conn.close()


def initialize_database(db_file: Optional[str] = None) -> None:
    """Initialise the database, creating tables when needed."""
    create_tables(db_file)
