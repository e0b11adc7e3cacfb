import logging
import os
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, List, Optional

from library_store.errors import (
    BookAlreadyExists,
    BookNotAvailable,
    BookNotFound,
    LoanNotFound,
    StorageError,
    StoreError,
    UserAlreadyExists,
    UserNotFound,
)
from library_store.models import Book, Loan, LoanWithBook, User, deleted_book_placeholder, utcnow

logger = logging.getLogger(__name__)

MEMORY_DB = ":memory:"

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        username TEXT UNIQUE NOT NULL,
        password TEXT NOT NULL,
        role TEXT DEFAULT 'user',
        created_at TIMESTAMP,
        updated_at TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS books (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        author TEXT NOT NULL,
        isbn TEXT UNIQUE,
        published INTEGER,
        genre TEXT,
        description TEXT,
        available BOOLEAN NOT NULL DEFAULT 1,
        created_at TIMESTAMP,
        updated_at TIMESTAMP
    )
    """,
    # foreign_keys is left off so loans outlive a deleted book
    """
    CREATE TABLE IF NOT EXISTS loans (
        id TEXT PRIMARY KEY,
        book_id TEXT NOT NULL,
        "user" TEXT NOT NULL,
        loan_date TIMESTAMP NOT NULL,
        return_date TIMESTAMP,
        returned BOOLEAN NOT NULL DEFAULT 0,
        FOREIGN KEY (book_id) REFERENCES books (id)
    )
    """,
]

INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_users_username ON users(username)",
    "CREATE INDEX IF NOT EXISTS idx_books_title ON books(title)",
    "CREATE INDEX IF NOT EXISTS idx_books_author ON books(author)",
    "CREATE INDEX IF NOT EXISTS idx_books_genre ON books(genre)",
    "CREATE INDEX IF NOT EXISTS idx_books_available ON books(available)",
    "CREATE INDEX IF NOT EXISTS idx_loans_book_id ON loans(book_id)",
    "CREATE INDEX IF NOT EXISTS idx_loans_returned ON loans(returned)",
]

BOOK_COLUMNS = "id, title, author, isbn, published, genre, description, available, created_at, updated_at"
LOAN_COLUMNS = 'id, book_id, "user", loan_date, return_date, returned'
USER_COLUMNS = "id, username, password, role, created_at, updated_at"


def _new_id() -> str:
    return str(uuid.uuid4())


def _format_ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat(timespec="microseconds") if value is not None else None


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _unicode_lower(value: Optional[str]) -> Optional[str]:
    # SQLite's built-in lower()/LIKE only fold ASCII
    return value.lower() if value is not None else None


def _like_pattern(needle: str) -> str:
    escaped = needle.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _row_to_book(row: sqlite3.Row, prefix: str = "") -> Book:
    return Book(
        id=row[prefix + "id"],
        title=row[prefix + "title"],
        author=row[prefix + "author"],
        isbn=row[prefix + "isbn"] or "",
        published=row[prefix + "published"] or 0,
        genre=row[prefix + "genre"] or "",
        description=row[prefix + "description"] or "",
        available=bool(row[prefix + "available"]),
        created_at=_parse_ts(row[prefix + "created_at"]),
        updated_at=_parse_ts(row[prefix + "updated_at"]),
    )


def _row_to_loan(row: sqlite3.Row) -> Loan:
    return Loan(
        id=row["id"],
        book_id=row["book_id"],
        user=row["user"],
        loan_date=_parse_ts(row["loan_date"]),
        return_date=_parse_ts(row["return_date"]),
        returned=bool(row["returned"]),
    )


def _row_to_user(row: sqlite3.Row) -> User:
    return User(
        id=row["id"],
        username=row["username"],
        password=row["password"],
        role=row["role"] or "",
        created_at=_parse_ts(row["created_at"]),
        updated_at=_parse_ts(row["updated_at"]),
    )


class SQLiteStore:
    """Durable store on top of a SQLite database file.

    Every call opens its own connection in autocommit mode, so there is no
    shared cursor state between threads. Check-and-update sequences run inside
    ``BEGIN IMMEDIATE`` transactions: the database write lock is taken before
    the check, which serializes concurrent borrowers and registrations, and any
    failure rolls the whole sequence back.

    ``":memory:"`` keeps one connection open for the lifetime of the store and
    serializes access to it with a lock.
    """

    def __init__(self, db_path: str, timeout: float = 5.0) -> None:
        self.db_path = db_path
        self.timeout = timeout
        self._closed = False
        self._shared_conn: Optional[sqlite3.Connection] = None
        self._shared_lock = threading.RLock()

        try:
            if db_path == MEMORY_DB:
                self._shared_conn = self._open_connection()
            else:
                directory = os.path.dirname(os.path.abspath(db_path))
                os.makedirs(directory, exist_ok=True)
            self._create_tables()
        except (OSError, sqlite3.Error) as exc:
            raise StorageError(f"error opening database {db_path}: {exc}") from exc
        logger.info(f"SQLite store ready: {db_path}")

    # ------------------------- Connections ------------------------- #
    def _open_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            self.db_path,
            timeout=self.timeout,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        conn.create_function("unicode_lower", 1, _unicode_lower, deterministic=True)
        if self.db_path != MEMORY_DB:
            # WAL lets readers proceed while a writer holds the lock
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=NORMAL;")
        return conn

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        if self._closed:
            raise StorageError("store is closed")
        if self.db_path == MEMORY_DB:
            with self._shared_lock:
                conn = self._shared_conn
                if conn is None:
                    raise StorageError("store is closed")
                yield conn
            return
        conn = self._open_connection()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
                conn.execute("COMMIT")
            finally:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")

    @contextmanager
    def _translate(
        self,
        action: str,
        unique_column: Optional[str] = None,
        conflict: Optional[StoreError] = None,
    ) -> Iterator[None]:
        """Turn driver exceptions into StorageError, or into ``conflict`` for a UNIQUE hit on ``unique_column``."""
        try:
            yield
        except sqlite3.IntegrityError as exc:
            if conflict is not None and unique_column and unique_column in str(exc):
                raise conflict from exc
            raise StorageError(f"error {action}: {exc}") from exc
        except sqlite3.Error as exc:
            raise StorageError(f"error {action}: {exc}") from exc

    def _create_tables(self) -> None:
        with self._connection() as conn:
            for statement in SCHEMA + INDEXES:
                conn.execute(statement)

    # ------------------------- Books ------------------------- #
    def create_book(self, draft: Book) -> Book:
        now = utcnow()
        book = draft.model_copy(update={
            "id": _new_id(),
            "created_at": now,
            "updated_at": now,
            "available": True,
        })
        with self._translate("creating book", "books.isbn", BookAlreadyExists(book.isbn)), \
                self._transaction() as conn:
            self._check_isbn_free(conn, book.isbn)
            conn.execute(
                f"INSERT INTO books ({BOOK_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                self._book_params(book),
            )
        return book

    def get_books(self) -> List[Book]:
        with self._translate("getting books"), self._connection() as conn:
            rows = conn.execute(f"SELECT {BOOK_COLUMNS} FROM books ORDER BY title").fetchall()
        return [_row_to_book(row) for row in rows]

    def get_book_by_id(self, book_id: str) -> Book:
        with self._translate("getting book"), self._connection() as conn:
            row = conn.execute(f"SELECT {BOOK_COLUMNS} FROM books WHERE id = ?", (book_id,)).fetchone()
        if row is None:
            raise BookNotFound(book_id)
        return _row_to_book(row)

    def update_book(self, book_id: str, draft: Book) -> Book:
        with self._translate("updating book", "books.isbn", BookAlreadyExists(draft.isbn)), \
                self._transaction() as conn:
            row = conn.execute("SELECT created_at FROM books WHERE id = ?", (book_id,)).fetchone()
            if row is None:
                raise BookNotFound(book_id)
            self._check_isbn_free(conn, draft.isbn, exclude_id=book_id)
            book = draft.model_copy(update={
                "id": book_id,
                "created_at": _parse_ts(row["created_at"]),
                "updated_at": utcnow(),
            })
            conn.execute(
                """
                UPDATE books SET
                    title = ?, author = ?, isbn = ?, published = ?, genre = ?,
                    description = ?, available = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    book.title, book.author, book.isbn or None, book.published, book.genre,
                    book.description, int(book.available), _format_ts(book.updated_at), book_id,
                ),
            )
        return book

    def delete_book(self, book_id: str) -> None:
        with self._translate("deleting book"), self._connection() as conn:
            cursor = conn.execute("DELETE FROM books WHERE id = ?", (book_id,))
        if cursor.rowcount == 0:
            raise BookNotFound(book_id)

    def search_books(
        self,
        title: str = "",
        author: str = "",
        genre: str = "",
        available: Optional[bool] = None,
    ) -> List[Book]:
        query = f"SELECT {BOOK_COLUMNS} FROM books WHERE 1=1"
        args: list = []
        for column, needle in (("title", title), ("author", author), ("genre", genre)):
            if needle:
                query += f" AND unicode_lower({column}) LIKE ? ESCAPE '\\'"
                args.append(_like_pattern(needle))
        if available is not None:
            query += " AND available = ?"
            args.append(int(available))
        query += " ORDER BY title"

        with self._translate("searching books"), self._connection() as conn:
            rows = conn.execute(query, args).fetchall()
        return [_row_to_book(row) for row in rows]

    def update_book_availability(self, book_id: str, available: bool) -> None:
        with self._translate("updating book availability"), self._connection() as conn:
            cursor = conn.execute(
                "UPDATE books SET available = ?, updated_at = ? WHERE id = ?",
                (int(available), _format_ts(utcnow()), book_id),
            )
        if cursor.rowcount == 0:
            raise BookNotFound(book_id)

    # ------------------------- Loans ------------------------- #
    def create_loan(self, draft: Loan) -> Loan:
        now = utcnow()
        loan = draft.model_copy(update={
            "id": _new_id(),
            "loan_date": now,
            "return_date": None,
            "returned": False,
        })
        with self._translate("creating loan"), self._transaction() as conn:
            row = conn.execute("SELECT available FROM books WHERE id = ?", (loan.book_id,)).fetchone()
            if row is None:
                raise BookNotFound(loan.book_id)
            if not row["available"]:
                logger.debug(f"Loan rejected, book {loan.book_id} is on loan")
                raise BookNotAvailable(loan.book_id)
            conn.execute(
                f"INSERT INTO loans ({LOAN_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)",
                (loan.id, loan.book_id, loan.user, _format_ts(now), None, 0),
            )
            self._set_availability(conn, loan.book_id, False, now)
        logger.info(f"Loan {loan.id} created for book {loan.book_id} ({loan.user})")
        return loan

    def return_book(self, loan_id: str) -> None:
        with self._translate("returning book"), self._transaction() as conn:
            row = conn.execute("SELECT book_id, returned FROM loans WHERE id = ?", (loan_id,)).fetchone()
            if row is None:
                raise LoanNotFound(loan_id)
            if row["returned"]:
                return
            now = utcnow()
            conn.execute(
                "UPDATE loans SET returned = 1, return_date = ? WHERE id = ?",
                (_format_ts(now), loan_id),
            )
            # A deleted book simply matches no row
            self._set_availability(conn, row["book_id"], True, now)
        logger.info(f"Loan {loan_id} returned")

    def get_loans(self) -> List[Loan]:
        with self._translate("getting loans"), self._connection() as conn:
            rows = conn.execute(f"SELECT {LOAN_COLUMNS} FROM loans ORDER BY loan_date DESC").fetchall()
        return [_row_to_loan(row) for row in rows]

    def get_active_loans(self) -> List[Loan]:
        with self._translate("getting active loans"), self._connection() as conn:
            rows = conn.execute(
                f"SELECT {LOAN_COLUMNS} FROM loans WHERE returned = 0 ORDER BY loan_date DESC"
            ).fetchall()
        return [_row_to_loan(row) for row in rows]

    def get_loan_by_id(self, loan_id: str) -> Loan:
        with self._translate("getting loan"), self._connection() as conn:
            row = conn.execute(f"SELECT {LOAN_COLUMNS} FROM loans WHERE id = ?", (loan_id,)).fetchone()
        if row is None:
            raise LoanNotFound(loan_id)
        return _row_to_loan(row)

    def get_loans_with_books(self, active_only: bool = False) -> List[LoanWithBook]:
        query = """
            SELECT l.id AS id, l.book_id AS book_id, l."user" AS "user", l.loan_date AS loan_date,
                   l.return_date AS return_date, l.returned AS returned,
                   b.id AS b_id, b.title AS b_title, b.author AS b_author, b.isbn AS b_isbn,
                   b.published AS b_published, b.genre AS b_genre, b.description AS b_description,
                   b.available AS b_available, b.created_at AS b_created_at, b.updated_at AS b_updated_at
            FROM loans l
            LEFT JOIN books b ON l.book_id = b.id
        """
        if active_only:
            query += " WHERE l.returned = 0"
        query += " ORDER BY l.loan_date DESC"

        with self._translate("getting loans with books"), self._connection() as conn:
            rows = conn.execute(query).fetchall()

        joined = []
        for row in rows:
            loan = _row_to_loan(row)
            book = _row_to_book(row, prefix="b_") if row["b_id"] is not None else deleted_book_placeholder(loan)
            joined.append(LoanWithBook(**loan.model_dump(), book=book))
        return joined

    # ------------------------- Users ------------------------- #
    def create_user(self, draft: User) -> User:
        now = utcnow()
        user = draft.model_copy(update={
            "id": draft.id or _new_id(),
            "created_at": now,
            "updated_at": now,
        })
        # Lookup and insert share one write transaction, so concurrent
        # registrations of the same name cannot both pass the check.
        with self._translate("creating user", "users.username", UserAlreadyExists(user.username)), \
                self._transaction() as conn:
            row = conn.execute("SELECT 1 FROM users WHERE username = ?", (user.username,)).fetchone()
            if row is not None:
                logger.debug(f"User {user.username!r} already exists")
                raise UserAlreadyExists(user.username)
            conn.execute(
                f"INSERT INTO users ({USER_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)",
                (user.id, user.username, user.password, user.role,
                 _format_ts(user.created_at), _format_ts(user.updated_at)),
            )
        return user

    def get_user_by_username(self, username: str) -> User:
        with self._translate("getting user"), self._connection() as conn:
            row = conn.execute(
                f"SELECT {USER_COLUMNS} FROM users WHERE username = ? LIMIT 1", (username,)
            ).fetchone()
        if row is None:
            raise UserNotFound(username)
        return _row_to_user(row)

    def get_user_by_id(self, user_id: str) -> User:
        with self._translate("getting user"), self._connection() as conn:
            row = conn.execute(f"SELECT {USER_COLUMNS} FROM users WHERE id = ? LIMIT 1", (user_id,)).fetchone()
        if row is None:
            raise UserNotFound(user_id)
        return _row_to_user(row)

    def update_user(self, user_id: str, draft: User) -> User:
        with self._translate("updating user", "users.username", UserAlreadyExists(draft.username)), \
                self._transaction() as conn:
            row = conn.execute("SELECT created_at FROM users WHERE id = ?", (user_id,)).fetchone()
            if row is None:
                raise UserNotFound(user_id)
            taken = conn.execute(
                "SELECT 1 FROM users WHERE username = ? AND id != ?", (draft.username, user_id)
            ).fetchone()
            if taken is not None:
                raise UserAlreadyExists(draft.username)
            user = draft.model_copy(update={
                "id": user_id,
                "created_at": _parse_ts(row["created_at"]),
                "updated_at": utcnow(),
            })
            conn.execute(
                "UPDATE users SET username = ?, password = ?, role = ?, updated_at = ? WHERE id = ?",
                (user.username, user.password, user.role, _format_ts(user.updated_at), user_id),
            )
        return user

    def delete_user(self, user_id: str) -> None:
        with self._translate("deleting user"), self._connection() as conn:
            cursor = conn.execute("DELETE FROM users WHERE id = ?", (user_id,))
        if cursor.rowcount == 0:
            raise UserNotFound(user_id)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._shared_conn is not None:
            with self._shared_lock:
                self._shared_conn.close()
                self._shared_conn = None

    # ------------------------- Helpers ------------------------- #
    @staticmethod
    def _book_params(book: Book) -> tuple:
        return (
            book.id, book.title, book.author, book.isbn or None, book.published, book.genre,
            book.description, int(book.available), _format_ts(book.created_at), _format_ts(book.updated_at),
        )

    @staticmethod
    def _check_isbn_free(conn: sqlite3.Connection, isbn: str, exclude_id: Optional[str] = None) -> None:
        if not isbn:
            return
        row = conn.execute(
            "SELECT 1 FROM books WHERE isbn = ? AND id != ?", (isbn, exclude_id or "")
        ).fetchone()
        if row is not None:
            raise BookAlreadyExists(isbn)

    def _set_availability(self, conn: sqlite3.Connection, book_id: str, available: bool, when: datetime) -> None:
        conn.execute(
            "UPDATE books SET available = ?, updated_at = ? WHERE id = ?",
            (int(available), _format_ts(when), book_id),
        )
