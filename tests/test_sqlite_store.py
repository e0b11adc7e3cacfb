import sqlite3
import threading
import time

import pytest

from library_store.config import Settings
from library_store.errors import BookNotAvailable, StorageError, UserAlreadyExists
from library_store.models import Book, Loan, User
from library_store.storage import MemoryStore, SQLiteStore, create_store


def test_creates_tables_and_indexes(sqlite_store, db_file):
    conn = sqlite3.connect(db_file)
    try:
        tables = {r[0] for r in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")}
        indexes = {r[0] for r in conn.execute("SELECT name FROM sqlite_master WHERE type = 'index'")}
    finally:
        conn.close()

    assert {"users", "books", "loans"} <= tables
    assert {
        "idx_users_username",
        "idx_books_title",
        "idx_books_author",
        "idx_books_genre",
        "idx_books_available",
        "idx_loans_book_id",
        "idx_loans_returned",
    } <= indexes


def test_reopening_is_idempotent_and_persistent(db_file):
    first = SQLiteStore(db_file)
    book = first.create_book(Book(title="Dune", author="Frank Herbert"))
    loan = first.create_loan(Loan(book_id=book.id, user="alice"))
    first.close()

    second = SQLiteStore(db_file)
    try:
        assert second.get_book_by_id(book.id).available is False
        assert second.get_loan_by_id(loan.id) == loan
    finally:
        second.close()


def test_creates_missing_parent_directory(tmp_path):
    path = tmp_path / "nested" / "dir" / "library.db"

    store = SQLiteStore(str(path))
    store.close()

    assert path.exists()


def test_unopenable_path_raises_storage_error(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("not a directory")

    with pytest.raises(StorageError):
        SQLiteStore(str(blocker / "library.db"))


def test_books_ordered_by_title(sqlite_store):
    for title in ("Zeta", "Alpha", "Mid"):
        sqlite_store.create_book(Book(title=title, author="A"))

    assert [b.title for b in sqlite_store.get_books()] == ["Alpha", "Mid", "Zeta"]
    assert [b.title for b in sqlite_store.search_books(author="a")] == ["Alpha", "Mid", "Zeta"]


def test_failed_loan_rolls_back(sqlite_store, monkeypatch):
    book = sqlite_store.create_book(Book(title="Dune", author="Frank Herbert"))

    def broken(conn, book_id, available, when):
        raise sqlite3.OperationalError("disk I/O error")

    monkeypatch.setattr(sqlite_store, "_set_availability", broken)

    with pytest.raises(StorageError):
        sqlite_store.create_loan(Loan(book_id=book.id, user="alice"))

    assert sqlite_store.get_loans() == []
    assert sqlite_store.get_book_by_id(book.id).available is True


def test_failed_return_rolls_back(sqlite_store, monkeypatch):
    book = sqlite_store.create_book(Book(title="Dune", author="Frank Herbert"))
    loan = sqlite_store.create_loan(Loan(book_id=book.id, user="alice"))

    def broken(conn, book_id, available, when):
        raise sqlite3.OperationalError("disk I/O error")

    monkeypatch.setattr(sqlite_store, "_set_availability", broken)

    with pytest.raises(StorageError):
        sqlite_store.return_book(loan.id)

    assert sqlite_store.get_loan_by_id(loan.id).returned is False
    assert sqlite_store.get_book_by_id(book.id).available is False


def test_concurrent_borrowers_across_instances(db_file):
    setup = SQLiteStore(db_file)
    book = setup.create_book(Book(title="Dune", author="Frank Herbert"))
    setup.close()

    stores = [SQLiteStore(db_file, timeout=10) for _ in range(4)]
    results = []
    start = threading.Barrier(len(stores))

    def borrow(store, name):
        start.wait()
        try:
            store.create_loan(Loan(book_id=book.id, user=name))
            results.append(True)
        except BookNotAvailable:
            results.append(False)

    threads = [threading.Thread(target=borrow, args=(s, f"user{i}")) for i, s in enumerate(stores)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=15)

    try:
        assert results.count(True) == 1
        assert len(stores[0].get_active_loans()) == 1
    finally:
        for s in stores:
            s.close()


def test_username_unique_across_instances(db_file):
    one = SQLiteStore(db_file)
    two = SQLiteStore(db_file)
    try:
        one.create_user(User(username="alice"))
        with pytest.raises(UserAlreadyExists):
            two.create_user(User(username="alice"))
    finally:
        one.close()
        two.close()


def test_empty_isbn_stored_as_null(sqlite_store, db_file):
    sqlite_store.create_book(Book(title="No ISBN", author="A"))

    conn = sqlite3.connect(db_file)
    try:
        (isbn,) = conn.execute("SELECT isbn FROM books").fetchone()
    finally:
        conn.close()

    assert isbn is None
    assert sqlite_store.get_books()[0].isbn == ""


def test_in_memory_database():
    store = SQLiteStore(":memory:")
    try:
        book = store.create_book(Book(title="Dune", author="Frank Herbert"))
        store.create_loan(Loan(book_id=book.id, user="alice"))
        assert store.get_book_by_id(book.id).available is False
    finally:
        store.close()


def test_closed_store_raises(db_file):
    store = SQLiteStore(db_file)
    store.close()
    store.close()

    with pytest.raises(StorageError):
        store.get_books()


# ------------------------- create_store ------------------------- #

def test_create_store_sqlite(db_file):
    store = create_store(Settings(storage_type="sqlite", db_path=db_file))
    try:
        assert isinstance(store, SQLiteStore)
    finally:
        store.close()


def test_create_store_memory():
    assert isinstance(create_store(Settings(storage_type="MEMORY")), MemoryStore)


def test_create_store_unknown_type():
    with pytest.raises(ValueError):
        create_store(Settings(storage_type="postgres"))


def test_create_store_falls_back_to_memory(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("x")
    config = Settings(storage_type="sqlite", db_path=str(blocker / "library.db"), storage_fallback=True)

    assert isinstance(create_store(config), MemoryStore)


def test_create_store_without_fallback_raises(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("x")
    config = Settings(storage_type="sqlite", db_path=str(blocker / "library.db"), storage_fallback=False)

    with pytest.raises(StorageError):
        create_store(config)


def test_in_memory_close_while_waiting_for_connection():
    store = SQLiteStore(":memory:")
    errors = []

    def reader():
        try:
            store.get_books()
        except StorageError as exc:
            errors.append(exc)

    with store._shared_lock:
        t = threading.Thread(target=reader)
        t.start()
        # reader is now queued on the shared connection
        time.sleep(0.05)
        store.close()
    t.join(timeout=2)

    assert len(errors) == 1
    assert "closed" in str(errors[0])
