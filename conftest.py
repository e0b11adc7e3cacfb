import pytest

from library_store.models import Book
from library_store.storage import MemoryStore, SQLiteStore


@pytest.fixture
def memory_store():
    store = MemoryStore()
    yield store
    store.close()


@pytest.fixture
def db_file(tmp_path, request):
    # Unique database file per test
    return str(tmp_path / f"test_{request.node.name[:40]}.db")


@pytest.fixture
def sqlite_store(db_file):
    store = SQLiteStore(db_file)
    yield store
    store.close()


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    """Every backend, so contract tests run against both."""
    if request.param == "memory":
        backend = MemoryStore()
    else:
        backend = SQLiteStore(str(tmp_path / "contract.db"))
    yield backend
    backend.close()


@pytest.fixture
def orwell_books(store):
    """'1984' (available) and 'Animal Farm' (on loan)."""
    first = store.create_book(Book(title="1984", author="George Orwell", isbn="978-0451524935", genre="Dystopia"))
    second = store.create_book(Book(title="Animal Farm", author="George Orwell", isbn="978-0451526342", genre="Satire"))
    store.update_book_availability(second.id, False)
    return store.get_book_by_id(first.id), store.get_book_by_id(second.id)
