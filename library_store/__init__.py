"""Library Store - book, loan and user record store

This package contains:
- Entity models (models.py)
- Error vocabulary (errors.py)
- Storage backends and the store contract (storage/)
- Startup seeding (bootstrap.py)
- Settings and logging setup (config.py)
- Operator CLI (cli.py, ui_helpers.py)
"""

from library_store.errors import (
    BookAlreadyExists,
    BookNotAvailable,
    BookNotFound,
    ConflictError,
    LoanNotFound,
    NotFoundError,
    StorageError,
    StoreError,
    UserAlreadyExists,
    UserNotFound,
)
from library_store.models import Book, Loan, LoanWithBook, User
from library_store.storage import MemoryStore, SQLiteStore, Store, create_store

__all__ = [
    # models
    "Book",
    "Loan",
    "LoanWithBook",
    "User",
    # errors
    "StoreError",
    "NotFoundError",
    "ConflictError",
    "BookNotFound",
    "LoanNotFound",
    "UserNotFound",
    "BookNotAvailable",
    "UserAlreadyExists",
    "BookAlreadyExists",
    "StorageError",
    # storage
    "Store",
    "MemoryStore",
    "SQLiteStore",
    "create_store",
]
