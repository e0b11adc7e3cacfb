"""Error vocabulary shared by every store backend.

Callers map each class to an outward response: ``NotFoundError`` subclasses
to "not found", ``ConflictError`` subclasses to "conflict", and
``StorageError`` to an internal failure.
"""

from typing import Optional


class StoreError(Exception):
    """Base class for all store failures."""

    def __init__(self, message: str, key: Optional[str] = None) -> None:
        super().__init__(message)
        self.key = key


class NotFoundError(StoreError):
    pass


class BookNotFound(NotFoundError):
    def __init__(self, book_id: str) -> None:
        super().__init__(f"book not found: {book_id}", key=book_id)


class LoanNotFound(NotFoundError):
    def __init__(self, loan_id: str) -> None:
        super().__init__(f"loan not found: {loan_id}", key=loan_id)


class UserNotFound(NotFoundError):
    def __init__(self, key: str) -> None:
        super().__init__(f"user not found: {key}", key=key)


class ConflictError(StoreError):
    pass


class BookNotAvailable(ConflictError):
    """The book is currently on loan."""

    def __init__(self, book_id: str) -> None:
        super().__init__(f"book not available: {book_id}", key=book_id)


class UserAlreadyExists(ConflictError):
    def __init__(self, username: str) -> None:
        super().__init__(f"user already exists: {username}", key=username)


class BookAlreadyExists(ConflictError):
    """Another book already carries this ISBN."""

    def __init__(self, isbn: str) -> None:
        super().__init__(f"book with ISBN {isbn} already exists", key=isbn)


class StorageError(StoreError):
    """Backend or infrastructure failure (connection, I/O, unexpected constraint)."""
    pass
