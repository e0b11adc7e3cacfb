import logging
import uuid
from typing import Dict, List, Optional

from library_store.errors import (
    BookAlreadyExists,
    BookNotAvailable,
    BookNotFound,
    LoanNotFound,
    StorageError,
    UserAlreadyExists,
    UserNotFound,
)
from library_store.models import Book, Loan, LoanWithBook, User, deleted_book_placeholder, utcnow
from library_store.storage.locks import ReadWriteLock

logger = logging.getLogger(__name__)


def _new_id() -> str:
    return str(uuid.uuid4())


def _contains(text: str, needle: str) -> bool:
    return needle.lower() in (text or "").lower()


class MemoryStore:
    """Map-backed store for tests and ephemeral deployments.

    One reader/writer lock covers all three collections. Composite operations
    (``create_loan``, ``return_book``) validate everything before the first
    mutation and run start to finish under the write lock, so a failure
    leaves state untouched and no reader sees a half-applied change.
    Private helpers assume the caller already holds the lock.
    """

    def __init__(self) -> None:
        self._books: Dict[str, Book] = {}
        self._loans: Dict[str, Loan] = {}
        self._users: Dict[str, User] = {}
        self._lock = ReadWriteLock()

    # ------------------------- Books ------------------------- #
    def create_book(self, draft: Book) -> Book:
        now = utcnow()
        with self._lock.write_locked():
            self._check_isbn_free(draft.isbn)
            book = draft.model_copy(update={
                "id": _new_id(),
                "created_at": now,
                "updated_at": now,
                "available": True,
            })
            self._books[book.id] = book
            return book.model_copy()

    def get_books(self) -> List[Book]:
        with self._lock.read_locked():
            return [book.model_copy() for book in self._books.values()]

    def get_book_by_id(self, book_id: str) -> Book:
        with self._lock.read_locked():
            return self._get_book(book_id).model_copy()

    def update_book(self, book_id: str, draft: Book) -> Book:
        with self._lock.write_locked():
            existing = self._get_book(book_id)
            self._check_isbn_free(draft.isbn, exclude_id=book_id)
            book = draft.model_copy(update={
                "id": book_id,
                "created_at": existing.created_at,
                "updated_at": utcnow(),
            })
            self._books[book_id] = book
            return book.model_copy()

    def delete_book(self, book_id: str) -> None:
        with self._lock.write_locked():
            self._get_book(book_id)
            # Loans referencing the book are kept as history
            del self._books[book_id]

    def search_books(
        self,
        title: str = "",
        author: str = "",
        genre: str = "",
        available: Optional[bool] = None,
    ) -> List[Book]:
        with self._lock.read_locked():
            results = []
            for book in self._books.values():
                if title and not _contains(book.title, title):
                    continue
                if author and not _contains(book.author, author):
                    continue
                if genre and not _contains(book.genre, genre):
                    continue
                if available is not None and book.available != available:
                    continue
                results.append(book.model_copy())
            return results

    def update_book_availability(self, book_id: str, available: bool) -> None:
        with self._lock.write_locked():
            book = self._get_book(book_id)
            self._books[book_id] = book.model_copy(update={"available": available, "updated_at": utcnow()})

    # ------------------------- Loans ------------------------- #
    def create_loan(self, draft: Loan) -> Loan:
        with self._lock.write_locked():
            book = self._get_book(draft.book_id)
            if not book.available:
                logger.debug(f"Loan rejected, book {book.id} is on loan")
                raise BookNotAvailable(book.id)

            now = utcnow()
            loan = draft.model_copy(update={
                "id": _new_id(),
                "loan_date": now,
                "return_date": None,
                "returned": False,
            })
            self._loans[loan.id] = loan
            self._books[book.id] = book.model_copy(update={"available": False, "updated_at": now})
            logger.info(f"Loan {loan.id} created for book {book.id} ({loan.user})")
            return loan.model_copy()

    def return_book(self, loan_id: str) -> None:
        with self._lock.write_locked():
            loan = self._loans.get(loan_id)
            if loan is None:
                raise LoanNotFound(loan_id)
            if loan.returned:
                return

            now = utcnow()
            self._loans[loan_id] = loan.model_copy(update={"returned": True, "return_date": now})
            book = self._books.get(loan.book_id)
            if book is not None:
                self._books[book.id] = book.model_copy(update={"available": True, "updated_at": now})
            logger.info(f"Loan {loan_id} returned")

    def get_loans(self) -> List[Loan]:
        with self._lock.read_locked():
            return self._sorted_loans(self._loans.values())

    def get_active_loans(self) -> List[Loan]:
        with self._lock.read_locked():
            return self._sorted_loans(loan for loan in self._loans.values() if not loan.returned)

    def get_loan_by_id(self, loan_id: str) -> Loan:
        with self._lock.read_locked():
            loan = self._loans.get(loan_id)
            if loan is None:
                raise LoanNotFound(loan_id)
            return loan.model_copy()

    def get_loans_with_books(self, active_only: bool = False) -> List[LoanWithBook]:
        with self._lock.read_locked():
            loans = self._loans.values()
            if active_only:
                loans = [loan for loan in loans if not loan.returned]
            joined = []
            for loan in self._sorted_loans(loans):
                book = self._books.get(loan.book_id)
                book = book.model_copy() if book is not None else deleted_book_placeholder(loan)
                joined.append(LoanWithBook(**loan.model_dump(), book=book))
            return joined

    # ------------------------- Users ------------------------- #
    def create_user(self, draft: User) -> User:
        now = utcnow()
        with self._lock.write_locked():
            if self._find_user(draft.username) is not None:
                logger.debug(f"User {draft.username!r} already exists")
                raise UserAlreadyExists(draft.username)
            user_id = draft.id or _new_id()
            if user_id in self._users:
                raise StorageError(f"user id already in use: {user_id}", key=user_id)
            user = draft.model_copy(update={"id": user_id, "created_at": now, "updated_at": now})
            self._users[user_id] = user
            return user.model_copy()

    def get_user_by_username(self, username: str) -> User:
        with self._lock.read_locked():
            user = self._find_user(username)
            if user is None:
                raise UserNotFound(username)
            return user.model_copy()

    def get_user_by_id(self, user_id: str) -> User:
        with self._lock.read_locked():
            return self._get_user(user_id).model_copy()

    def update_user(self, user_id: str, draft: User) -> User:
        with self._lock.write_locked():
            existing = self._get_user(user_id)
            other = self._find_user(draft.username)
            if other is not None and other.id != user_id:
                raise UserAlreadyExists(draft.username)
            user = draft.model_copy(update={
                "id": user_id,
                "created_at": existing.created_at,
                "updated_at": utcnow(),
            })
            self._users[user_id] = user
            return user.model_copy()

    def delete_user(self, user_id: str) -> None:
        with self._lock.write_locked():
            self._get_user(user_id)
            del self._users[user_id]

    def close(self) -> None:
        """Nothing to release; kept for parity with the persistent backend."""
        return None

    # ------------------------- Helpers (lock held) ------------------------- #
    def _get_book(self, book_id: str) -> Book:
        book = self._books.get(book_id)
        if book is None:
            raise BookNotFound(book_id)
        return book

    def _get_user(self, user_id: str) -> User:
        user = self._users.get(user_id)
        if user is None:
            raise UserNotFound(user_id)
        return user

    def _find_user(self, username: str) -> Optional[User]:
        for user in self._users.values():
            if user.username == username:
                return user
        return None

    def _check_isbn_free(self, isbn: str, exclude_id: Optional[str] = None) -> None:
        if not isbn:
            return
        for book in self._books.values():
            if book.isbn == isbn and book.id != exclude_id:
                raise BookAlreadyExists(isbn)

    @staticmethod
    def _sorted_loans(loans) -> List[Loan]:
        ordered = sorted(loans, key=lambda loan: loan.loan_date, reverse=True)
        return [loan.model_copy() for loan in ordered]
