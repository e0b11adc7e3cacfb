"""The store contract every backend satisfies.

Backends do not inherit from :class:`Store`; they match it structurally and
are picked once at startup by :func:`library_store.storage.create_store`.

Rules shared by all implementations:

- Mutating calls take a draft model and never keep a reference to it.
  Fields the store owns (ids, timestamps, ``available``, ``returned``) are
  overwritten.
- Every returned model is a fresh copy; mutating it never changes stored state.
- Missing records raise the matching ``NotFoundError`` subclass from
  :mod:`library_store.errors`; they are never returned as ``None``.
- A book's ``available`` flag is False exactly while an unreturned loan
  references it. Only ``create_loan`` and ``return_book`` move it, apart
  from the explicit ``update_book``/``update_book_availability`` override.
"""

from typing import List, Optional, Protocol

from library_store.models import Book, Loan, LoanWithBook, User


class Store(Protocol):
    # books
    def create_book(self, draft: Book) -> Book:
        ...

    def get_books(self) -> List[Book]:
        ...

    def get_book_by_id(self, book_id: str) -> Book:
        ...

    def update_book(self, book_id: str, draft: Book) -> Book:
        ...

    def delete_book(self, book_id: str) -> None:
        ...

    def search_books(
        self,
        title: str = "",
        author: str = "",
        genre: str = "",
        available: Optional[bool] = None,
    ) -> List[Book]:
        ...

    def update_book_availability(self, book_id: str, available: bool) -> None:
        ...

    # loans
    def create_loan(self, draft: Loan) -> Loan:
        ...

    def return_book(self, loan_id: str) -> None:
        ...

    def get_loans(self) -> List[Loan]:
        ...

    def get_active_loans(self) -> List[Loan]:
        ...

    def get_loan_by_id(self, loan_id: str) -> Loan:
        ...

    def get_loans_with_books(self, active_only: bool = False) -> List[LoanWithBook]:
        ...

    # users
    def create_user(self, draft: User) -> User:
        ...

    def get_user_by_username(self, username: str) -> User:
        ...

    def get_user_by_id(self, user_id: str) -> User:
        ...

    def update_user(self, user_id: str, draft: User) -> User:
        ...

    def delete_user(self, user_id: str) -> None:
        ...

    def close(self) -> None:
        ...
