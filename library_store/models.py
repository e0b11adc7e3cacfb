from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel


def utcnow() -> datetime:
    """Timezone-aware UTC timestamp used for every store-controlled field."""
    return datetime.now(timezone.utc)


class Book(BaseModel):
    """A lendable title in the catalog.

    ``id``, ``created_at``, ``updated_at`` and ``available`` are owned by the
    store: whatever a draft carries for them is overwritten on create.
    """

    id: str = ""
    title: str = ""
    author: str = ""
    isbn: str = ""
    published: int = 0
    genre: str = ""
    description: str = ""
    available: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} by {self.author} (ISBN: {self.isbn})"

    def to_dict(self) -> dict:
        return self.model_dump(mode="json")


class Loan(BaseModel):
    """One borrowing event. ``user`` is a free-text borrower name, not a User id."""

    id: str = ""
    book_id: str = ""
    user: str = ""
    loan_date: Optional[datetime] = None
    return_date: Optional[datetime] = None
    returned: bool = False

    def to_dict(self) -> dict:
        data = self.model_dump(mode="json")
        # return_date is omitted until the loan is returned
        if data["return_date"] is None:
            del data["return_date"]
        return data


class User(BaseModel):
    id: str = ""
    username: str = ""
    password: str = ""
    role: str = "user"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        """Outward representation; the credential never leaves the store."""
        return self.model_dump(mode="json", exclude={"password"})


class LoanWithBook(Loan):
    """A loan joined with the book it references."""

    book: Book

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["book"] = self.book.to_dict()
        return data


DELETED_BOOK_ID = "DELETED"


def deleted_book_placeholder(loan: Loan) -> Book:
    """Stand-in for a book row that no longer exists, so loan history stays displayable."""
    return Book(
        id=DELETED_BOOK_ID,
        title="Book deleted",
        author="N/A",
        isbn="N/A",
        published=0,
        genre="N/A",
        description="This book has been deleted",
        available=False,
        created_at=loan.loan_date,
        updated_at=loan.loan_date,
    )
