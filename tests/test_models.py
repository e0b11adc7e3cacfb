from datetime import timezone

from library_store.models import DELETED_BOOK_ID, Book, Loan, LoanWithBook, User, deleted_book_placeholder, utcnow


def test_book_defaults():
    book = Book(title="Dune", author="Frank Herbert")

    assert book.id == ""
    assert book.available is True
    assert book.published == 0
    assert book.created_at is None


def test_book_to_dict_is_json_ready():
    book = Book(id="b1", title="Dune", author="Frank Herbert", created_at=utcnow())

    data = book.to_dict()

    assert data["id"] == "b1"
    assert isinstance(data["created_at"], str)
    assert data["updated_at"] is None


def test_loan_to_dict_omits_missing_return_date():
    loan = Loan(id="l1", book_id="b1", user="alice", loan_date=utcnow())

    assert "return_date" not in loan.to_dict()

    returned = loan.model_copy(update={"returned": True, "return_date": utcnow()})
    assert "return_date" in returned.to_dict()


def test_user_to_dict_hides_password():
    user = User(id="u1", username="alice", password="secret")

    data = user.to_dict()

    assert "password" not in data
    assert data["role"] == "user"


def test_loan_with_book_nests_book():
    loan = Loan(id="l1", book_id="b1", user="alice", loan_date=utcnow())
    joined = LoanWithBook(**loan.model_dump(), book=Book(id="b1", title="Dune"))

    data = joined.to_dict()

    assert data["book"]["title"] == "Dune"
    assert data["user"] == "alice"


def test_deleted_book_placeholder():
    loan = Loan(id="l1", book_id="gone", user="alice", loan_date=utcnow())

    book = deleted_book_placeholder(loan)

    assert book.id == DELETED_BOOK_ID
    assert book.title == "Book deleted"
    assert book.author == "N/A"
    assert book.available is False
    assert book.created_at == loan.loan_date == book.updated_at


def test_utcnow_is_aware():
    assert utcnow().tzinfo == timezone.utc
