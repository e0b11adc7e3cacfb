from contextlib import contextmanager
from dataclasses import replace
from typing import Iterator, Optional

import typer

from library_store.bootstrap import authenticate, bootstrap
from library_store.config import configure_logging, settings
from library_store.errors import ConflictError, NotFoundError, StorageError
from library_store.models import Book, Loan
from library_store.storage import STORAGE_TYPES, Store, create_store
from library_store.ui_helpers import (
    get_output_mode,
    print_book,
    print_books,
    print_loans,
    print_summary,
    set_output_mode,
)

APP_NAME = "Library Store CLI"

EXIT_NOT_FOUND = 1
EXIT_CONFLICT = 2
EXIT_STORAGE = 3
EXIT_UNAUTHORIZED = 4

app = typer.Typer(help=APP_NAME)


@app.callback()
def _global_options(
    ctx: typer.Context,
    output: str = typer.Option(
        "plain",
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    ),
    storage: Optional[str] = typer.Option(
        None, "--storage", help=f"Storage backend: {' | '.join(STORAGE_TYPES)} (default: STORAGE_TYPE)"
    ),
    db_path: Optional[str] = typer.Option(None, "--db-path", help="SQLite database file (default: DB_PATH)"),
):
    """Global options (output mode, storage backend)."""
    set_output_mode(output)
    overrides = {}
    if storage:
        overrides["storage_type"] = storage
    if db_path:
        overrides["db_path"] = db_path
    config = replace(settings, **overrides)
    configure_logging(config.log_level)
    ctx.obj = {"settings": config, "store": None}


def _get_store(ctx: typer.Context) -> Store:
    """Open the store once per invocation; it is closed when the command finishes."""
    state = ctx.obj
    if state["store"] is None:
        try:
            state["store"] = create_store(state["settings"])
        except (StorageError, ValueError) as e:
            print(f"Could not open store: {e}")
            raise typer.Exit(code=EXIT_STORAGE)
        ctx.call_on_close(state["store"].close)
    return state["store"]


@contextmanager
def _handle_errors() -> Iterator[None]:
    try:
        yield
    except NotFoundError as e:
        print(f"Not found: {e}")
        raise typer.Exit(code=EXIT_NOT_FOUND)
    except ConflictError as e:
        print(f"Conflict: {e}")
        raise typer.Exit(code=EXIT_CONFLICT)
    except StorageError as e:
        print(f"Storage error: {e}")
        raise typer.Exit(code=EXIT_STORAGE)


@app.command("init")
def cli_init(ctx: typer.Context):
    """Seed the sample catalog (when empty) and ensure the admin user exists."""
    store = _get_store(ctx)
    with _handle_errors():
        before = len(store.get_books())
        admin = bootstrap(store, ctx.obj["settings"])
        books = store.get_books()
        active = store.get_active_loans()
    print_summary({
        "total_books": len(books),
        "sample_books_added": len(books) - before,
        "active_loans": len(active),
        "admin_user": admin.username,
    })


@app.command("books")
def cli_books(
    ctx: typer.Context,
    title: str = typer.Option("", "--title", "-t", help="Filter by title (substring)"),
    author: str = typer.Option("", "--author", "-a", help="Filter by author (substring)"),
    genre: str = typer.Option("", "--genre", "-g", help="Filter by genre (substring)"),
    available: Optional[bool] = typer.Option(
        None, "--available/--on-loan", help="Only available books, or only books on loan"
    ),
):
    """List books, or search them when any filter is given."""
    store = _get_store(ctx)
    with _handle_errors():
        if title or author or genre or available is not None:
            books = store.search_books(title=title, author=author, genre=genre, available=available)
        else:
            books = store.get_books()
    print_books(books)


@app.command("show")
def cli_show(ctx: typer.Context, book_id: str):
    """Show one book."""
    store = _get_store(ctx)
    with _handle_errors():
        book = store.get_book_by_id(book_id)
    print_book(book)


@app.command("add")
def cli_add(
    ctx: typer.Context,
    title: str,
    author: str,
    isbn: str = typer.Option("", "--isbn", help="ISBN (must be unique when given)"),
    published: int = typer.Option(0, "--published", help="Publication year"),
    genre: str = typer.Option("", "--genre"),
    description: str = typer.Option("", "--description"),
):
    """Add a book to the catalog."""
    store = _get_store(ctx)
    with _handle_errors():
        book = store.create_book(Book(
            title=title,
            author=author,
            isbn=isbn,
            published=published,
            genre=genre,
            description=description,
        ))
    if get_output_mode() == "plain":
        print(f"Added: {book.title} by {book.author} ({book.id})")
    else:
        print_book(book)


@app.command("remove")
def cli_remove(ctx: typer.Context, book_id: str):
    """Remove a book. Its loans are kept as history."""
    store = _get_store(ctx)
    with _handle_errors():
        store.delete_book(book_id)
    print(f"Book {book_id} has been removed.")


@app.command("borrow")
def cli_borrow(ctx: typer.Context, book_id: str, user: str):
    """Lend a book to a borrower."""
    store = _get_store(ctx)
    with _handle_errors():
        loan = store.create_loan(Loan(book_id=book_id, user=user))
    if get_output_mode() == "json":
        print_loans([loan])
    else:
        print(f"Loan {loan.id} created: book {loan.book_id} lent to {loan.user}")


@app.command("return")
def cli_return(ctx: typer.Context, loan_id: str):
    """Return a loaned book. Returning twice is harmless."""
    store = _get_store(ctx)
    with _handle_errors():
        store.return_book(loan_id)
    print(f"Loan {loan_id} returned.")


@app.command("loans")
def cli_loans(
    ctx: typer.Context,
    active: bool = typer.Option(False, "--active", help="Only loans not yet returned"),
    with_books: bool = typer.Option(False, "--with-books", help="Include the book of each loan"),
):
    """List loans, newest first."""
    store = _get_store(ctx)
    with _handle_errors():
        if with_books:
            loans = store.get_loans_with_books(active_only=active)
        elif active:
            loans = store.get_active_loans()
        else:
            loans = store.get_loans()
    print_loans(loans)


@app.command("login")
def cli_login(
    ctx: typer.Context,
    username: str,
    password: str = typer.Option(..., "--password", "-p", prompt=True, hide_input=True),
):
    """Check a username and password against the stored credential."""
    store = _get_store(ctx)
    with _handle_errors():
        user = authenticate(store, username, password)
    if user is None:
        print("Invalid credentials")
        raise typer.Exit(code=EXIT_UNAUTHORIZED)
    if get_output_mode() == "json":
        print_summary(user.to_dict())
    else:
        print(f"Authenticated as {user.username} ({user.role})")
