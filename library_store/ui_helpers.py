import json
import os
from typing import Any, Dict, List

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from library_store.models import Book, Loan, LoanWithBook

# Environment variable holding the CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "LIBRARY_STORE_OUTPUT"
OUTPUT_MODES = {"plain", "json", "rich"}

_console = Console()


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in OUTPUT_MODES:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def _status(book: Book) -> str:
    return "available" if book.available else "on loan"


def print_books(books: List[Book]) -> None:
    """Print books in the current output mode.
    - plain: 'id - Title by Author [status]' lines, or 'No books found.'
    - json: JSON array of full book records
    - rich: Rich table
    """
    mode = get_output_mode()

    if mode == "json":
        print(json.dumps([b.to_dict() for b in books], ensure_ascii=False))
        return

    if not books:
        print("No books found.")
        return

    if mode == "rich":
        table = Table(title="📚 Books", show_lines=True, header_style="bold cyan")
        table.add_column("ID", style="magenta", no_wrap=True)
        table.add_column("Title", style="white")
        table.add_column("Author", style="white")
        table.add_column("ISBN", style="white")
        table.add_column("Status", style="green")
        for b in books:
            table.add_row(b.id, b.title, b.author, b.isbn, _status(b))
        _console.print(table)
    else:
        for b in books:
            print(f"{b.id} - {b.title} by {b.author} [{_status(b)}]")


def print_book(book: Book) -> None:
    mode = get_output_mode()

    if mode == "json":
        print(json.dumps(book.to_dict(), ensure_ascii=False))
    elif mode == "rich":
        content = (
            f"[bold]Title:[/] {book.title}\n[bold]Author:[/] {book.author}\n"
            f"[bold]ISBN:[/] {book.isbn}\n[bold]Published:[/] {book.published}\n"
            f"[bold]Genre:[/] {book.genre}\n[bold]Status:[/] {_status(book)}"
        )
        _console.print(Panel.fit(content, title=f"📖 {book.id}", border_style="blue"))
    else:
        print(f"ID: {book.id}")
        print(f"Title: {book.title}")
        print(f"Author: {book.author}")
        print(f"ISBN: {book.isbn}")
        print(f"Published: {book.published}")
        print(f"Genre: {book.genre}")
        print(f"Status: {_status(book)}")


def print_loans(loans: List[Loan]) -> None:
    """Print loans; LoanWithBook entries also show the book title."""
    mode = get_output_mode()

    if mode == "json":
        print(json.dumps([loan.to_dict() for loan in loans], ensure_ascii=False))
        return

    if not loans:
        print("No loans found.")
        return

    def describe(loan: Loan) -> str:
        if isinstance(loan, LoanWithBook):
            return loan.book.title
        return loan.book_id

    if mode == "rich":
        table = Table(title="🔖 Loans", show_lines=True, header_style="bold cyan")
        table.add_column("ID", style="magenta", no_wrap=True)
        table.add_column("Book", style="white")
        table.add_column("User", style="white")
        table.add_column("Loaned", style="white")
        table.add_column("Status", style="green")
        for loan in loans:
            table.add_row(
                loan.id,
                describe(loan),
                loan.user,
                loan.loan_date.isoformat() if loan.loan_date else "",
                "returned" if loan.returned else "active",
            )
        _console.print(table)
    else:
        for loan in loans:
            status = "returned" if loan.returned else "active"
            print(f"{loan.id} - {describe(loan)} to {loan.user} [{status}]")


def print_summary(stats: Dict[str, Any]) -> None:
    mode = get_output_mode()

    if mode == "json":
        print(json.dumps(stats, ensure_ascii=False))
    elif mode == "rich":
        content = "\n".join(f"[bold]{key.replace('_', ' ').title()}:[/] {value}" for key, value in stats.items())
        _console.print(Panel.fit(content, title="📊 Library", border_style="blue"))
    else:
        for key, value in stats.items():
            print(f"{key.replace('_', ' ').title()}: {value}")
