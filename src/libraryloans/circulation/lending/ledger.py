"""Inventory ledger: copies owned vs. copies available per title.

Every mutation of ``available_copies`` is a single conditional UPDATE whose
affected-row count decides the outcome. Nothing here reads the counter and
then writes it back.
"""

import logging
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..db.models import Book
from ..db.schemas import BookCreate
from ..errors import (
    BookNotFound,
    CopiesInCirculation,
    InvariantViolation,
    NoCopiesAvailable,
)
from .models import LoanRecord
from .schemas import LedgerDiscrepancy

logger = logging.getLogger(__name__)


class InventoryLedger:
    """Copy bookkeeping bound to one session (and so one transaction)."""

    def __init__(self, session: Session):
        self.session = session

    def _exists(self, book_id: int) -> bool:
        stmt = select(Book.id).where(Book.id == book_id)
        return self.session.execute(stmt).scalar_one_or_none() is not None

    def _counts(self, book_id: int) -> Optional[tuple[int, int]]:
        stmt = select(Book.total_copies, Book.available_copies).where(Book.id == book_id)
        row = self.session.execute(stmt).one_or_none()
        return (row.total_copies, row.available_copies) if row else None

    # -------------------------------------------------------------------------
    # Lending
    # -------------------------------------------------------------------------

    def reserve(self, book_id: int) -> None:
        """Take one copy out of circulation.

        Raises:
            BookNotFound: No such book
            NoCopiesAvailable: available_copies was 0 at the moment of the update
        """
        stmt = (
            update(Book)
            .where(Book.id == book_id, Book.available_copies > 0)
            .values(available_copies=Book.available_copies - 1)
            .execution_options(synchronize_session=False)
        )
        if self.session.execute(stmt).rowcount == 1:
            return

        if not self._exists(book_id):
            raise BookNotFound(book_id)
        raise NoCopiesAvailable(book_id)

    def release(self, book_id: int) -> None:
        """Put one copy back into circulation.

        Raises:
            BookNotFound: No such book
            InvariantViolation: The copy count is already at total_copies
        """
        stmt = (
            update(Book)
            .where(Book.id == book_id, Book.available_copies < Book.total_copies)
            .values(available_copies=Book.available_copies + 1)
            .execution_options(synchronize_session=False)
        )
        if self.session.execute(stmt).rowcount == 1:
            return

        counts = self._counts(book_id)
        if counts is None:
            raise BookNotFound(book_id)
        logger.error(
            "Release of book %s would exceed total_copies (total=%s, available=%s)",
            book_id,
            *counts,
        )
        raise InvariantViolation(
            f"Release of book {book_id} would push available_copies above total_copies"
        )

    # -------------------------------------------------------------------------
    # Stock
    # -------------------------------------------------------------------------

    def add_book(self, data: BookCreate) -> Book:
        """Register a new title with all of its copies available."""
        book = Book(
            title=data.title,
            author=data.author,
            isbn=data.isbn,
            publication_year=data.publication_year,
            genre=data.genre,
            total_copies=data.total_copies,
            available_copies=data.total_copies,
        )
        self.session.add(book)
        try:
            self.session.flush()
        except IntegrityError as e:
            raise ValueError(f"A book with ISBN {data.isbn} already exists") from e
        self.session.refresh(book)
        return book

    def set_total_copies(self, book_id: int, total: int) -> None:
        """Change the number of copies owned.

        available_copies moves by the same delta, so copies on loan are
        unaffected.

        Raises:
            BookNotFound: No such book
            CopiesInCirculation: More copies are on loan than the new total
        """
        if total < 0:
            raise ValueError("total_copies must be non-negative")

        stmt = (
            update(Book)
            .where(
                Book.id == book_id,
                Book.total_copies - Book.available_copies <= total,
            )
            .values(
                total_copies=total,
                available_copies=Book.available_copies + (total - Book.total_copies),
            )
            .execution_options(synchronize_session=False)
        )
        if self.session.execute(stmt).rowcount == 1:
            return

        counts = self._counts(book_id)
        if counts is None:
            raise BookNotFound(book_id)
        total_copies, available_copies = counts
        raise CopiesInCirculation(book_id, total, total_copies - available_copies)

    def get_book(self, book_id: int) -> Optional[Book]:
        stmt = (
            select(Book)
            .where(Book.id == book_id)
            .execution_options(populate_existing=True)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def list_books(self) -> list[Book]:
        stmt = select(Book).order_by(Book.title).execution_options(populate_existing=True)
        return list(self.session.execute(stmt).scalars().all())

    # -------------------------------------------------------------------------
    # Audit
    # -------------------------------------------------------------------------

    def audit(self, book_id: Optional[int] = None) -> list[LedgerDiscrepancy]:
        """Find books whose counters disagree with their open loan records.

        A book is reported when available_copies leaves [0, total_copies]
        or when its open loan count differs from total - available.
        """
        open_loans = (
            select(func.count(LoanRecord.id))
            .where(LoanRecord.book_id == Book.id, LoanRecord.returned_at.is_(None))
            .correlate(Book)
            .scalar_subquery()
        )
        stmt = select(
            Book.id,
            Book.total_copies,
            Book.available_copies,
            open_loans.label("open_loans"),
        ).order_by(Book.id)
        if book_id is not None:
            stmt = stmt.where(Book.id == book_id)

        discrepancies = []
        for row in self.session.execute(stmt):
            in_range = 0 <= row.available_copies <= row.total_copies
            balanced = row.open_loans == row.total_copies - row.available_copies
            if not (in_range and balanced):
                discrepancies.append(
                    LedgerDiscrepancy(
                        book_id=row.id,
                        total_copies=row.total_copies,
                        available_copies=row.available_copies,
                        open_loans=row.open_loans,
                    )
                )
        return discrepancies
