"""Lending manager: borrow and return as single transactions."""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import func, select

from ..auth import Caller, require_admin
from ..db.models import Book, ceil_to_second, to_utc, utcnow
from ..db.schemas import BookCreate, BookResponse
from ..db.sqlite import Database, get_db
from ..errors import AlreadyReturned, Forbidden, RecordNotFound
from .ledger import InventoryLedger
from .models import LoanRecord
from .schemas import (
    LedgerDiscrepancy,
    LendingStats,
    LoanDetails,
    LoanRecordResponse,
    LoanStatus,
    OverdueReport,
)
from .store import LoanRecordStore

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("libraryloans.audit")


class LendingManager:
    """Manages borrow/return against the inventory ledger and loan records."""

    def __init__(
        self,
        db: Optional[Database] = None,
        loan_days: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize lending manager.

        Args:
            db: Database instance
            loan_days: Length of a loan in days (default: from config)
            clock: Source of the current time
        """
        self.db = db or get_db()
        if loan_days is None:
            from ..config import get_config

            loan_days = get_config().loan_days
        self.loan_period = timedelta(days=loan_days)
        self.clock = clock

    def _now(self, now: Optional[datetime] = None) -> datetime:
        return to_utc(now if now is not None else self.clock())

    @staticmethod
    def _to_response(record: LoanRecord, now: datetime) -> LoanRecordResponse:
        return LoanRecordResponse(
            id=record.id,
            user_id=record.user_id,
            book_id=record.book_id,
            borrowed_at=record.borrowed_at,
            due_date=record.due_date,
            returned_at=record.returned_at,
            status=record.status_at(now),
        )

    @staticmethod
    def _to_details(record: LoanRecord, now: datetime) -> LoanDetails:
        return LoanDetails(
            id=record.id,
            user_id=record.user_id,
            book_id=record.book_id,
            borrowed_at=record.borrowed_at,
            due_date=record.due_date,
            returned_at=record.returned_at,
            status=record.status_at(now),
            username=record.user.username,
            title=record.book.title,
            author=record.book.author,
            days_overdue=record.days_overdue(now),
        )

    # -------------------------------------------------------------------------
    # Borrow / Return
    # -------------------------------------------------------------------------

    def borrow(self, caller: Caller, book_id: int) -> LoanRecordResponse:
        """Borrow one copy of a book.

        Args:
            caller: Verified identity (any role)
            book_id: Book to borrow

        Returns:
            The new loan record

        Raises:
            BookNotFound: No such book
            NoCopiesAvailable: Every copy is on loan
        """
        now = self._now()
        with self.db.transaction() as session:
            InventoryLedger(session).reserve(book_id)
            record = LoanRecordStore(session, self.loan_period).create(
                caller.user_id, book_id, now
            )
            response = self._to_response(record, now)

        logger.info(
            "User %s borrowed book %s (record %s, due %s)",
            caller.user_id,
            book_id,
            response.id,
            response.due_date.isoformat(),
        )
        return response

    def return_book(self, caller: Caller, record_id: int) -> LoanRecordResponse:
        """Return a borrowed copy.

        Only the borrower may return a loan, unless the caller has override
        privilege. Override returns keep the record's original borrower and
        are written to the audit log.

        Args:
            caller: Verified identity
            record_id: Loan record to close

        Returns:
            The closed loan record

        Raises:
            RecordNotFound: No such record
            AlreadyReturned: The record was already closed
            Forbidden: The record belongs to someone else
        """
        now = self._now()
        with self.db.transaction() as session:
            store = LoanRecordStore(session, self.loan_period)

            record = store.find_open(record_id)
            if record is None:
                if store.get(record_id) is None:
                    raise RecordNotFound(record_id)
                raise AlreadyReturned(record_id)

            overridden = record.user_id != caller.user_id
            if overridden and not caller.can_override:
                raise Forbidden(
                    f"Loan record {record_id} does not belong to user {caller.user_id}"
                )

            closed = store.close(record_id, now)
            InventoryLedger(session).release(closed.book_id)
            response = self._to_response(closed, now)

        if overridden:
            audit_logger.info(
                "Override return: user %s (%s) closed record %s held by user %s",
                caller.user_id,
                caller.role.value,
                record_id,
                response.user_id,
            )
        logger.info(
            "User %s returned book %s (record %s)",
            caller.user_id,
            response.book_id,
            record_id,
        )
        return response

    # -------------------------------------------------------------------------
    # Projections
    # -------------------------------------------------------------------------

    def list_my_loans(
        self,
        caller: Caller,
        include_returned: bool = False,
        now: Optional[datetime] = None,
    ) -> list[LoanDetails]:
        """List the caller's loans, open only unless include_returned."""
        now = self._now(now)
        with self.db.get_session() as session:
            store = LoanRecordStore(session, self.loan_period)
            if include_returned:
                records = store.list_for_user(caller.user_id)
            else:
                records = store.list_open_for_user(caller.user_id)
            return [self._to_details(r, now) for r in records]

    def list_active(self, caller: Caller, now: Optional[datetime] = None) -> list[LoanDetails]:
        """List every open loan. Administrators only."""
        require_admin(caller)
        now = self._now(now)
        with self.db.get_session() as session:
            records = LoanRecordStore(session, self.loan_period).list_open()
            return [self._to_details(r, now) for r in records]

    def list_overdue(self, caller: Caller, now: Optional[datetime] = None) -> list[LoanDetails]:
        """List overdue loans and persist their overdue status. Administrators only."""
        require_admin(caller)
        now = self._now(now)
        with self.db.transaction() as session:
            records = LoanRecordStore(session, self.loan_period).list_overdue(now)
            details = [self._to_details(r, now) for r in records]

        if details:
            logger.debug("Marked %d loan records overdue as of %s", len(details), now.isoformat())
        return details

    def get_overdue_report(
        self, caller: Caller, now: Optional[datetime] = None
    ) -> OverdueReport:
        """Get report of overdue loans."""
        loans = self.list_overdue(caller, now)
        return OverdueReport(
            loans=loans,
            total_overdue=len(loans),
            oldest_overdue_days=max((loan.days_overdue for loan in loans), default=0),
        )

    def get_record(self, caller: Caller, record_id: int, now: Optional[datetime] = None) -> LoanDetails:
        """Get one loan record. Borrower or administrator only.

        Raises:
            RecordNotFound: No such record
            Forbidden: The record belongs to someone else
        """
        now = self._now(now)
        with self.db.get_session() as session:
            record = LoanRecordStore(session, self.loan_period).get(record_id)
            if record is None:
                raise RecordNotFound(record_id)
            if record.user_id != caller.user_id and not caller.is_admin:
                raise Forbidden(
                    f"Loan record {record_id} does not belong to user {caller.user_id}"
                )
            return self._to_details(record, now)

    # -------------------------------------------------------------------------
    # Inventory
    # -------------------------------------------------------------------------

    def add_book(self, caller: Caller, data: BookCreate) -> BookResponse:
        """Register a new title. Administrators only."""
        require_admin(caller)
        with self.db.transaction() as session:
            book = InventoryLedger(session).add_book(data)
            response = BookResponse.model_validate(book)

        logger.info("Added book %s with %d copies", response.id, response.total_copies)
        return response

    def set_total_copies(self, caller: Caller, book_id: int, total: int) -> BookResponse:
        """Change the number of copies owned. Administrators only.

        Raises:
            BookNotFound: No such book
            CopiesInCirculation: More copies are on loan than the new total
        """
        require_admin(caller)
        with self.db.transaction() as session:
            ledger = InventoryLedger(session)
            ledger.set_total_copies(book_id, total)
            response = BookResponse.model_validate(ledger.get_book(book_id))

        logger.info("Book %s now has %d copies", book_id, total)
        return response

    def get_book(self, book_id: int) -> Optional[BookResponse]:
        """Get a book's inventory counters."""
        with self.db.get_session() as session:
            book = InventoryLedger(session).get_book(book_id)
            return BookResponse.model_validate(book) if book else None

    def list_books(self) -> list[BookResponse]:
        """List every book with its inventory counters."""
        with self.db.get_session() as session:
            return [
                BookResponse.model_validate(b) for b in InventoryLedger(session).list_books()
            ]

    # -------------------------------------------------------------------------
    # Statistics and Audit
    # -------------------------------------------------------------------------

    def get_stats(self, now: Optional[datetime] = None) -> LendingStats:
        """Get overall lending statistics.

        Returns:
            LendingStats with counts
        """
        now = self._now(now)
        with self.db.get_session() as session:
            total_titles = session.execute(
                select(func.count()).select_from(Book)
            ).scalar() or 0

            total_copies = session.execute(
                select(func.coalesce(func.sum(Book.total_copies), 0))
            ).scalar() or 0

            copies_on_loan = session.execute(
                select(func.coalesce(func.sum(Book.total_copies - Book.available_copies), 0))
            ).scalar() or 0

            open_loans = session.execute(
                select(func.count()).where(LoanRecord.returned_at.is_(None))
            ).scalar() or 0

            overdue_loans = session.execute(
                select(func.count()).where(
                    LoanRecord.returned_at.is_(None),
                    LoanRecord.due_date < ceil_to_second(now),
                )
            ).scalar() or 0

            returned_loans = session.execute(
                select(func.count()).where(LoanRecord.status == LoanStatus.RETURNED.value)
            ).scalar() or 0

            return LendingStats(
                total_titles=total_titles,
                total_copies=total_copies,
                copies_on_loan=copies_on_loan,
                open_loans=open_loans,
                overdue_loans=overdue_loans,
                returned_loans=returned_loans,
            )

    def audit(self, book_id: Optional[int] = None) -> list[LedgerDiscrepancy]:
        """Check that every book's open loans equal total - available."""
        with self.db.get_session() as session:
            discrepancies = InventoryLedger(session).audit(book_id)

        for d in discrepancies:
            logger.error(
                "Ledger mismatch for book %s: total=%s available=%s open_loans=%s",
                d.book_id,
                d.total_copies,
                d.available_copies,
                d.open_loans,
            )
        return discrepancies
