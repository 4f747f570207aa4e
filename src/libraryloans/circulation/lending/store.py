"""Loan record store: create, look up and close loan records."""

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session, joinedload

from ..db.models import as_utc, ceil_to_second
from ..errors import AlreadyReturned, RecordNotFound
from .models import LOAN_PERIOD, LoanRecord
from .schemas import LoanStatus


class LoanRecordStore:
    """Loan record operations bound to one session."""

    def __init__(self, session: Session, loan_period: timedelta = LOAN_PERIOD):
        self.session = session
        self.loan_period = loan_period

    def _select(self):
        return select(LoanRecord).options(
            joinedload(LoanRecord.user), joinedload(LoanRecord.book)
        )

    def create(self, user_id: int, book_id: int, borrowed_at: datetime) -> LoanRecord:
        """Create an open loan record due one loan period after borrowed_at."""
        borrowed_at = as_utc(borrowed_at)
        record = LoanRecord(
            user_id=user_id,
            book_id=book_id,
            borrowed_at=borrowed_at,
            due_date=borrowed_at + self.loan_period,
            status=LoanStatus.BORROWED.value,
        )
        self.session.add(record)
        self.session.flush()
        return record

    def get(self, record_id: int) -> Optional[LoanRecord]:
        """Get a record by ID, open or closed."""
        stmt = (
            self._select()
            .where(LoanRecord.id == record_id)
            .execution_options(populate_existing=True)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def find_open(self, record_id: int) -> Optional[LoanRecord]:
        """Get a record only if it has not been returned."""
        stmt = (
            self._select()
            .where(LoanRecord.id == record_id, LoanRecord.returned_at.is_(None))
            .execution_options(populate_existing=True)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def close(self, record_id: int, returned_at: datetime) -> LoanRecord:
        """Mark a record returned.

        The update only matches a record with no returned_at, so a record
        can be closed at most once.

        Raises:
            RecordNotFound: No such record
            AlreadyReturned: The record was closed before
        """
        stmt = (
            update(LoanRecord)
            .where(LoanRecord.id == record_id, LoanRecord.returned_at.is_(None))
            .values(returned_at=as_utc(returned_at), status=LoanStatus.RETURNED.value)
            .execution_options(synchronize_session=False)
        )
        if self.session.execute(stmt).rowcount != 1:
            if self.get(record_id) is None:
                raise RecordNotFound(record_id)
            raise AlreadyReturned(record_id)

        return self.get(record_id)

    # -------------------------------------------------------------------------
    # Projections
    # -------------------------------------------------------------------------

    def list_open_for_user(self, user_id: int) -> list[LoanRecord]:
        """Open loans held by a user, most recent first."""
        stmt = (
            self._select()
            .where(LoanRecord.user_id == user_id, LoanRecord.returned_at.is_(None))
            .order_by(LoanRecord.borrowed_at.desc(), LoanRecord.id.desc())
        )
        return list(self.session.execute(stmt).scalars().unique().all())

    def list_for_user(self, user_id: int) -> list[LoanRecord]:
        """Every loan a user has held, most recent first."""
        stmt = (
            self._select()
            .where(LoanRecord.user_id == user_id)
            .order_by(LoanRecord.borrowed_at.desc(), LoanRecord.id.desc())
        )
        return list(self.session.execute(stmt).scalars().unique().all())

    def list_open(self) -> list[LoanRecord]:
        """All open loans, most recent first."""
        stmt = (
            self._select()
            .where(LoanRecord.returned_at.is_(None))
            .order_by(LoanRecord.borrowed_at.desc(), LoanRecord.id.desc())
        )
        return list(self.session.execute(stmt).scalars().unique().all())

    def list_overdue(self, now: datetime) -> list[LoanRecord]:
        """Open loans past their due date, oldest due first.

        Side effect: the cached status of every listed record is set to
        overdue. The write lands when the surrounding transaction commits.
        """
        stmt = (
            self._select()
            .where(LoanRecord.returned_at.is_(None), LoanRecord.due_date < ceil_to_second(now))
            .order_by(LoanRecord.due_date, LoanRecord.id)
        )
        records = list(self.session.execute(stmt).scalars().unique().all())
        for record in records:
            if record.status != LoanStatus.OVERDUE.value:
                record.status = LoanStatus.OVERDUE.value
        self.session.flush()
        return records
