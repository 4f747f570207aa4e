"""SQLAlchemy models for book lending.

Tables:
- lending_records: One row per borrow event, never deleted
"""

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import CheckConstraint, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..db.models import Base, Book, User, UTCDateTime, to_utc
from .schemas import LoanStatus

LOAN_PERIOD = timedelta(days=14)


def derive_status(
    returned_at: Optional[datetime],
    due_date: datetime,
    now: datetime,
) -> LoanStatus:
    """Compute the status of a loan at a point in time.

    Returned iff returned_at is set; otherwise overdue iff now is past the
    due date; otherwise borrowed. The persisted status column is only a
    cache of this value.
    """
    if returned_at is not None:
        return LoanStatus.RETURNED
    if to_utc(now) > to_utc(due_date):
        return LoanStatus.OVERDUE
    return LoanStatus.BORROWED


class LoanRecord(Base):
    """Loan record model - tracks one borrow event."""

    __tablename__ = "lending_records"
    __table_args__ = (
        CheckConstraint(
            "status IN ('borrowed', 'returned', 'overdue')",
            name="ck_lending_records_status",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=False, index=True
    )
    book_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("books.id"), nullable=False, index=True
    )

    # Dates - all immutable once set
    borrowed_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    due_date: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    returned_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime)

    # Cached, see derive_status
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=LoanStatus.BORROWED.value, index=True
    )

    # Relationships
    book: Mapped["Book"] = relationship("Book")
    user: Mapped["User"] = relationship("User")

    def __repr__(self) -> str:
        return f"<LoanRecord(id={self.id}, book_id={self.book_id}, user_id={self.user_id}, status={self.status})>"

    @property
    def is_open(self) -> bool:
        """Check if the loan has not been returned."""
        return self.returned_at is None

    def status_at(self, now: datetime) -> LoanStatus:
        """Status of this record at the given time."""
        return derive_status(self.returned_at, self.due_date, now)

    def days_overdue(self, now: datetime) -> int:
        """Whole days past the due date (0 if returned or not overdue)."""
        if self.status_at(now) != LoanStatus.OVERDUE:
            return 0
        return (to_utc(now) - to_utc(self.due_date)).days
