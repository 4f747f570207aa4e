"""Pydantic schemas for book lending."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, model_validator


class LoanStatus(str, Enum):
    """Status of a loan record."""

    BORROWED = "borrowed"
    RETURNED = "returned"
    OVERDUE = "overdue"


class LoanRecordResponse(BaseModel):
    """Schema for loan record responses.

    ``status`` is always the value recomputed at read time, not the cached
    column.
    """

    id: int
    user_id: int
    book_id: int
    borrowed_at: datetime
    due_date: datetime
    returned_at: Optional[datetime]
    status: LoanStatus

    model_config = {"from_attributes": True}

    @model_validator(mode="after")
    def status_matches_return(self) -> "LoanRecordResponse":
        """Validate status is returned iff returned_at is set."""
        if (self.returned_at is not None) != (self.status == LoanStatus.RETURNED):
            raise ValueError("status must be 'returned' exactly when returned_at is set")
        return self


class LoanDetails(LoanRecordResponse):
    """Loan record joined with borrower and book for listings."""

    username: str
    title: str
    author: str
    days_overdue: int = 0


class LendingStats(BaseModel):
    """Overall lending statistics."""

    total_titles: int
    total_copies: int
    copies_on_loan: int
    open_loans: int
    overdue_loans: int
    returned_loans: int


class OverdueReport(BaseModel):
    """Report of overdue loans."""

    loans: list[LoanDetails]
    total_overdue: int
    oldest_overdue_days: int


class LedgerDiscrepancy(BaseModel):
    """A book whose open loan count disagrees with its copy counters."""

    book_id: int
    total_copies: int
    available_copies: int
    open_loans: int

    @property
    def expected_open_loans(self) -> int:
        return self.total_copies - self.available_copies
