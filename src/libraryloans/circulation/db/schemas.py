"""Pydantic schemas for data validation.

These schemas validate data entering the inventory (stock intake, user
seeding) and shape book records for output.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator


class UserRole(str, Enum):
    """Role supplied with every verified identity."""

    ADMIN = "admin"
    LENDER = "lender"


# ============================================================================
# User Schemas
# ============================================================================


class UserCreate(BaseModel):
    """Schema for seeding a user row."""

    username: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., min_length=3, max_length=200)
    role: UserRole = UserRole.LENDER


# ============================================================================
# Book Schemas
# ============================================================================


class BookCreate(BaseModel):
    """Schema for stock intake of a new title."""

    title: str = Field(..., min_length=1, description="Book title")
    author: str = Field(..., min_length=1, description="Primary author")
    isbn: str = Field(..., min_length=1, max_length=17)
    publication_year: Optional[int] = None
    genre: Optional[str] = None
    total_copies: int = Field(..., ge=0, description="Copies owned")


class BookResponse(BaseModel):
    """Schema for book responses."""

    id: int
    title: str
    author: str
    isbn: str
    publication_year: Optional[int]
    genre: Optional[str]
    total_copies: int
    available_copies: int
    created_at: datetime

    model_config = {"from_attributes": True}

    @model_validator(mode="after")
    def copies_in_range(self) -> "BookResponse":
        """Validate 0 <= available_copies <= total_copies."""
        if not 0 <= self.available_copies <= self.total_copies:
            raise ValueError("available_copies must be between 0 and total_copies")
        return self

    @property
    def on_loan(self) -> int:
        """Copies currently lent out."""
        return self.total_copies - self.available_copies
