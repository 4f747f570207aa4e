"""SQLAlchemy ORM models for the inventory database.

Tables:
- users: Verified identities that may hold loans
- books: Titles with copies owned vs. copies available
- lending_records: Individual loan records (see lending.models)
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from .schemas import UserRole


def utcnow() -> datetime:
    """Current UTC time at the one-second resolution used for storage."""
    return datetime.now(timezone.utc).replace(microsecond=0)


def to_utc(value: datetime) -> datetime:
    """Convert a datetime to aware UTC at full precision. Naive values are taken as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Normalize a datetime to aware UTC, whole seconds (truncated)."""
    return to_utc(value).replace(microsecond=0)


def ceil_to_second(value: datetime) -> datetime:
    """Round an instant up to the next whole second, in aware UTC.

    For a stored whole-second column ``col``, ``col < ceil_to_second(t)``
    holds exactly when ``col < t``.
    """
    value = to_utc(value)
    if value.microsecond:
        value = value.replace(microsecond=0) + timedelta(seconds=1)
    return value


class UTCDateTime(TypeDecorator):
    """Stores aware datetimes as naive UTC and hands them back aware.

    Values are truncated to whole seconds so that comparisons made in SQL
    agree with comparisons made in Python.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is None:
            return None
        return as_utc(value).replace(tzinfo=None)

    def process_result_value(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is None:
            return None
        return value.replace(tzinfo=timezone.utc)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class User(Base):
    """User model - referenced by loan records.

    Credentials live with the authentication service; this table only
    carries what the lending engine needs (identity and role).
    """

    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("role IN ('admin', 'lender')", name="ck_users_role"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    email: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)
    # "!" marks an account that cannot log in with a password
    password_hash: Mapped[str] = mapped_column(Text, nullable=False, default="!")
    role: Mapped[str] = mapped_column(String(20), nullable=False, default=UserRole.LENDER.value)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)

    def __repr__(self) -> str:
        return f"<User(id={self.id}, username='{self.username}', role={self.role})>"

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value


class Book(Base):
    """Book model - the lending-relevant subset of a catalogue entry."""

    __tablename__ = "books"
    __table_args__ = (
        CheckConstraint("total_copies >= 0", name="ck_books_total_nonnegative"),
        CheckConstraint("available_copies >= 0", name="ck_books_available_nonnegative"),
        CheckConstraint(
            "available_copies <= total_copies", name="ck_books_available_le_total"
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Catalogue fields (edited elsewhere)
    title: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    author: Mapped[str] = mapped_column(Text, nullable=False)
    isbn: Mapped[str] = mapped_column(String(17), unique=True, nullable=False)
    publication_year: Mapped[Optional[int]] = mapped_column(Integer)
    genre: Mapped[Optional[str]] = mapped_column(Text)

    # Inventory - only the ledger writes these
    total_copies: Mapped[int] = mapped_column(Integer, nullable=False)
    available_copies: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)

    def __repr__(self) -> str:
        return (
            f"<Book(id={self.id}, title='{self.title}', "
            f"available={self.available_copies}/{self.total_copies})>"
        )
