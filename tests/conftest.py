"""Pytest configuration and shared fixtures.

This module provides fixtures for testing libraryloans, including
temporary databases, seeded users and books, and a controllable clock.
"""

import os
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Generator, Optional
from uuid import uuid4

import pytest

from libraryloans.circulation.auth import Caller
from libraryloans.circulation.config import reset_config
from libraryloans.circulation.db.models import Book, User
from libraryloans.circulation.db.schemas import UserRole
from libraryloans.circulation.db.sqlite import Database, reset_db
from libraryloans.circulation.lending.manager import LendingManager


# ============================================================================
# Clock
# ============================================================================


class FakeClock:
    """A settable clock for LendingManager."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


NOW = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock() -> FakeClock:
    """Clock fixed at NOW."""
    return FakeClock(NOW)


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture(scope="function")
def temp_db_path() -> Generator[Path, None, None]:
    """Create a temporary database file path."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = Path(f.name)
    yield db_path
    # Cleanup
    if db_path.exists():
        db_path.unlink()


@pytest.fixture(scope="function")
def db(temp_db_path: Path) -> Generator[Database, None, None]:
    """Create a file-backed test database instance."""
    # Reset any global state
    reset_db()
    reset_config()

    # Set environment variable for test database
    os.environ["LIBRARY_DB_PATH"] = str(temp_db_path)

    database = Database(str(temp_db_path))
    database.create_tables()
    yield database

    # Cleanup
    database.engine.dispose()
    reset_db()
    reset_config()
    if "LIBRARY_DB_PATH" in os.environ:
        del os.environ["LIBRARY_DB_PATH"]


@pytest.fixture
def memory_db() -> Database:
    """Create an in-memory database for testing."""
    database = Database(":memory:")
    database.create_tables()
    return database


# ============================================================================
# Sample Data Fixtures
# ============================================================================


def _add_user(db: Database, user_id: int, role: UserRole = UserRole.LENDER) -> Caller:
    with db.get_session() as session:
        session.add(
            User(
                id=user_id,
                username=f"user{user_id}",
                email=f"user{user_id}@example.com",
                role=role.value,
            )
        )
    return Caller(user_id=user_id, role=role)


def _add_book(db: Database, total: int = 1, available: Optional[int] = None) -> int:
    with db.get_session() as session:
        book = Book(
            title="Test Book",
            author="Test Author",
            isbn=uuid4().hex[:13],
            total_copies=total,
            available_copies=total if available is None else available,
        )
        session.add(book)
        session.flush()
        book_id = book.id
    return book_id


@pytest.fixture
def make_user(db: Database) -> Callable[..., Caller]:
    """Factory inserting a user with a fixed id and returning its Caller."""
    return lambda user_id, role=UserRole.LENDER: _add_user(db, user_id, role)


@pytest.fixture
def make_book(db: Database) -> Callable[..., int]:
    """Factory inserting a book row directly and returning its id."""
    return lambda total=1, available=None: _add_book(db, total, available)


@pytest.fixture
def fetch_book(db: Database) -> Callable[[int], Book]:
    """Read a book's current row in a fresh session."""

    def _fetch(book_id: int) -> Book:
        with db.get_session() as session:
            book = session.get(Book, book_id)
            session.expunge(book)
        return book

    return _fetch


@pytest.fixture
def user7(db: Database) -> Caller:
    return _add_user(db, 7)


@pytest.fixture
def user9(db: Database) -> Caller:
    return _add_user(db, 9)


@pytest.fixture
def admin(db: Database) -> Caller:
    return _add_user(db, 1, UserRole.ADMIN)


@pytest.fixture
def single_copy_book(db: Database) -> int:
    """Book with total_copies=1, available_copies=1."""
    return _add_book(db, total=1)


@pytest.fixture
def manager(db: Database, clock: FakeClock) -> LendingManager:
    """Create a LendingManager with test database and fixed clock."""
    return LendingManager(db, loan_days=14, clock=clock)
