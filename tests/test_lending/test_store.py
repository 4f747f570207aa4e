"""Tests for LoanRecordStore."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from libraryloans.circulation.errors import AlreadyReturned, RecordNotFound
from libraryloans.circulation.lending.models import LoanRecord
from libraryloans.circulation.lending.schemas import LoanStatus
from libraryloans.circulation.lending.store import LoanRecordStore

BORROWED_AT = datetime(2025, 1, 10, 9, 30, 0, tzinfo=timezone.utc)


@pytest.fixture
def record_id(db, user7, single_copy_book) -> int:
    """An open loan record."""
    with db.transaction() as session:
        record = LoanRecordStore(session).create(user7.user_id, single_copy_book, BORROWED_AT)
        return record.id


class TestCreate:
    """Tests for creating records."""

    def test_create_sets_due_date(self, db, user7, single_copy_book):
        """Test due date is borrowed_at plus fourteen days."""
        with db.transaction() as session:
            record = LoanRecordStore(session).create(user7.user_id, single_copy_book, BORROWED_AT)

            assert record.id is not None
            assert record.due_date == BORROWED_AT + timedelta(days=14)
            assert record.status == LoanStatus.BORROWED.value
            assert record.returned_at is None

    def test_create_normalizes_naive_and_microseconds(self, db, user7, single_copy_book):
        """Test naive timestamps are taken as UTC and stored to the second."""
        naive = datetime(2025, 1, 10, 9, 30, 0, 123456)

        with db.transaction() as session:
            record_id = LoanRecordStore(session).create(user7.user_id, single_copy_book, naive).id

        with db.get_session() as session:
            record = LoanRecordStore(session).get(record_id)
            assert record.borrowed_at == BORROWED_AT
            assert record.borrowed_at.tzinfo is not None

    def test_custom_loan_period(self, db, user7, single_copy_book):
        """Test the loan period can be overridden."""
        with db.transaction() as session:
            record = LoanRecordStore(session, timedelta(days=3)).create(
                user7.user_id, single_copy_book, BORROWED_AT
            )
            assert record.due_date == BORROWED_AT + timedelta(days=3)

    def test_create_unknown_user(self, db, single_copy_book):
        """Test foreign keys reject records for missing users."""
        from sqlalchemy.exc import IntegrityError

        with pytest.raises(IntegrityError):
            with db.transaction() as session:
                LoanRecordStore(session).create(404, single_copy_book, BORROWED_AT)


class TestClose:
    """Tests for closing records."""

    def test_find_open(self, db, record_id):
        """Test find_open returns an unreturned record."""
        with db.get_session() as session:
            record = LoanRecordStore(session).find_open(record_id)
            assert record is not None
            assert record.is_open

    def test_close(self, db, record_id):
        """Test close sets returned_at and status."""
        returned_at = BORROWED_AT + timedelta(days=2)

        with db.transaction() as session:
            record = LoanRecordStore(session).close(record_id, returned_at)
            assert record.returned_at == returned_at
            assert record.status == LoanStatus.RETURNED.value

        with db.get_session() as session:
            assert LoanRecordStore(session).find_open(record_id) is None

    def test_close_twice(self, db, record_id):
        """Test a second close is rejected and returned_at is unchanged."""
        first = BORROWED_AT + timedelta(days=2)
        with db.transaction() as session:
            LoanRecordStore(session).close(record_id, first)

        with pytest.raises(AlreadyReturned):
            with db.transaction() as session:
                LoanRecordStore(session).close(record_id, first + timedelta(days=1))

        with db.get_session() as session:
            assert LoanRecordStore(session).get(record_id).returned_at == first

    def test_close_missing(self, db):
        """Test closing a record that never existed."""
        with pytest.raises(RecordNotFound):
            with db.transaction() as session:
                LoanRecordStore(session).close(31337, BORROWED_AT)


class TestProjections:
    """Tests for list projections."""

    def test_list_open_for_user(self, db, user7, user9, make_book):
        """Test only the user's open records are listed, newest first."""
        book_id = make_book(total=5)
        with db.transaction() as session:
            store = LoanRecordStore(session)
            older = store.create(user7.user_id, book_id, BORROWED_AT).id
            newer = store.create(user7.user_id, book_id, BORROWED_AT + timedelta(hours=1)).id
            closed = store.create(user7.user_id, book_id, BORROWED_AT).id
            store.create(user9.user_id, book_id, BORROWED_AT)
            store.close(closed, BORROWED_AT + timedelta(days=1))

        with db.get_session() as session:
            records = LoanRecordStore(session).list_open_for_user(user7.user_id)
            assert [r.id for r in records] == [newer, older]

    def test_list_overdue_filters_and_persists(self, db, user7, make_book):
        """Test list_overdue returns only past-due open records and caches overdue."""
        book_id = make_book(total=3)
        with db.transaction() as session:
            store = LoanRecordStore(session)
            late = store.create(user7.user_id, book_id, BORROWED_AT).id
            on_time = store.create(user7.user_id, book_id, BORROWED_AT + timedelta(days=10)).id

        now = BORROWED_AT + timedelta(days=20)
        with db.transaction() as session:
            records = LoanRecordStore(session).list_overdue(now)
            assert [r.id for r in records] == [late]

        with db.get_session() as session:
            statuses = dict(session.execute(select(LoanRecord.id, LoanRecord.status)).all())
        assert statuses[late] == "overdue"
        assert statuses[on_time] == "borrowed"

    def test_list_overdue_excludes_returned(self, db, record_id):
        """Test returned records are never listed overdue."""
        with db.transaction() as session:
            LoanRecordStore(session).close(record_id, BORROWED_AT + timedelta(days=30))

        with db.transaction() as session:
            assert LoanRecordStore(session).list_overdue(BORROWED_AT + timedelta(days=60)) == []
