"""SQLite database operations.

Handles database connection, session management, write transactions and
the handful of user-directory operations the lending engine relies on.
"""

import logging
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional

from sqlalchemy import create_engine, event, select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..errors import TransactionAborted
from .models import Base, User
from .schemas import UserCreate

logger = logging.getLogger(__name__)

# Transaction modes passed through the "begin" hook
BEGIN_DEFERRED = "DEFERRED"
BEGIN_IMMEDIATE = "IMMEDIATE"


def _is_abort(exc: OperationalError) -> bool:
    """Check if an OperationalError is a lock/busy abort rather than a schema problem."""
    message = str(exc.orig).lower()
    return "locked" in message or "busy" in message


class Database:
    """Database connection and transaction manager."""

    def __init__(self, db_path: Optional[str] = None, timeout: float = 30.0):
        """Initialize database connection.

        Args:
            db_path: Path to SQLite database file. If None, uses
                     LIBRARY_DB_PATH env var or default location.
            timeout: Seconds a writer waits for the database lock before
                     the transaction is aborted.
        """
        if db_path is None:
            db_path = os.environ.get(
                "LIBRARY_DB_PATH",
                str(Path.home() / ".libraryloans" / "library.db"),
            )

        self.db_path = Path(db_path)
        self._is_memory = str(db_path) == ":memory:"

        if not self._is_memory:
            self._ensure_directory()

        connect_args = {"check_same_thread": False, "timeout": timeout}

        # For in-memory databases, use StaticPool to reuse the same connection
        # This ensures all sessions share the same in-memory database
        if self._is_memory:
            self.engine = create_engine(
                "sqlite:///:memory:",
                echo=False,
                connect_args=connect_args,
                poolclass=StaticPool,
            )
        else:
            self.engine = create_engine(
                f"sqlite:///{self.db_path}",
                echo=False,
                connect_args=connect_args,
            )

        self._install_hooks()

        # Writers take the database lock when the transaction begins, so a
        # conditional update never races a concurrent writer.
        self._write_engine = self.engine.execution_options(begin_mode=BEGIN_IMMEDIATE)

        self.SessionLocal = sessionmaker(bind=self.engine, autocommit=False, autoflush=False)

    def _ensure_directory(self) -> None:
        """Ensure the database directory exists."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def _install_hooks(self) -> None:
        """Take over transaction control from pysqlite and enable foreign keys."""

        @event.listens_for(self.engine, "connect")
        def _on_connect(dbapi_connection, connection_record):
            # Let SQLAlchemy emit BEGIN itself
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys = ON")
            cursor.close()

        @event.listens_for(self.engine, "begin")
        def _on_begin(conn):
            mode = conn.get_execution_options().get("begin_mode", BEGIN_DEFERRED)
            conn.exec_driver_sql(f"BEGIN {mode}")

    def create_tables(self) -> None:
        """Create all database tables."""
        # Import lending models to register them with Base
        from ..lending.models import LoanRecord  # noqa: F401

        Base.metadata.create_all(self.engine)

    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        """Get a database session context manager."""
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @contextmanager
    def transaction(self) -> Generator[Session, None, None]:
        """Get a session whose transaction holds the write lock from the start.

        Commits on normal exit and rolls back on any exception. Lock
        timeouts and busy errors surface as TransactionAborted; the
        caller decides whether to retry.

        BEGIN IMMEDIATE takes SQLite's database-wide write lock, so write
        transactions run one at a time even when they touch different
        books. Borrows of unrelated titles queue behind each other for the
        length of one short transaction; they never fail because of each
        other unless the wait exceeds the configured timeout.
        """
        session = self.SessionLocal(bind=self._write_engine)
        try:
            yield session
            session.commit()
        except OperationalError as e:
            session.rollback()
            if not _is_abort(e):
                raise
            logger.warning("Transaction aborted by database: %s", e.orig)
            raise TransactionAborted(f"Transaction aborted: {e.orig}") from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # ========================================================================
    # User Operations
    # ========================================================================

    def create_user(self, user: UserCreate, session: Optional[Session] = None) -> User:
        """Create a user row."""

        def _create(s: Session) -> User:
            db_user = User(
                username=user.username,
                email=user.email,
                role=user.role.value,
            )
            s.add(db_user)
            s.flush()
            return db_user

        if session:
            return _create(session)
        else:
            try:
                with self.get_session() as s:
                    db_user = _create(s)
                    s.commit()
                    s.refresh(db_user)
                    s.expunge(db_user)
                    return db_user
            except IntegrityError as e:
                raise ValueError(f"User '{user.username}' or email already exists") from e

    def get_user(self, user_id: int, session: Optional[Session] = None) -> Optional[User]:
        """Get a user by ID."""

        def _get(s: Session) -> Optional[User]:
            return s.get(User, user_id)

        if session:
            return _get(session)
        else:
            with self.get_session() as s:
                user = _get(s)
                if user:
                    s.expunge(user)
                return user

    def get_user_by_username(
        self, username: str, session: Optional[Session] = None
    ) -> Optional[User]:
        """Get a user by username."""

        def _get(s: Session) -> Optional[User]:
            stmt = select(User).where(User.username == username)
            return s.execute(stmt).scalar_one_or_none()

        if session:
            return _get(session)
        else:
            with self.get_session() as s:
                user = _get(s)
                if user:
                    s.expunge(user)
                return user

    def list_users(self, session: Optional[Session] = None) -> list[User]:
        """Get all users, oldest first."""

        def _get(s: Session) -> list[User]:
            stmt = select(User).order_by(User.id)
            return list(s.execute(stmt).scalars().all())

        if session:
            return _get(session)
        else:
            with self.get_session() as s:
                users = _get(s)
                for user in users:
                    s.expunge(user)
                return users


# Global database instance
_db: Optional[Database] = None


def get_db(db_path: Optional[str] = None) -> Database:
    """Get or create the global database instance."""
    global _db
    if _db is None:
        from ..config import get_config

        config = get_config()
        _db = Database(db_path or str(config.db_path), timeout=config.db_timeout)
        _db.create_tables()
    return _db


def reset_db() -> None:
    """Reset the global database instance. Used for testing."""
    global _db
    if _db is not None:
        _db.engine.dispose()
    _db = None
