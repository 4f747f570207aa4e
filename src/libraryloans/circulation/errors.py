"""Error taxonomy for lending operations.

Every error carries a stable ``code`` string and a distinct CLI exit code so
callers can tell "try a different book" apart from "you already returned
this" and "not your loan".
"""

from typing import Optional, Union


class LendingError(Exception):
    """Base exception for lending operations."""

    code = "lending_error"
    exit_code = 1

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.__class__.__doc__)


class NotFound(LendingError):
    """Referenced entity does not exist."""

    code = "not_found"
    exit_code = 2

    def __init__(self, entity: str, entity_id: object):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class BookNotFound(NotFound):
    """Referenced book does not exist."""

    def __init__(self, book_id: int):
        super().__init__("Book", book_id)


class RecordNotFound(NotFound):
    """Referenced loan record does not exist."""

    def __init__(self, record_id: int):
        super().__init__("Loan record", record_id)


class UnknownUser(NotFound):
    """Referenced user does not exist, by id or by username."""

    def __init__(self, user: Union[int, str]):
        super().__init__("User", user)


class NoCopiesAvailable(LendingError):
    """No copies of this book are available."""

    code = "no_copies_available"
    exit_code = 3

    def __init__(self, book_id: int):
        self.book_id = book_id
        super().__init__(f"No copies of book {book_id} are available")


class AlreadyReturned(LendingError):
    """Loan record has already been returned."""

    code = "already_returned"
    exit_code = 4

    def __init__(self, record_id: int):
        self.record_id = record_id
        super().__init__(f"Loan record {record_id} has already been returned")


class Forbidden(LendingError):
    """Caller is not allowed to perform this operation."""

    code = "forbidden"
    exit_code = 5


class CopiesInCirculation(LendingError):
    """Total copies cannot drop below the number currently on loan."""

    code = "copies_in_circulation"
    exit_code = 6

    def __init__(self, book_id: int, requested: int, on_loan: int):
        self.book_id = book_id
        self.requested = requested
        self.on_loan = on_loan
        super().__init__(
            f"Book {book_id} has {on_loan} copies on loan, cannot set total to {requested}"
        )


class InvariantViolation(LendingError):
    """Internal bookkeeping invariant would be broken."""

    code = "invariant_violation"
    exit_code = 70


class TransactionAborted(LendingError):
    """The persistence layer aborted the transaction; safe to retry."""

    code = "transaction_aborted"
    exit_code = 75
