"""Authorization gate: the boundary where verified identities enter.

The lending engine never checks credentials. It receives a ``Caller`` built
by a gate, and trusts the user id and role it carries. Token and session
handling live in front of the gate and are not part of this package.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from .db.schemas import UserRole
from .db.sqlite import Database, get_db
from .errors import Forbidden, UnknownUser


@dataclass(frozen=True)
class Caller:
    """A verified (user_id, role) pair."""

    user_id: int
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def can_override(self) -> bool:
        """Whether this caller may close loans held by other users."""
        return self.is_admin


def require_admin(caller: Caller) -> None:
    """Raise Forbidden unless the caller is an administrator."""
    if not caller.is_admin:
        raise Forbidden(f"User {caller.user_id} is not an administrator")


class AuthorizationGate(ABC):
    """Turns an already-authenticated user id into a Caller."""

    @abstractmethod
    def resolve(self, user_id: int) -> Caller:
        """Build the Caller for a user.

        Raises:
            UnknownUser: The user does not exist
        """
        pass


class UserDirectoryGate(AuthorizationGate):
    """Gate that reads roles from the users table.

    Roles always come from storage, never from what the client claims.
    """

    def __init__(self, db: Optional[Database] = None):
        self.db = db or get_db()

    def resolve(self, user_id: int) -> Caller:
        user = self.db.get_user(user_id)
        if user is None:
            raise UnknownUser(user_id)
        return Caller(user_id=user.id, role=UserRole(user.role))

    def resolve_username(self, username: str) -> Caller:
        """Build the Caller for a username."""
        user = self.db.get_user_by_username(username)
        if user is None:
            raise UnknownUser(username)
        return Caller(user_id=user.id, role=UserRole(user.role))
