"""Database module for local SQLite storage."""

from .models import Base, Book, User
from .schemas import BookCreate, BookResponse, UserCreate, UserRole
from .sqlite import Database, get_db

__all__ = [
    "Base",
    "Book",
    "User",
    "BookCreate",
    "BookResponse",
    "UserCreate",
    "UserRole",
    "Database",
    "get_db",
]
