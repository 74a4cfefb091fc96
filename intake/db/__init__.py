"""Database package - connection, models, and repositories."""

from .connection import DatabaseConnection
from .repositories.user import UserRepository

__all__ = [
    "DatabaseConnection",
    "UserRepository",
]
