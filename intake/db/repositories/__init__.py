"""Repository layer for data access."""

from .user import UserRepository

__all__ = ["UserRepository"]
