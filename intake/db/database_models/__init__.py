"""Database data objects."""

from .user import UserDO

__all__ = ["UserDO"]
