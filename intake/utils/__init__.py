"""Utilities package."""

from .logger import get_app_logger, setup_logger, init_app_logger
from .keys import user_key, email_from_key

__all__ = [
    "get_app_logger",
    "setup_logger",
    "init_app_logger",
    "user_key",
    "email_from_key"
]
