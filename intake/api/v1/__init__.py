"""API v1 package."""

from .conversations import router as conversations_router
from .tools import router as tools_router
from .users import router as users_router

__all__ = ["conversations_router", "tools_router", "users_router"]
