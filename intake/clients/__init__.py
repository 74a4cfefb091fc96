"""Model-calling clients."""

from .base import BaseModelClient
from .claude import ClaudeCliClient

__all__ = ["BaseModelClient", "ClaudeCliClient"]
