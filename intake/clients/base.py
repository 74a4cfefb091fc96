"""Model client abstract base class."""

from abc import ABC, abstractmethod
from typing import Any, Dict, List


class BaseModelClient(ABC):
    """Interface of the language-model collaborator.

    Both calls may be slow and may fail. Implementations raise
    ``ExternalCallError`` on failure and never retry.
    """

    @abstractmethod
    async def send_turn(self, history: List[Dict[str, Any]], system_context: str) -> str:
        """
        Get the assistant reply for a conversation.

        Args:
            history: Ordered ``{role, content}`` turns, oldest first, ending with a user turn
            system_context: System prompt for the conversation type

        Returns:
            Reply text
        """
        pass

    @abstractmethod
    async def derive_title(self, first_user_message: str) -> str:
        """
        Derive a short task title from the first user message.

        Returns:
            Title text (may be empty; callers apply their own fallback)
        """
        pass

    def get_client_type(self) -> str:
        """Get the client type name."""
        return self.__class__.__name__.replace("Client", "").lower()
