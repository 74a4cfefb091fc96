"""Pydantic models for documents, aggregation views and API request/response."""

from .attachment import AttachmentUpload
from .conversation import (
    ConversationDocument,
    ConversationSummary,
    Message,
    TextPart,
    AttachmentPart,
)
from .tool import ToolUsage, UserToolUsage, ToolDetail, ToolStats

__all__ = [
    "AttachmentUpload",
    "ConversationDocument",
    "ConversationSummary",
    "Message",
    "TextPart",
    "AttachmentPart",
    "ToolUsage",
    "UserToolUsage",
    "ToolDetail",
    "ToolStats",
]
