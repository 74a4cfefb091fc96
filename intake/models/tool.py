"""Tool aggregation view models."""

from datetime import datetime
from typing import Dict, List, Optional
from pydantic import BaseModel, Field


class ConversationRef(BaseModel):
    """A conversation touched by a tool mention."""

    user_email: str = Field(description="Owning user")
    conversation_id: str = Field(description="Conversation ID")


class ToolUsage(BaseModel):
    """Global usage record for one canonical tool."""

    tool_name: str = Field(description="Canonical tool name")
    category: str = Field(description="Tool category")
    total_mentions: int = Field(description="Mentions across all documents")
    user_count: int = Field(description="Distinct users mentioning the tool")
    conversation_count: int = Field(description="Distinct conversations mentioning the tool")
    users: List[str] = Field(default_factory=list, description="Users mentioning the tool")
    conversations: List[ConversationRef] = Field(default_factory=list, description="Conversations mentioning the tool")
    first_mentioned: Optional[datetime] = Field(None, description="Earliest created_at of a touching conversation")
    last_mentioned: Optional[datetime] = Field(None, description="Latest last_updated of a touching conversation")


class ToolConversation(BaseModel):
    """A conversation in which a tool appeared, as seen from one user."""

    conversation_id: str
    title: str
    type: str
    mentions: int = 1


class UserToolUsage(BaseModel):
    """Per-user usage record for one tool."""

    tool_name: str
    category: str
    mentions: int
    conversations: List[ToolConversation] = Field(default_factory=list)


class ToolUserDetail(BaseModel):
    """One user's mentions of a tool."""

    email: str
    mentions: int
    conversations: List[ToolConversation] = Field(default_factory=list)


class ToolDetail(BaseModel):
    """Every user who mentioned a tool, with per-conversation counts."""

    tool_name: str
    category: str
    total_mentions: int = 0
    user_count: int = 0
    users: List[ToolUserDetail] = Field(default_factory=list)


class CategoryTool(BaseModel):
    tool_name: str
    user_count: int
    mentions: int


class CategoryStats(BaseModel):
    count: int = 0
    tools: List[CategoryTool] = Field(default_factory=list)


class ToolStats(BaseModel):
    """Summary over the whole corpus."""

    total_unique_tools: int
    total_mentions: int
    most_used_tools: List[ToolUsage] = Field(default_factory=list)
    by_category: Dict[str, CategoryStats] = Field(default_factory=dict)
