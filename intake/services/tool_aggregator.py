"""Tool mention aggregation over the whole conversation corpus.

Nothing is persisted: every view re-reads every document. The scan takes no
locks, so a document saved mid-scan may or may not be counted.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from pydantic import ValidationError

from .document_store import DocumentStore
from .tool_catalog import categorize, extract_tools
from ..errors import StorageError
from ..models.conversation import ConversationDocument
from ..models.tool import (
    CategoryStats,
    CategoryTool,
    ConversationRef,
    ToolConversation,
    ToolDetail,
    ToolStats,
    ToolUsage,
    ToolUserDetail,
    UserToolUsage,
)
from ..utils.logger import get_app_logger


MOST_USED_LIMIT = 10


@dataclass(frozen=True)
class DocumentMentions:
    """Tools found in one conversation document."""

    user_email: str
    conversation_id: str
    type: str
    title: str
    created_at: datetime
    last_updated: datetime
    tools: Tuple[str, ...]

    def as_conversation(self) -> ToolConversation:
        return ToolConversation(conversation_id=self.conversation_id, title=self.title, type=self.type)


def document_corpus(doc: ConversationDocument) -> str:
    """Text of every message plus the onboarding summary."""
    pieces = [m.text for m in doc.messages]
    if doc.summary:
        pieces.append(doc.summary)
    return "\n".join(pieces)


class ToolAggregator:
    """Stateless batch views of tool usage."""

    def __init__(self, store: DocumentStore):
        self.store = store
        self.logger = get_app_logger()

    async def _read(self, email: str, conversation_id: str) -> Optional[ConversationDocument]:
        try:
            raw = await self.store.load(email, conversation_id)
            return ConversationDocument.model_validate(raw) if raw is not None else None
        except (StorageError, ValidationError, OSError) as e:
            self.logger.warning(f"Skipping unreadable document {email}/{conversation_id}: {e}")
            return None

    async def scan(self, email: Optional[str] = None) -> List[DocumentMentions]:
        """
        Extract tool mentions from every document.

        Args:
            email: Restrict the scan to one user

        Returns:
            One entry per readable document, including documents without mentions
        """
        emails = [email] if email is not None else sorted(await self.store.list_users())

        results = []
        for user_email in emails:
            for conversation_id in sorted(await self.store.list_ids(user_email)):
                doc = await self._read(user_email, conversation_id)
                if doc is None:
                    continue
                results.append(DocumentMentions(
                    user_email=user_email,
                    conversation_id=doc.conversation_id,
                    type=doc.type,
                    title=doc.display_title,
                    created_at=doc.created_at,
                    last_updated=doc.last_updated,
                    tools=tuple(extract_tools(document_corpus(doc))),
                ))

        self.logger.info(
            f"Tool scan read {len(results)} documents for {email or f'{len(emails)} users'}"
        )
        return results

    async def get_all_tools(self) -> List[ToolUsage]:
        """
        Global tool table.

        Returns:
            Tools sorted by distinct users, then mentions (both descending), then name
        """
        table: Dict[str, dict] = {}
        for doc in await self.scan():
            ref = ConversationRef(user_email=doc.user_email, conversation_id=doc.conversation_id)
            for tool in doc.tools:
                entry = table.setdefault(tool, {
                    "mentions": 0, "users": {}, "conversations": {},
                    "first": doc.created_at, "last": doc.last_updated,
                })
                entry["mentions"] += 1
                entry["users"][doc.user_email] = None
                entry["conversations"][(ref.user_email, ref.conversation_id)] = ref
                entry["first"] = min(entry["first"], doc.created_at)
                entry["last"] = max(entry["last"], doc.last_updated)

        tools = [
            ToolUsage(
                tool_name=name,
                category=categorize(name),
                total_mentions=entry["mentions"],
                user_count=len(entry["users"]),
                conversation_count=len(entry["conversations"]),
                users=list(entry["users"]),
                conversations=list(entry["conversations"].values()),
                first_mentioned=entry["first"],
                last_mentioned=entry["last"],
            )
            for name, entry in table.items()
        ]
        tools.sort(key=lambda t: (-t.user_count, -t.total_mentions, t.tool_name))
        return tools

    async def get_tools_by_user(self, email: str) -> List[UserToolUsage]:
        """Tools mentioned by one user, most mentioned first."""
        table: Dict[str, UserToolUsage] = {}
        for doc in await self.scan(email):
            for tool in doc.tools:
                usage = table.get(tool)
                if usage is None:
                    usage = table[tool] = UserToolUsage(tool_name=tool, category=categorize(tool), mentions=0)
                usage.mentions += 1
                usage.conversations.append(doc.as_conversation())

        return sorted(table.values(), key=lambda u: (-u.mentions, u.tool_name))

    async def get_tool_detail(self, tool_name: str) -> ToolDetail:
        """
        Every user who mentioned a tool, with per-conversation counts.

        The lookup is case-insensitive. An unknown tool yields an empty detail.
        """
        wanted = tool_name.strip().lower()
        canonical = tool_name.strip()
        users: Dict[str, ToolUserDetail] = {}

        for doc in await self.scan():
            hit = next((t for t in doc.tools if t.lower() == wanted), None)
            if hit is None:
                continue
            canonical = hit
            detail = users.get(doc.user_email)
            if detail is None:
                detail = users[doc.user_email] = ToolUserDetail(email=doc.user_email, mentions=0)
            detail.mentions += 1
            detail.conversations.append(doc.as_conversation())

        ranked = sorted(users.values(), key=lambda u: (-u.mentions, u.email))
        return ToolDetail(
            tool_name=canonical,
            category=categorize(canonical),
            total_mentions=sum(u.mentions for u in ranked),
            user_count=len(ranked),
            users=ranked,
        )

    @staticmethod
    def _group_by_category(tools: List[ToolUsage]) -> Dict[str, CategoryStats]:
        by_category: Dict[str, CategoryStats] = {}
        for tool in tools:
            stats = by_category.setdefault(tool.category, CategoryStats())
            stats.count += 1
            stats.tools.append(CategoryTool(
                tool_name=tool.tool_name,
                user_count=tool.user_count,
                mentions=tool.total_mentions,
            ))
        return by_category

    async def get_tools_by_category(self) -> Dict[str, CategoryStats]:
        """Tools grouped by category, each group in get_all_tools order."""
        return self._group_by_category(await self.get_all_tools())

    async def get_tools_stats(self) -> ToolStats:
        """Totals, the most used tools and a per-category breakdown."""
        tools = await self.get_all_tools()
        return ToolStats(
            total_unique_tools=len(tools),
            total_mentions=sum(t.total_mentions for t in tools),
            most_used_tools=tools[:MOST_USED_LIMIT],
            by_category=self._group_by_category(tools),
        )
