"""Conversation document models.

A conversation document is the durable record of one onboarding or task
conversation. Field names are a storage contract: adding fields is safe,
renaming or removing consumed ones is not.

Documents and messages are frozen. State changes go through the transition
functions at the bottom of this module, which take a document and return a
new one; the session manager wraps them in load -> transition -> save.
"""

import uuid
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


ONBOARDING_ID = "onboarding"

TYPE_ONBOARDING = "onboarding"
TYPE_TASK = "task"

STATUS_IN_PROGRESS = "in-progress"
STATUS_COMPLETE = "complete"
STATUS_ACTIVE = "active"

ONBOARDING_TITLE = "Onboarding"
UNTITLED = "Untitled"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class TextPart(BaseModel):
    """Plain text content block."""

    model_config = ConfigDict(frozen=True)

    type: Literal["text"] = "text"
    text: str = Field(description="Raw text")


class AttachmentPart(BaseModel):
    """Reference to a stored attachment."""

    model_config = ConfigDict(frozen=True)

    type: Literal["image", "document"] = Field(description="Attachment kind")
    file: str = Field(description="Stored filename inside the conversation's attachment namespace")
    media_type: str = Field(description="Declared media type")
    size_bytes: int = Field(ge=0, description="Size credited to the quota ledger")
    name: Optional[str] = Field(None, description="Original filename")


ContentPart = Annotated[Union[TextPart, AttachmentPart], Field(discriminator="type")]


class Message(BaseModel):
    """A single turn. Immutable once appended."""

    model_config = ConfigDict(frozen=True)

    message_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    role: Literal["user", "assistant"]
    content: Tuple[ContentPart, ...] = Field(min_length=1)
    timestamp: datetime = Field(default_factory=utcnow)

    @field_validator("content", mode="before")
    @classmethod
    def _coerce_plain_text(cls, v):
        # Older documents stored content as a bare string.
        if isinstance(v, str):
            return [{"type": "text", "text": v}]
        return v

    @field_validator("timestamp")
    @classmethod
    def _utc_timestamp(cls, v):
        return _as_utc(v)

    @property
    def text(self) -> str:
        """Concatenated text parts."""
        return "\n".join(p.text for p in self.content if isinstance(p, TextPart))

    @property
    def attachments(self) -> List[AttachmentPart]:
        return [p for p in self.content if isinstance(p, AttachmentPart)]


def text_message(role: str, text: str) -> Message:
    return Message(role=role, content=(TextPart(text=text),))


class ConversationDocument(BaseModel):
    """One stored conversation."""

    model_config = ConfigDict(frozen=True)

    conversation_id: str
    user_email: str
    type: Literal["onboarding", "task"]
    status: str
    title: Optional[str] = None
    greeting: Optional[str] = None
    created_at: datetime
    last_updated: datetime
    completed_at: Optional[datetime] = None
    summary: Optional[str] = None
    messages: Tuple[Message, ...] = ()

    @field_validator("created_at", "last_updated", "completed_at")
    @classmethod
    def _utc_dates(cls, v):
        return _as_utc(v)

    @property
    def is_onboarding(self) -> bool:
        return self.type == TYPE_ONBOARDING

    @property
    def display_title(self) -> str:
        if self.is_onboarding:
            return ONBOARDING_TITLE
        return self.title or UNTITLED

    @property
    def has_attachments(self) -> bool:
        return any(m.attachments for m in self.messages)

    def first_user_text(self) -> Optional[str]:
        for message in self.messages:
            if message.role == "user":
                return message.text
        return None

    def history(self) -> List[Dict[str, Any]]:
        """Ordered turns as plain ``{role, content}`` dicts for the model client."""
        return [
            {"role": m.role, "content": [p.model_dump() for p in m.content]}
            for m in self.messages
        ]

    def to_storage(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


class ConversationSummary(BaseModel):
    """List view entry for a conversation."""

    conversation_id: str = Field(description="Conversation ID")
    type: str = Field(description="onboarding or task")
    title: str = Field(description="Display title")
    status: str = Field(description="Lifecycle status")
    created_at: datetime = Field(description="Creation timestamp")
    last_updated: datetime = Field(description="Last update timestamp")
    message_count: int = Field(description="Number of messages")
    has_attachments: bool = Field(default=False, description="Whether any message carries attachments")

    @classmethod
    def from_document(cls, doc: ConversationDocument) -> "ConversationSummary":
        return cls(
            conversation_id=doc.conversation_id,
            type=doc.type,
            title=doc.display_title,
            status=doc.status,
            created_at=doc.created_at,
            last_updated=doc.last_updated,
            message_count=len(doc.messages),
            has_attachments=doc.has_attachments,
        )


# === Transitions ===

def new_onboarding(email: str, greeting: str, now: Optional[datetime] = None) -> ConversationDocument:
    now = now or utcnow()
    return ConversationDocument(
        conversation_id=ONBOARDING_ID,
        user_email=email,
        type=TYPE_ONBOARDING,
        status=STATUS_IN_PROGRESS,
        greeting=greeting,
        created_at=now,
        last_updated=now,
    )


def new_task(
    email: str,
    greeting: str,
    conversation_id: Optional[str] = None,
    now: Optional[datetime] = None
) -> ConversationDocument:
    now = now or utcnow()
    return ConversationDocument(
        conversation_id=conversation_id or str(uuid.uuid4()),
        user_email=email,
        type=TYPE_TASK,
        status=STATUS_ACTIVE,
        greeting=greeting,
        created_at=now,
        last_updated=now,
    )


def with_message(doc: ConversationDocument, message: Message) -> ConversationDocument:
    """Return ``doc`` with ``message`` appended."""
    return doc.model_copy(update={
        "messages": doc.messages + (message,),
        "last_updated": message.timestamp,
    })


def with_title(doc: ConversationDocument, title: str) -> ConversationDocument:
    """
    Set a task title.

    Raises:
        ValueError: If the document is not a task or already has a title
    """
    if doc.type != TYPE_TASK:
        raise ValueError("Only task conversations carry a derived title")
    if doc.title is not None:
        raise ValueError(f"Title already set: {doc.title}")
    return doc.model_copy(update={"title": title})


def completed(doc: ConversationDocument, summary: str, now: Optional[datetime] = None) -> ConversationDocument:
    """
    Move an onboarding document to its terminal state.

    Raises:
        ValueError: If the document is not an in-progress onboarding
    """
    if not doc.is_onboarding:
        raise ValueError("Only onboarding conversations can be completed")
    if doc.status == STATUS_COMPLETE:
        raise ValueError("Onboarding already complete")
    now = now or utcnow()
    return doc.model_copy(update={
        "status": STATUS_COMPLETE,
        "summary": summary,
        "completed_at": now,
        "last_updated": now,
    })
