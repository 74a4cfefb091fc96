"""HTTP request/response models."""

from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Base64Bytes, Field

from .attachment import AttachmentUpload
from .conversation import ConversationSummary


class AttachmentPayload(BaseModel):
    """Attachment as sent by clients (base64 encoded)."""

    name: Optional[str] = Field(None, description="Original filename", max_length=255)
    media_type: str = Field(description="Media type, e.g. image/png")
    data: Base64Bytes = Field(description="Base64 encoded file content")
    byte_size: Optional[int] = Field(None, ge=0, description="Declared size in bytes")

    def to_upload(self) -> AttachmentUpload:
        return AttachmentUpload(
            name=self.name,
            media_type=self.media_type,
            data=self.data,
            byte_size=self.byte_size,
        )


class OnboardingMessageRequest(BaseModel):
    """Request model for an onboarding message."""

    message: str = Field(description="Message text", min_length=1)
    attachments: List[AttachmentPayload] = Field(default_factory=list)


class TaskMessageRequest(BaseModel):
    """Request model for a task message."""

    conversation_id: str = Field(description="Task conversation ID", min_length=1)
    message: str = Field(description="Message text", min_length=1)
    attachments: List[AttachmentPayload] = Field(default_factory=list)


class CompleteOnboardingRequest(BaseModel):
    """Request model for approving the onboarding summary."""

    summary: str = Field(description="Approved summary text", min_length=1)


class ConversationStartedResponse(BaseModel):
    conversation_id: str
    greeting: str


class OnboardingMessageResponse(BaseModel):
    message_id: str
    bot_response: str
    is_summary: bool = False


class TaskMessageResponse(BaseModel):
    message_id: str
    bot_response: str
    title_generated: Optional[str] = None


class ConversationListResponse(BaseModel):
    conversations: List[ConversationSummary]
    total: int


class CreateUserRequest(BaseModel):
    """Request model for registering a user."""

    email: str = Field(description="User email", min_length=3, max_length=254)
    name: str = Field(description="Display name", min_length=1, max_length=200)
    role: Optional[str] = Field(None, description="Job role", max_length=200)


class UserResponse(BaseModel):
    email: str
    name: str
    role: Optional[str] = None
    onboarding_complete: bool
    storage_used_mb: float
    created_at: datetime
    last_login: Optional[datetime] = None


class UserStatsResponse(BaseModel):
    email: str
    name: str
    role: Optional[str] = None
    onboarding_complete: bool
    task_count: int
    total_messages: int
    storage_used_mb: float
    last_active: Optional[datetime] = None
