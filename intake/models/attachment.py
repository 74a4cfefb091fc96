"""Attachment upload model."""

from typing import Optional
from pydantic import BaseModel, Field


class AttachmentUpload(BaseModel):
    """An attachment offered for admission alongside a user message."""

    media_type: str = Field(description="Declared media type")
    data: bytes = Field(default=b"", description="Raw file bytes")
    name: Optional[str] = Field(None, description="Declared filename")
    byte_size: Optional[int] = Field(None, ge=0, description="Declared size in bytes")

    @property
    def size(self) -> int:
        """Size used for admission and quota accounting."""
        return max(self.byte_size or 0, len(self.data))

    @property
    def kind(self) -> str:
        """Content part kind for the stored reference."""
        return "image" if self.media_type.lower().startswith("image/") else "document"
