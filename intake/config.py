"""Configuration management using pydantic-settings."""

from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Server Configuration
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=3000, description="Server port")
    debug: bool = Field(default=False, description="Debug mode")

    # Storage Configuration
    data_dir: str = Field(default="./data", description="Root directory for conversations and attachments")
    database_path: str = Field(default="./data/intake.db", description="DuckDB user registry path")

    # Attachment & Quota Configuration
    max_attachment_bytes: int = Field(default=10 * 1024 * 1024, description="Per-file attachment ceiling in bytes")
    storage_quota_mb: float = Field(default=25.0, description="Per-user storage quota in megabytes")
    allowed_media_types: str = Field(
        default="image/jpeg,image/png,image/gif,image/webp,application/pdf",
        description="Accepted attachment media types (comma separated)"
    )

    # Conversation Configuration
    title_max_length: int = Field(default=50, description="Maximum derived task title length")
    organization_name: str = Field(default="your organization", description="Organization named in prompts")

    # Claude Configuration
    claude_binary: str = Field(default="claude", description="Claude binary path")
    claude_model: Optional[str] = Field(default=None, description="Claude model override")

    # Logging Configuration
    log_level: str = Field(default="INFO", description="Log level")
    log_file: Optional[str] = Field(default="./logs/intake.log", description="Log file path")

    @property
    def conversations_dir(self) -> str:
        """Directory holding one namespace per user."""
        return f"{self.data_dir.rstrip('/')}/conversations"

    def get_allowed_media_types(self) -> List[str]:
        """Get list of accepted attachment media types."""
        return [t.strip().lower() for t in self.allowed_media_types.split(",") if t.strip()]


# Global settings instance
settings = Settings()
