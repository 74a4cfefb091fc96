"""User database model."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class UserDO:
    """User data object - maps to users table."""

    email: str
    name: str
    role: Optional[str] = None
    onboarding_complete: bool = False
    storage_used_mb: float = 0.0
    created_at: datetime = field(default_factory=_now)
    last_login: Optional[datetime] = None
