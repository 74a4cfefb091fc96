"""Shared request dependencies and error mapping for the v1 routers."""

from fastapi import Header, HTTPException

from ...errors import (
    ConflictError,
    ConversationNotFoundError,
    EmptyMessageError,
    ExternalCallError,
    IntakeError,
    UserNotFoundError,
)


USER_HEADER = "X-User-Email"


def get_current_user(x_user_email: str = Header(..., alias=USER_HEADER)) -> str:
    """Dependency to get the calling user's email."""
    email = x_user_email.strip()
    if not email:
        raise HTTPException(status_code=401, detail=f"Missing {USER_HEADER} header")
    return email


def to_http_error(error: IntakeError) -> HTTPException:
    """Map a core exception to its HTTP response."""
    if isinstance(error, (UserNotFoundError, ConversationNotFoundError)):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, ConflictError):
        return HTTPException(status_code=409, detail={"code": error.code, "message": error.message})
    if isinstance(error, EmptyMessageError):
        return HTTPException(status_code=400, detail=str(error))
    if isinstance(error, ExternalCallError):
        return HTTPException(status_code=502, detail=f"Model call failed: {error}")
    return HTTPException(status_code=500, detail=str(error))
