"""User REST API routes - V1."""

from dataclasses import asdict

from fastapi import APIRouter, HTTPException, Depends

from .dependencies import to_http_error
from ...db import DatabaseConnection, UserRepository
from ...db.database_models import UserDO
from ...errors import IntakeError
from ...models.api import CreateUserRequest, UserResponse, UserStatsResponse
from ...services.session_manager import SessionManager, UserStats

router = APIRouter(prefix="/api/v1/users", tags=["Users"])

# Database connection (set by main.py)
db_conn: DatabaseConnection = None
# Session manager (set by main.py)
session_manager: SessionManager = None


def get_user_repo() -> UserRepository:
    """Dependency to get user repository."""
    if db_conn is None:
        raise HTTPException(status_code=500, detail="Database not initialized")
    return UserRepository(db_conn.conn)


def get_session_manager() -> SessionManager:
    """Dependency to get the session manager."""
    if session_manager is None:
        raise HTTPException(status_code=500, detail="Session manager not initialized")
    return session_manager


def _to_response(user: UserDO) -> UserResponse:
    """Convert UserDO to UserResponse."""
    return UserResponse(
        email=user.email,
        name=user.name,
        role=user.role,
        onboarding_complete=user.onboarding_complete,
        storage_used_mb=user.storage_used_mb,
        created_at=user.created_at,
        last_login=user.last_login
    )


def _to_stats_response(stats: UserStats) -> UserStatsResponse:
    """Convert UserStats to UserStatsResponse."""
    return UserStatsResponse(
        email=stats.email,
        name=stats.name,
        role=stats.role,
        onboarding_complete=stats.onboarding_complete,
        task_count=stats.task_count,
        total_messages=stats.total_messages,
        storage_used_mb=stats.storage_used_mb,
        last_active=stats.last_active
    )


@router.post("", response_model=UserResponse, status_code=201)
async def create_user(
    request: CreateUserRequest,
    repo: UserRepository = Depends(get_user_repo)
):
    """Register a user."""
    user = UserDO(email=request.email.strip(), name=request.name, role=request.role)
    if not repo.create(user):
        raise HTTPException(status_code=409, detail=f"User already exists: {user.email}")
    return _to_response(user)


@router.get("", response_model=dict)
async def list_users(manager: SessionManager = Depends(get_session_manager)):
    """
    List every user with activity stats.

    Returns:
        Dictionary with per-user stats and organization totals
    """
    stats, totals = await manager.list_user_stats()
    return {
        "users": [_to_stats_response(s) for s in stats],
        "stats": asdict(totals),
    }


# Declared before /{email} so "export" is not taken for an email
@router.get("/export", response_model=dict)
async def export_all(manager: SessionManager = Depends(get_session_manager)):
    """Export every user and all conversations."""
    return await manager.export_all()


@router.get("/{email}", response_model=UserResponse)
async def get_user(email: str, repo: UserRepository = Depends(get_user_repo)):
    """Get a user record."""
    user = repo.get(email)
    if not user:
        raise HTTPException(status_code=404, detail=f"User not found: {email}")
    return _to_response(user)


@router.get("/{email}/stats", response_model=UserStatsResponse)
async def get_user_stats(email: str, manager: SessionManager = Depends(get_session_manager)):
    """Get a user's activity summary."""
    try:
        stats = await manager.get_user_stats(email)
    except IntakeError as e:
        raise to_http_error(e)
    return _to_stats_response(stats)


@router.delete("/{email}", response_model=dict)
async def delete_user(email: str, manager: SessionManager = Depends(get_session_manager)):
    """Delete a user together with all conversations and attachments."""
    try:
        await manager.delete_user(email)
    except IntakeError as e:
        raise to_http_error(e)
    return {
        "status": "deleted",
        "message": f"User {email} deleted successfully"
    }


@router.get("/{email}/export", response_model=dict)
async def export_user(email: str, manager: SessionManager = Depends(get_session_manager)):
    """Export a user with every conversation and the attachment listing."""
    try:
        return await manager.export_user(email)
    except IntakeError as e:
        raise to_http_error(e)
