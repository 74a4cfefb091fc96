"""Conversation REST API routes - V1."""

from fastapi import APIRouter, HTTPException, Depends

from .dependencies import get_current_user, to_http_error
from ...errors import IntakeError
from ...models.api import (
    CompleteOnboardingRequest,
    ConversationListResponse,
    ConversationStartedResponse,
    OnboardingMessageRequest,
    OnboardingMessageResponse,
    TaskMessageRequest,
    TaskMessageResponse,
)
from ...models.conversation import ConversationDocument
from ...services.session_manager import SessionManager

router = APIRouter(prefix="/api/v1/conversations", tags=["Conversations"])

# Session manager (set by main.py)
session_manager: SessionManager = None


def get_session_manager() -> SessionManager:
    """Dependency to get the session manager."""
    if session_manager is None:
        raise HTTPException(status_code=500, detail="Session manager not initialized")
    return session_manager


# === Onboarding ===

@router.post("/onboarding/start", response_model=ConversationStartedResponse, status_code=201)
async def start_onboarding(
    email: str = Depends(get_current_user),
    manager: SessionManager = Depends(get_session_manager)
):
    """Start the onboarding conversation."""
    try:
        started = await manager.create_onboarding(email)
    except IntakeError as e:
        raise to_http_error(e)
    return ConversationStartedResponse(conversation_id=started.conversation_id, greeting=started.greeting)


@router.post("/onboarding/message", response_model=OnboardingMessageResponse)
async def send_onboarding_message(
    request: OnboardingMessageRequest,
    email: str = Depends(get_current_user),
    manager: SessionManager = Depends(get_session_manager)
):
    """Send an onboarding message and get the interviewer's reply."""
    try:
        reply = await manager.append_onboarding_message(
            email,
            request.message,
            [a.to_upload() for a in request.attachments]
        )
    except IntakeError as e:
        raise to_http_error(e)
    return OnboardingMessageResponse(
        message_id=reply.message_id,
        bot_response=reply.reply_text,
        is_summary=reply.is_summary_candidate
    )


@router.post("/onboarding/complete", response_model=dict)
async def complete_onboarding(
    request: CompleteOnboardingRequest,
    email: str = Depends(get_current_user),
    manager: SessionManager = Depends(get_session_manager)
):
    """Approve the onboarding summary."""
    try:
        await manager.complete_onboarding(email, request.summary)
    except IntakeError as e:
        raise to_http_error(e)
    return {
        "status": "complete",
        "message": "Onboarding completed"
    }


# === Tasks ===

@router.post("/task/new", response_model=ConversationStartedResponse, status_code=201)
async def new_task(
    email: str = Depends(get_current_user),
    manager: SessionManager = Depends(get_session_manager)
):
    """Start a new task conversation."""
    try:
        started = await manager.create_task(email)
    except IntakeError as e:
        raise to_http_error(e)
    return ConversationStartedResponse(conversation_id=started.conversation_id, greeting=started.greeting)


@router.post("/task/message", response_model=TaskMessageResponse)
async def send_task_message(
    request: TaskMessageRequest,
    email: str = Depends(get_current_user),
    manager: SessionManager = Depends(get_session_manager)
):
    """Send a task message and get the reply."""
    try:
        reply = await manager.append_task_message(
            email,
            request.conversation_id,
            request.message,
            [a.to_upload() for a in request.attachments]
        )
    except IntakeError as e:
        raise to_http_error(e)
    return TaskMessageResponse(
        message_id=reply.message_id,
        bot_response=reply.reply_text,
        title_generated=reply.derived_title
    )


# === Reads & deletion ===

@router.get("", response_model=ConversationListResponse)
async def list_conversations(
    email: str = Depends(get_current_user),
    manager: SessionManager = Depends(get_session_manager)
):
    """List the caller's conversations."""
    conversations = await manager.list_conversations(email)
    return ConversationListResponse(conversations=conversations, total=len(conversations))


@router.get("/{conversation_id}", response_model=ConversationDocument)
async def get_conversation(
    conversation_id: str,
    email: str = Depends(get_current_user),
    manager: SessionManager = Depends(get_session_manager)
):
    """Get a full conversation."""
    try:
        conversation = await manager.get_conversation(email, conversation_id)
    except IntakeError as e:
        raise to_http_error(e)

    if conversation is None:
        raise HTTPException(status_code=404, detail=f"Conversation not found: {conversation_id}")
    return conversation


@router.delete("/{conversation_id}", response_model=dict)
async def delete_conversation(
    conversation_id: str,
    email: str = Depends(get_current_user),
    manager: SessionManager = Depends(get_session_manager)
):
    """Delete a task conversation and its attachments."""
    try:
        deleted = await manager.delete_conversation(email, conversation_id)
    except IntakeError as e:
        raise to_http_error(e)

    if not deleted:
        raise HTTPException(status_code=404, detail=f"Conversation not found: {conversation_id}")
    return {
        "status": "deleted",
        "message": f"Conversation {conversation_id} deleted successfully"
    }
