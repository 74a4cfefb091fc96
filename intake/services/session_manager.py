"""Conversation session manager.

Owns the lifecycle of onboarding and task conversations:

  onboarding: in-progress --complete--> complete
  task:       active (created only after onboarding is complete)

Every mutation is load -> transition -> save against the document store. The
user's message is saved before the model is called, and the reply before the
title is derived, so a failed collaborator call never loses a turn.
"""

import re
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pydantic import ValidationError

from .attachment_store import AttachmentStore
from .document_store import DocumentStore
from .summary_detector import is_summary_candidate
from ..clients.base import BaseModelClient
from ..config import Settings, settings as default_settings
from ..db.repositories.user import UserRepository
from ..db.database_models.user import UserDO
from ..errors import (
    ConflictError,
    ConversationNotFoundError,
    EmptyMessageError,
    ExternalCallError,
    IntakeError,
    StorageError,
    UserNotFoundError,
)
from ..models.attachment import AttachmentUpload
from ..models.conversation import (
    ONBOARDING_ID,
    STATUS_COMPLETE,
    TYPE_TASK,
    ConversationDocument,
    ConversationSummary,
    Message,
    TextPart,
    completed,
    new_onboarding,
    new_task,
    text_message,
    utcnow,
    with_message,
    with_title,
)
from ..prompts import (
    TASK_GREETING,
    onboarding_greeting,
    onboarding_system_prompt,
    task_system_prompt,
)
from ..utils.logger import get_app_logger


_TITLE_QUOTES = "\"'`“”‘’"
_MEANINGFUL = re.compile(r"[^\W_]", re.UNICODE)
MIN_TITLE_CHARS = 3


def normalize_title(raw: Optional[str], max_length: int = 50) -> Optional[str]:
    """
    Clean a derived title.

    Returns:
        The title, truncated with ``...`` past ``max_length``, or None when it has
        fewer than three meaningful characters
    """
    title = (raw or "").strip().strip(_TITLE_QUOTES).strip()
    if len(_MEANINGFUL.findall(title)) < MIN_TITLE_CHARS:
        return None
    if len(title) > max_length:
        title = title[:max_length - 3].rstrip() + "..."
    return title


def fallback_title(now: Optional[datetime] = None) -> str:
    now = now or utcnow()
    return f"Task {now:%b %d, %Y %H:%M}"


@dataclass(frozen=True)
class ConversationStarted:
    conversation_id: str
    greeting: str


@dataclass(frozen=True)
class OnboardingReply:
    message_id: str
    reply_text: str
    is_summary_candidate: bool


@dataclass(frozen=True)
class TaskReply:
    message_id: str
    reply_text: str
    derived_title: Optional[str] = None


@dataclass(frozen=True)
class UserStats:
    email: str
    name: str
    role: Optional[str]
    onboarding_complete: bool
    task_count: int
    total_messages: int
    storage_used_mb: float
    last_active: Optional[datetime]


@dataclass(frozen=True)
class OrganizationStats:
    total_users: int
    onboarding_complete: int
    total_tasks: int
    total_messages: int


class SessionManager:
    """Lifecycle state machine for intake conversations."""

    def __init__(
        self,
        store: DocumentStore,
        attachments: AttachmentStore,
        users: UserRepository,
        model_client: BaseModelClient,
        config: Optional[Settings] = None
    ):
        """
        Initialize the session manager.

        Args:
            store: Conversation document store
            attachments: Attachment store (carries the quota ledger)
            users: User registry
            model_client: Language-model collaborator
            config: Application configuration
        """
        self.store = store
        self.attachments = attachments
        self.users = users
        self.model_client = model_client
        self.config = config or default_settings
        self.logger = get_app_logger()

    # === Helpers ===

    def _require_user(self, email: str) -> UserDO:
        user = self.users.get(email)
        if user is None:
            raise UserNotFoundError(email)
        return user

    async def _load(self, email: str, conversation_id: str) -> Optional[ConversationDocument]:
        raw = await self.store.load(email, conversation_id)
        if raw is None:
            return None
        try:
            return ConversationDocument.model_validate(raw)
        except ValidationError as e:
            raise StorageError(f"Malformed conversation {email}/{conversation_id}: {e}") from e

    async def _save(self, doc: ConversationDocument) -> None:
        await self.store.save(doc.user_email, doc.conversation_id, doc.to_storage())

    @staticmethod
    def _check_text(text: Optional[str]) -> str:
        if text is None or not text.strip():
            raise EmptyMessageError("Message text must not be blank")
        return text

    async def _append_user_message(
        self,
        doc: ConversationDocument,
        text: str,
        uploads: Sequence[AttachmentUpload]
    ) -> ConversationDocument:
        """Append and persist the user's turn, attachments included."""
        message_id = str(uuid.uuid4())
        parts = [TextPart(text=text)]
        if uploads:
            parts.extend(await self.attachments.admit_all(
                doc.user_email, doc.conversation_id, message_id, uploads
            ))
        doc = with_message(doc, Message(message_id=message_id, role="user", content=tuple(parts)))
        await self._save(doc)
        self.users.update_last_login(doc.user_email)
        return doc

    @staticmethod
    def _system_context(prompt: str, doc: ConversationDocument) -> str:
        # The greeting is not a message, so the model learns its opening question here.
        if not doc.greeting:
            return prompt
        return f'{prompt}\n\nYou opened this conversation by asking: "{doc.greeting}"'

    async def _ask_model(self, doc: ConversationDocument, system_context: str) -> Message:
        self.logger.info(
            f"Requesting reply for {doc.user_email}/{doc.conversation_id} "
            f"({len(doc.messages)} messages)"
        )
        try:
            reply = await self.model_client.send_turn(doc.history(), self._system_context(system_context, doc))
        except ExternalCallError as e:
            self.logger.error(f"Model call failed for {doc.user_email}/{doc.conversation_id}: {e}")
            raise
        return text_message("assistant", reply)

    async def _derive_title(self, doc: ConversationDocument) -> str:
        try:
            raw = await self.model_client.derive_title(doc.first_user_text() or "")
        except Exception as e:
            self.logger.warning(
                f"Title derivation failed for {doc.conversation_id}, using fallback: {type(e).__name__}: {e}"
            )
            raw = None
        return normalize_title(raw, self.config.title_max_length) or fallback_title()

    async def sync_onboarding_flag(self, email: str) -> bool:
        """
        Set the user's onboarding flag when the onboarding document is complete.

        Repairs a completion whose flag write failed. Idempotent.

        Returns:
            True if the flag was repaired
        """
        user = self.users.get(email)
        if user is None or user.onboarding_complete:
            return False
        doc = await self._load(email, ONBOARDING_ID)
        if doc is None or doc.status != STATUS_COMPLETE:
            return False
        self.users.set_onboarding_complete(email)
        self.logger.warning(f"Repaired onboarding flag for {email}")
        return True

    # === Onboarding ===

    async def create_onboarding(self, email: str) -> ConversationStarted:
        """
        Start the user's onboarding conversation.

        Raises:
            UserNotFoundError: If the user is unknown
            ConflictError: If onboarding is complete or already started
        """
        self._require_user(email)
        await self.sync_onboarding_flag(email)
        user = self._require_user(email)

        if user.onboarding_complete:
            raise ConflictError(ConflictError.ONBOARDING_COMPLETE, "Onboarding already completed")
        if await self.store.exists(email, ONBOARDING_ID):
            raise ConflictError(ConflictError.ONBOARDING_EXISTS, "Onboarding already started")

        greeting = onboarding_greeting(user.name, self.config.organization_name)
        doc = new_onboarding(email, greeting)
        await self._save(doc)

        self.logger.info(f"Onboarding started for {email}")
        return ConversationStarted(conversation_id=doc.conversation_id, greeting=greeting)

    async def append_onboarding_message(
        self,
        email: str,
        text: str,
        attachments: Sequence[AttachmentUpload] = ()
    ) -> OnboardingReply:
        """
        Add a user turn to the onboarding conversation and get the reply.

        Raises:
            EmptyMessageError: If the text is blank
            ConversationNotFoundError: If onboarding has not been started
            ConflictError: If onboarding is already complete
            ExternalCallError: If the model call fails (the user turn stays saved)
        """
        self._check_text(text)
        self._require_user(email)

        doc = await self._load(email, ONBOARDING_ID)
        if doc is None:
            raise ConversationNotFoundError(email, ONBOARDING_ID)
        if doc.status == STATUS_COMPLETE:
            raise ConflictError(ConflictError.ONBOARDING_ALREADY_COMPLETE, "Onboarding already completed")

        doc = await self._append_user_message(doc, text, attachments)
        reply = await self._ask_model(doc, onboarding_system_prompt(self.config.organization_name))
        doc = with_message(doc, reply)
        await self._save(doc)

        candidate = is_summary_candidate(reply.text)
        if candidate:
            self.logger.info(f"Onboarding summary candidate offered to {email}")
        return OnboardingReply(
            message_id=reply.message_id,
            reply_text=reply.text,
            is_summary_candidate=candidate,
        )

    async def complete_onboarding(self, email: str, summary: str) -> None:
        """
        Record the approved summary and mark onboarding complete.

        The document is written first, then the user flag. If the flag write
        fails, a retry (or any later ``sync_onboarding_flag``) finishes the job.

        Raises:
            EmptyMessageError: If the summary is blank
            ConversationNotFoundError: If onboarding has not been started
            ConflictError: If onboarding was already completed
        """
        if summary is None or not summary.strip():
            raise EmptyMessageError("Summary must not be blank")
        user = self._require_user(email)

        doc = await self._load(email, ONBOARDING_ID)
        if doc is None:
            raise ConversationNotFoundError(email, ONBOARDING_ID)

        if doc.status == STATUS_COMPLETE:
            if user.onboarding_complete:
                raise ConflictError(ConflictError.ONBOARDING_ALREADY_COMPLETE, "Onboarding already completed")
            self.users.set_onboarding_complete(email)
            self.logger.info(f"Onboarding flag synced for {email}")
            return

        await self._save(completed(doc, summary.strip()))
        self.users.set_onboarding_complete(email)
        self.logger.info(f"Onboarding completed for {email}")

    # === Tasks ===

    async def create_task(self, email: str) -> ConversationStarted:
        """
        Start a new task conversation.

        Raises:
            UserNotFoundError: If the user is unknown
            ConflictError: If onboarding is not complete
        """
        self._require_user(email)
        await self.sync_onboarding_flag(email)
        user = self._require_user(email)

        if not user.onboarding_complete:
            raise ConflictError(ConflictError.ONBOARDING_INCOMPLETE, "Complete onboarding first")

        doc = new_task(email, TASK_GREETING)
        await self._save(doc)

        self.logger.info(f"Task conversation {doc.conversation_id} created for {email}")
        return ConversationStarted(conversation_id=doc.conversation_id, greeting=TASK_GREETING)

    async def append_task_message(
        self,
        email: str,
        conversation_id: str,
        text: str,
        attachments: Sequence[AttachmentUpload] = ()
    ) -> TaskReply:
        """
        Add a user turn to a task conversation and get the reply.

        The title is derived once, right after the conversation's first
        assistant reply.

        Raises:
            EmptyMessageError: If the text is blank
            ConflictError: If the conversation is not a task
            ConversationNotFoundError: If the conversation does not exist
            ExternalCallError: If the model call fails (the user turn stays saved)
        """
        self._check_text(text)
        if conversation_id == ONBOARDING_ID:
            raise ConflictError(ConflictError.NOT_A_TASK, "Onboarding is not a task conversation")
        self._require_user(email)

        doc = await self._load(email, conversation_id)
        if doc is None:
            raise ConversationNotFoundError(email, conversation_id)
        if doc.type != TYPE_TASK:
            raise ConflictError(ConflictError.NOT_A_TASK, f"{conversation_id} is not a task conversation")

        doc = await self._append_user_message(doc, text, attachments)
        reply = await self._ask_model(doc, task_system_prompt(self.config.organization_name))
        doc = with_message(doc, reply)
        await self._save(doc)

        derived_title = None
        assistant_turns = sum(1 for m in doc.messages if m.role == "assistant")
        if doc.title is None and assistant_turns == 1:
            derived_title = await self._derive_title(doc)
            await self._save(with_title(doc, derived_title))
            self.logger.info(f"Titled {email}/{conversation_id}: {derived_title}")

        return TaskReply(message_id=reply.message_id, reply_text=reply.text, derived_title=derived_title)

    # === Reads & deletion ===

    async def list_conversations(self, email: str) -> List[ConversationSummary]:
        """
        List a user's conversations.

        Returns:
            Onboarding first, then tasks by last update, newest first
        """
        await self.sync_onboarding_flag(email)

        summaries = []
        for conversation_id in await self.store.list_ids(email):
            try:
                doc = await self._load(email, conversation_id)
            except StorageError as e:
                self.logger.error(f"Skipping unreadable conversation {email}/{conversation_id}: {e}")
                continue
            if doc is not None:
                summaries.append(ConversationSummary.from_document(doc))

        tasks = sorted(
            (s for s in summaries if s.conversation_id != ONBOARDING_ID),
            key=lambda s: s.last_updated,
            reverse=True,
        )
        onboarding = [s for s in summaries if s.conversation_id == ONBOARDING_ID]
        return onboarding + tasks

    async def get_conversation(self, email: str, conversation_id: str) -> Optional[ConversationDocument]:
        """Get a full conversation document, or None if it does not exist."""
        return await self._load(email, conversation_id)

    async def delete_conversation(self, email: str, conversation_id: str) -> bool:
        """
        Delete a task conversation and release its attachments.

        Returns:
            True if deleted, False if not found

        Raises:
            ConflictError: If asked to delete the onboarding conversation
        """
        if conversation_id == ONBOARDING_ID:
            raise ConflictError(ConflictError.ONBOARDING_NOT_DELETABLE, "Onboarding cannot be deleted")

        if not await self.store.delete(email, conversation_id):
            return False
        self.logger.info(f"Deleted conversation {email}/{conversation_id}")

        try:
            await self.attachments.release(email, conversation_id)
        except (OSError, IntakeError) as e:
            # The document is gone; leftover files are picked up by reconcile_storage().
            self.logger.error(f"Failed to release attachments of {email}/{conversation_id}: {e}")
        return True

    # === Administration ===

    async def _load_all(self, email: str) -> List[ConversationDocument]:
        docs = []
        for conversation_id in sorted(await self.store.list_ids(email)):
            doc = await self._load(email, conversation_id)
            if doc is not None:
                docs.append(doc)
        return docs

    @staticmethod
    def _user_record(user: UserDO) -> Dict[str, Any]:
        return {
            "email": user.email,
            "name": user.name,
            "role": user.role,
            "onboarding_complete": user.onboarding_complete,
            "storage_used_mb": user.storage_used_mb,
            "created_at": user.created_at.isoformat() if user.created_at else None,
            "last_login": user.last_login.isoformat() if user.last_login else None,
        }

    async def _stats_for(self, user: UserDO) -> UserStats:
        docs = await self._load_all(user.email)
        return UserStats(
            email=user.email,
            name=user.name,
            role=user.role,
            onboarding_complete=user.onboarding_complete,
            task_count=sum(1 for d in docs if d.type == TYPE_TASK),
            total_messages=sum(len(d.messages) for d in docs),
            storage_used_mb=user.storage_used_mb,
            last_active=user.last_login,
        )

    async def get_user_stats(self, email: str) -> UserStats:
        """
        Summarize a user's activity.

        Raises:
            UserNotFoundError: If the user is unknown
        """
        return await self._stats_for(self._require_user(email))

    async def list_user_stats(self) -> Tuple[List[UserStats], OrganizationStats]:
        """
        Summarize every registered user plus organization totals.

        Returns:
            Per-user stats ordered by email, and the totals over them
        """
        stats = [await self._stats_for(user) for user in self.users.list_all()]
        totals = OrganizationStats(
            total_users=len(stats),
            onboarding_complete=sum(1 for s in stats if s.onboarding_complete),
            total_tasks=sum(s.task_count for s in stats),
            total_messages=sum(s.total_messages for s in stats),
        )
        return stats, totals

    async def delete_user(self, email: str) -> None:
        """
        Remove a user: their whole namespace first, then the registry record.

        A namespace that cannot be removed is logged and the record is deleted
        anyway; ``DocumentStore.list_users`` still reports the leftover directory.

        Raises:
            UserNotFoundError: If the user is unknown
        """
        self._require_user(email)
        try:
            await self.store.purge_user(email)
        except OSError as e:
            self.logger.error(f"Failed to remove conversations of {email}: {e}")
        self.users.delete(email)
        self.logger.info(f"Deleted user {email}")

    async def export_user(self, email: str) -> Dict[str, Any]:
        """
        Export a user record with every conversation and the attachment listing.

        Raises:
            UserNotFoundError: If the user is unknown
        """
        user = self._require_user(email)
        docs = await self._load_all(email)
        files = await self.attachments.list_files(email)

        self.logger.info(f"Exported {len(docs)} conversations for {email}")
        return {
            "export_date": utcnow().isoformat(),
            "user": self._user_record(user),
            "conversations": [d.to_storage() for d in docs],
            "attachments_info": {
                "count": len(files),
                "files": [
                    {"filename": f.rsplit("/", 1)[-1], "path": f"attachments/{f}"}
                    for f in files
                ],
            },
        }

    async def export_all(self) -> Dict[str, Any]:
        """
        Export every registered user and all their conversations.

        Unreadable documents are skipped with an error log.
        """
        users = self.users.list_all()
        conversations = []
        for user in users:
            for conversation_id in sorted(await self.store.list_ids(user.email)):
                try:
                    doc = await self._load(user.email, conversation_id)
                except StorageError as e:
                    self.logger.error(f"Skipping unreadable conversation in export: {e}")
                    continue
                if doc is not None:
                    conversations.append(doc.to_storage())

        self.logger.info(f"Exported {len(users)} users, {len(conversations)} conversations")
        return {
            "export_date": utcnow().isoformat(),
            "users": [self._user_record(user) for user in users],
            "conversations": conversations,
        }
