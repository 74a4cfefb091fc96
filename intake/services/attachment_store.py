"""Attachment side-storage.

Attachments are stored per conversation:
  {base_path}/{user_key}/attachments/{conversation_id}/{message_id}_{stamp}{ext}

Admission is best-effort: an attachment that fails a check is dropped (``admit``
returns None) and the rest of the message goes through.
"""

import time
import uuid
from pathlib import Path
from typing import List, Optional, Sequence

import aiofiles
import aiofiles.os

from .document_store import DocumentStore
from .quota_ledger import QuotaLedger, BYTES_PER_KB, BYTES_PER_MB
from ..models.attachment import AttachmentUpload
from ..models.conversation import AttachmentPart
from ..utils.logger import get_app_logger


DEFAULT_MEDIA_TYPES = (
    "image/jpeg",
    "image/png",
    "image/gif",
    "image/webp",
    "application/pdf",
)

EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "application/pdf": ".pdf",
}

REJECT_MEDIA_TYPE = "media_type"
REJECT_TOO_LARGE = "too_large"
REJECT_OVER_QUOTA = "over_quota"


def admission_check(
    media_type: str,
    size_bytes: int,
    usage_mb: float,
    allowed_media_types: Sequence[str] = DEFAULT_MEDIA_TYPES,
    max_bytes: int = 10 * 1024 * 1024,
    quota_mb: float = 25.0
) -> Optional[str]:
    """
    Decide admission for one attachment.

    Checks run in order: media type, per-file ceiling, projected quota.

    Returns:
        None when admitted, otherwise the rejection reason
    """
    if media_type.lower() not in allowed_media_types:
        return REJECT_MEDIA_TYPE
    if size_bytes > max_bytes:
        return REJECT_TOO_LARGE
    if usage_mb + size_bytes / BYTES_PER_MB > quota_mb:
        return REJECT_OVER_QUOTA
    return None


class AttachmentStore:
    """Binary blob storage with type, size and quota validation."""

    def __init__(
        self,
        store: DocumentStore,
        ledger: QuotaLedger,
        allowed_media_types: Optional[Sequence[str]] = None,
        max_bytes: int = 10 * 1024 * 1024
    ):
        self.store = store
        self.ledger = ledger
        self.allowed_media_types = tuple(
            t.lower() for t in (allowed_media_types or DEFAULT_MEDIA_TYPES)
        )
        self.max_bytes = max_bytes
        self.logger = get_app_logger()

    def _get_root(self, email: str) -> Path:
        return self.store.user_dir(email) / "attachments"

    def _get_conversation_dir(self, email: str, conversation_id: str) -> Path:
        return self._get_root(email) / conversation_id

    def path_for(self, email: str, conversation_id: str, filename: str) -> Path:
        """Get the stored path of an attachment."""
        return self._get_conversation_dir(email, conversation_id) / filename

    def check(self, email: str, upload: AttachmentUpload) -> Optional[str]:
        """Run the admission checks for ``upload`` against current usage."""
        return admission_check(
            upload.media_type,
            upload.size,
            self.ledger.usage_mb(email),
            allowed_media_types=self.allowed_media_types,
            max_bytes=self.max_bytes,
            quota_mb=self.ledger.quota_mb,
        )

    async def admit(
        self,
        email: str,
        conversation_id: str,
        message_id: str,
        upload: AttachmentUpload
    ) -> Optional[AttachmentPart]:
        """
        Validate and store an attachment.

        Args:
            email: Owning user
            conversation_id: Owning conversation
            message_id: Owning message
            upload: Attachment offered with the message

        Returns:
            Stored reference, or None if the attachment was rejected
        """
        reason = self.check(email, upload)
        if reason is not None:
            self.logger.info(
                f"Attachment rejected ({reason}) for {email}/{conversation_id}: "
                f"{upload.name or 'unnamed'} {upload.media_type} {upload.size}B"
            )
            return None

        media_type = upload.media_type.lower()
        stamp = f"{int(time.time() * 1000)}{uuid.uuid4().hex[:6]}"
        filename = f"{message_id}_{stamp}{EXTENSIONS.get(media_type, '')}"
        file_path = self.path_for(email, conversation_id, filename)
        await aiofiles.os.makedirs(file_path.parent, exist_ok=True)

        async with aiofiles.open(file_path, mode='wb') as f:
            await f.write(upload.data)

        # Bytes are on disk before the ledger is credited. A crash in between
        # leaves an orphan that only reconcile_storage() accounts for.
        written = len(upload.data)
        self.ledger.add(email, written / BYTES_PER_KB)

        self.logger.info(f"Stored attachment {filename} ({written}B) for {email}/{conversation_id}")
        return AttachmentPart(
            type=upload.kind,
            file=filename,
            media_type=media_type,
            size_bytes=written,
            name=upload.name,
        )

    async def admit_all(
        self,
        email: str,
        conversation_id: str,
        message_id: str,
        uploads: Sequence[AttachmentUpload]
    ) -> List[AttachmentPart]:
        """Admit each upload in turn, keeping the ones that pass."""
        parts = []
        for upload in uploads:
            part = await self.admit(email, conversation_id, message_id, upload)
            if part is not None:
                parts.append(part)
        return parts

    async def _list_conversation_files(self, email: str, conversation_id: str) -> List[Path]:
        conv_dir = self._get_conversation_dir(email, conversation_id)
        try:
            names = await aiofiles.os.listdir(conv_dir)
        except FileNotFoundError:
            return []
        return [conv_dir / name for name in names]

    async def release(self, email: str, conversation_id: str) -> int:
        """
        Purge every attachment of a conversation and credit the quota back.

        Returns:
            Number of bytes freed
        """
        freed = 0
        for file_path in await self._list_conversation_files(email, conversation_id):
            stat = await aiofiles.os.stat(file_path)
            await aiofiles.os.remove(file_path)
            freed += stat.st_size

        conv_dir = self._get_conversation_dir(email, conversation_id)
        if await aiofiles.os.path.isdir(conv_dir):
            await aiofiles.os.rmdir(conv_dir)

        if freed:
            self.ledger.subtract(email, freed / BYTES_PER_KB)
        self.logger.info(f"Released {freed}B of attachments for {email}/{conversation_id}")
        return freed

    async def list_files(self, email: str) -> List[str]:
        """List stored attachments as ``{conversation_id}/{filename}`` paths."""
        root = self._get_root(email)
        try:
            conversation_ids = await aiofiles.os.listdir(root)
        except FileNotFoundError:
            return []

        files = []
        for conversation_id in sorted(conversation_ids):
            for file_path in await self._list_conversation_files(email, conversation_id):
                files.append(f"{conversation_id}/{file_path.name}")
        return files

    async def measure(self, email: str) -> int:
        """Sum the bytes of every stored attachment of a user."""
        total = 0
        for relative in await self.list_files(email):
            stat = await aiofiles.os.stat(self._get_root(email) / relative)
            total += stat.st_size
        return total

    async def reconcile_storage(self, email: str) -> float:
        """
        Reset the quota ledger from the bytes actually on disk.

        Returns:
            Storage used in MB after reconciliation
        """
        return self.ledger.reconcile(email, await self.measure(email))
