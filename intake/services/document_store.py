"""Per-user document storage.

Stores one JSON document per conversation with structure:
  {base_path}/{user_key}/{doc_id}.json

Every mutation is whole-document: load, change in memory, save. Attachments
live next to the documents under {base_path}/{user_key}/attachments/.
"""

import json
import re
import shutil
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiofiles
import aiofiles.os

from ..errors import StorageError
from ..utils.keys import user_key, email_from_key
from ..utils.logger import get_app_logger


DOC_ID_PATTERN = re.compile(r'^[A-Za-z0-9][A-Za-z0-9_-]{0,127}$')


class DocumentStore:
    """File-based whole-document storage namespaced per user."""

    SUFFIX = ".json"

    def __init__(self, base_path: str = "./data/conversations"):
        self.base_path = Path(base_path)
        self.logger = get_app_logger()

    def user_dir(self, email: str) -> Path:
        """Get the namespace directory for a user."""
        return self.base_path / user_key(email)

    def _get_document_path(self, email: str, doc_id: str) -> Path:
        """Get the file path for a document."""
        if not DOC_ID_PATTERN.match(doc_id):
            raise ValueError(f"Invalid document id: {doc_id!r}")
        return self.user_dir(email) / f"{doc_id}{self.SUFFIX}"

    async def load(self, email: str, doc_id: str) -> Optional[Dict[str, Any]]:
        """
        Load a whole document.

        Args:
            email: Owning user
            doc_id: Document ID

        Returns:
            Decoded document, or None if it does not exist

        Raises:
            StorageError: If the stored file is not valid JSON
        """
        if not DOC_ID_PATTERN.match(doc_id):
            return None
        file_path = self._get_document_path(email, doc_id)

        try:
            async with aiofiles.open(file_path, mode='r', encoding='utf-8') as f:
                raw = await f.read()
        except FileNotFoundError:
            return None

        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise StorageError(f"Corrupt document {file_path}: {e}") from e

    async def save(self, email: str, doc_id: str, document: Dict[str, Any]) -> None:
        """
        Write a whole document, creating the user namespace if needed.

        The content goes to a temporary file first and is then moved over the
        target, so a reader never sees a partially written document.
        """
        file_path = self._get_document_path(email, doc_id)
        await aiofiles.os.makedirs(file_path.parent, exist_ok=True)

        tmp_path = file_path.with_name(f".{file_path.name}.{uuid.uuid4().hex}.tmp")
        payload = json.dumps(document, indent=2, ensure_ascii=False)
        try:
            async with aiofiles.open(tmp_path, mode='w', encoding='utf-8') as f:
                await f.write(payload)
            await aiofiles.os.replace(tmp_path, file_path)
        except BaseException:
            if await aiofiles.os.path.exists(tmp_path):
                await aiofiles.os.remove(tmp_path)
            raise

    async def delete(self, email: str, doc_id: str) -> bool:
        """
        Delete a document.

        Returns:
            True if deleted, False if not found
        """
        if not DOC_ID_PATTERN.match(doc_id):
            return False
        file_path = self._get_document_path(email, doc_id)
        try:
            await aiofiles.os.remove(file_path)
        except FileNotFoundError:
            return False
        return True

    async def exists(self, email: str, doc_id: str) -> bool:
        """Check if a document exists."""
        if not DOC_ID_PATTERN.match(doc_id):
            return False
        return await aiofiles.os.path.isfile(self._get_document_path(email, doc_id))

    async def list_ids(self, email: str) -> List[str]:
        """
        List document IDs for a user.

        A fresh directory listing on every call; order is not guaranteed.
        """
        user_dir = self.user_dir(email)
        try:
            names = await aiofiles.os.listdir(user_dir)
        except FileNotFoundError:
            return []

        return [
            name[:-len(self.SUFFIX)]
            for name in names
            if name.endswith(self.SUFFIX) and not name.startswith(".")
        ]

    async def list_users(self) -> List[str]:
        """List the emails of every user namespace under the base path."""
        try:
            names = await aiofiles.os.listdir(self.base_path)
        except FileNotFoundError:
            return []

        emails = []
        for name in names:
            if not await aiofiles.os.path.isdir(self.base_path / name):
                continue
            try:
                emails.append(email_from_key(name))
            except ValueError:
                self.logger.warning(f"Skipping unrecognized namespace directory: {name}")
        return emails

    async def purge_user(self, email: str) -> bool:
        """
        Remove a user's whole namespace: documents and attachments.

        Returns:
            True if a namespace was removed, False if none existed
        """
        user_dir = self.user_dir(email)
        if not await aiofiles.os.path.isdir(user_dir):
            return False
        shutil.rmtree(user_dir)
        self.logger.info(f"Removed namespace of {email}")
        return True
