"""Per-user storage quota ledger.

The ledger is the ``storage_used_mb`` counter of the user registry. It is only
accurate while every attachment write is followed by ``add`` and every purge by
``subtract``; ``reconcile`` resets it from a measurement of the bytes on disk.
"""

from ..db.repositories.user import UserRepository
from ..errors import UserNotFoundError
from ..utils.logger import get_app_logger


BYTES_PER_KB = 1024
BYTES_PER_MB = 1024 * 1024


class QuotaLedger:
    """Storage accounting gate for attachment admission."""

    def __init__(self, users: UserRepository, quota_mb: float = 25.0):
        self.users = users
        self.quota_mb = quota_mb
        self.logger = get_app_logger()

    def usage_mb(self, email: str) -> float:
        """
        Get current storage usage.

        Raises:
            UserNotFoundError: If the user does not exist
        """
        user = self.users.get(email)
        if user is None:
            raise UserNotFoundError(email)
        return user.storage_used_mb

    def add(self, email: str, size_kb: float) -> float:
        """Credit consumed storage. Returns the new usage in MB."""
        used = self.users.adjust_storage(email, size_kb / 1024)
        self.logger.debug(f"Quota +{size_kb:.1f}KB for {email}: {used:.3f}MB used")
        return used

    def subtract(self, email: str, size_kb: float) -> float:
        """Release storage. Usage never drops below zero."""
        used = self.users.adjust_storage(email, -size_kb / 1024)
        self.logger.debug(f"Quota -{size_kb:.1f}KB for {email}: {used:.3f}MB used")
        return used

    def reconcile(self, email: str, actual_bytes: int) -> float:
        """
        Reset the counter to a measured byte total.

        Returns:
            New usage in MB
        """
        before = self.usage_mb(email)
        used = self.users.set_storage(email, actual_bytes / BYTES_PER_MB)
        if abs(before - used) > 1e-9:
            self.logger.warning(
                f"Quota drift for {email}: ledger {before:.3f}MB, disk {used:.3f}MB"
            )
        return used
