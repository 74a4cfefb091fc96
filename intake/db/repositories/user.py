"""User repository for database operations."""

from datetime import datetime, timezone
from typing import Optional, List

import duckdb
from .base import BaseRepository
from ..database_models.user import UserDO
from ...errors import UserNotFoundError


_COLUMNS = "email, name, role, onboarding_complete, storage_used_mb, created_at, last_login"


class UserRepository(BaseRepository):
    """Repository for User CRUD operations."""

    def _to_user(self, row) -> UserDO:
        return UserDO(
            email=row[0],
            name=row[1],
            role=row[2],
            onboarding_complete=bool(row[3]),
            storage_used_mb=float(row[4]),
            created_at=self._from_db_time(row[5]),
            last_login=self._from_db_time(row[6])
        )

    def create(self, user: UserDO) -> bool:
        """
        Create a new user record.

        Args:
            user: UserDO instance

        Returns:
            True if created, False if the email is already registered
        """
        try:
            self.conn.execute(f"""
                INSERT INTO users ({_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, [
                user.email,
                user.name,
                user.role,
                user.onboarding_complete,
                user.storage_used_mb,
                self._to_db_time(user.created_at),
                self._to_db_time(user.last_login)
            ])
            self.logger.info(f"Created user record: {user.email}")
            return True
        except duckdb.ConstraintException:
            self.logger.warning(f"User already exists: {user.email}")
            return False

    def get(self, email: str) -> Optional[UserDO]:
        """
        Get user by email.

        Args:
            email: User email

        Returns:
            UserDO instance or None
        """
        result = self.conn.execute(
            f"SELECT {_COLUMNS} FROM users WHERE email = ?", [email]
        ).fetchone()
        return self._to_user(result) if result else None

    def list_all(self) -> List[UserDO]:
        """
        List all users.

        Returns:
            List of UserDO instances ordered by email
        """
        results = self.conn.execute(
            f"SELECT {_COLUMNS} FROM users ORDER BY email"
        ).fetchall()
        return [self._to_user(row) for row in results]

    def set_onboarding_complete(self, email: str, complete: bool = True) -> bool:
        """
        Set the onboarding-complete flag.

        Returns:
            True if the user exists, False otherwise
        """
        try:
            result = self.conn.execute("""
                UPDATE users SET onboarding_complete = ?
                WHERE email = ?
                RETURNING email
            """, [complete, email]).fetchone()
        except Exception as e:
            self.logger.error(f"Failed to update onboarding flag for {email}: {e}")
            raise
        return result is not None

    def adjust_storage(self, email: str, delta_mb: float) -> float:
        """
        Add ``delta_mb`` to the storage counter, flooring at zero.

        Returns:
            New storage_used_mb

        Raises:
            UserNotFoundError: If the user does not exist
        """
        result = self.conn.execute("""
            UPDATE users SET storage_used_mb = GREATEST(storage_used_mb + ?, 0)
            WHERE email = ?
            RETURNING storage_used_mb
        """, [delta_mb, email]).fetchone()
        if result is None:
            raise UserNotFoundError(email)
        return float(result[0])

    def set_storage(self, email: str, storage_mb: float) -> float:
        """
        Overwrite the storage counter.

        Raises:
            UserNotFoundError: If the user does not exist
        """
        result = self.conn.execute("""
            UPDATE users SET storage_used_mb = ?
            WHERE email = ?
            RETURNING storage_used_mb
        """, [max(storage_mb, 0.0), email]).fetchone()
        if result is None:
            raise UserNotFoundError(email)
        return float(result[0])

    def update_last_login(self, email: str) -> bool:
        """Stamp last_login with the current time."""
        now = datetime.now(timezone.utc)
        result = self.conn.execute("""
            UPDATE users SET last_login = ?
            WHERE email = ?
            RETURNING email
        """, [self._to_db_time(now), email]).fetchone()
        return result is not None

    def delete(self, email: str) -> bool:
        """
        Delete user by email.

        Returns:
            True if deleted, False if not found
        """
        result = self.conn.execute(
            "DELETE FROM users WHERE email = ? RETURNING email", [email]
        ).fetchone()
        if result is not None:
            self.logger.info(f"Deleted user record: {email}")
        return result is not None
