# ==============================================================================
# USER REPOSITORY
# ==============================================================================
# Typed access to the users table. Username and e-mail lookups are exact and
# case-insensitive (the generic find() matches substrings).
# ==============================================================================

from typing import Any, List, Optional

from stockwise.models.entities import User, UserRole
from stockwise.repositories.table_repository import TableRepository


def _norm(value: Any) -> str:
    return '' if value is None else str(value).strip().lower()


def _same(a: Any, b: Any) -> bool:
    return _norm(a) == _norm(b)


class UserRepository(TableRepository[User]):
    """
    Repository for system users.

    Stored record:
    {
        "id": "...", "username": "admin", "email": "admin@stockwise.com",
        "password": "scrypt:...", "full_name": "System Administrator",
        "role": "admin", "status": "active", "last_login": null,
        "created_at": "...", "updated_at": "..."
    }
    """

    table = 'users'
    entity = User

    def get_by_username(self, username: str) -> Optional[User]:
        """
        Finds a user by username.

        Args:
            username: Login name (case-insensitive)

        Returns:
            The user or None
        """
        if not username:
            return None
        for record in self.store.get_all(self.table):
            if _same(record.get('username'), username):
                return User.from_dict(record)
        return None

    def get_by_email(self, email: str) -> Optional[User]:
        if not email:
            return None
        for record in self.store.get_all(self.table):
            if _same(record.get('email'), email):
                return User.from_dict(record)
        return None

    def username_taken(self, username: str, exclude_id: Optional[str] = None) -> bool:
        user = self.get_by_username(username)
        return user is not None and user.id != exclude_id

    def email_taken(self, email: str, exclude_id: Optional[str] = None) -> bool:
        """
        Checks whether another user already uses an e-mail.

        Args:
            email: Address to check
            exclude_id: User allowed to own it (the one being edited)

        Returns:
            True if a different user has it
        """
        user = self.get_by_email(email)
        return user is not None and user.id != exclude_id

    def get_users_by_role(self, role: str) -> List[User]:
        return [u for u in self.all() if u.role == role]

    def count_admins(self) -> int:
        return self.store.count(self.table, {'role': UserRole.ADMIN.value})
