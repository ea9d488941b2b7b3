# ==============================================================================
# USER SERVICE
# ==============================================================================
# Business rules for users: login, registration, the admin user screen and
# the profile screen. Routes only orchestrate request → service → response.
#
# RULES:
# - Usernames and e-mails are unique (exact, case-insensitive).
# - Registration is fully validated and checked for duplicates before any
#   write happens.
# - Nobody can delete their own account from the admin screen.
# - Passwords are stored as werkzeug hashes; legacy "hash_" values are
#   upgraded on the next successful login.
# ==============================================================================

import logging
import re
from typing import Any, Callable, Dict, List, Optional

from stockwise import security
from stockwise.exceptions import ValidationError
from stockwise.models.entities import RecordStatus, SessionUser, User, UserPatch, UserRole, enum_value
from stockwise.repositories.user_repository import UserRepository
from stockwise.services.session_service import SessionManager
from stockwise.time_utils import to_iso_z, utcnow

logger = logging.getLogger(__name__)


class UserService:
    """
    Service for user management.

    Responsibilities:
    - Authentication (login, session creation)
    - Self registration
    - CRUD from the admin screen
    - Profile edits and password changes
    """

    # =========================================================================
    # VALIDATION CONSTANTS
    # =========================================================================
    MIN_FULL_NAME_LENGTH = 2
    MIN_USERNAME_LENGTH = 3
    MIN_PASSWORD_LENGTH = 6
    USERNAME_PATTERN = re.compile(r'^[a-zA-Z0-9_]+$')
    EMAIL_PATTERN = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')

    VALID_ROLES = frozenset(r.value for r in UserRole)
    VALID_STATUSES = frozenset(s.value for s in RecordStatus)

    def __init__(self, user_repo: UserRepository, sessions: SessionManager, clock: Callable = utcnow):
        """
        Args:
            user_repo: Users table
            sessions: Session manager used on login
            clock: Source of the last_login timestamp
        """
        self.user_repo = user_repo
        self.sessions = sessions
        self._clock = clock

    # =========================================================================
    # VALIDATION
    # =========================================================================

    def normalize_role(self, role: Any, default: str = UserRole.USER.value) -> str:
        """
        Validates a role.

        Args:
            role: Role name or UserRole (empty uses the default)

        Returns:
            The role string

        Raises:
            ValidationError: If the role is unknown
        """
        value = enum_value(role)
        if value is None or (isinstance(value, str) and not value.strip()):
            return default
        value = str(value).strip().lower()
        if value not in self.VALID_ROLES:
            raise ValidationError(f"Invalid role: {role}", field='role')
        return value

    def _validate_full_name(self, full_name: str) -> str:
        full_name = (full_name or '').strip()
        if len(full_name) < self.MIN_FULL_NAME_LENGTH:
            raise ValidationError('Full name must be at least 2 characters', field='full_name')
        return full_name

    def _validate_username(self, username: str) -> str:
        username = (username or '').strip()
        if len(username) < self.MIN_USERNAME_LENGTH:
            raise ValidationError('Username must be at least 3 characters', field='username')
        if not self.USERNAME_PATTERN.match(username):
            raise ValidationError('Username can only contain letters, numbers, and underscores',
                                  field='username')
        return username

    def _validate_email(self, email: str) -> str:
        email = (email or '').strip()
        if not self.EMAIL_PATTERN.match(email):
            raise ValidationError('Please enter a valid email address', field='email')
        return email

    def _validate_password(self, password: str, confirm_password: Optional[str] = None) -> str:
        if password is None or len(password) < self.MIN_PASSWORD_LENGTH:
            raise ValidationError('Password must be at least 6 characters long.', field='password')
        if confirm_password is not None and confirm_password != password:
            raise ValidationError('Passwords do not match', field='confirm_password')
        return password

    # =========================================================================
    # AUTHENTICATION
    # =========================================================================

    def authenticate(self, username: str, password: str, remember: bool = False) -> Optional[SessionUser]:
        """
        Checks credentials and opens a session.

        Args:
            username: Login name (case-insensitive, exact)
            password: Plain text password
            remember: "Remember me" flag

        Returns:
            The session user, or None if the credentials are wrong, the
            account is inactive or the session could not be saved
        """
        user = self.user_repo.get_by_username(username)
        if user is None or not user.is_active:
            logger.info("Failed login for %s", username)
            return None
        if not security.verify_password(password, user.password):
            logger.info("Failed login for %s", username)
            return None

        try:
            SessionUser.from_user(user)
        except ValueError as exc:
            logger.warning("User record %s cannot open a session: %s", user.id, exc)
            return None

        patch = UserPatch(last_login=to_iso_z(self._clock()))
        if security.needs_rehash(user.password):
            patch.password = security.hash_password(password)
            logger.info("Upgraded legacy password hash for %s", user.username)
        self.user_repo.update(user.id, patch)

        state = self.sessions.create_session(user, remember=remember)
        return state.user if state else None

    def logout(self, reason: str = 'User logout') -> bool:
        return self.sessions.clear_session(reason)

    # =========================================================================
    # REGISTRATION AND CRUD
    # =========================================================================

    def register(
        self,
        full_name: str,
        username: str,
        email: str,
        password: str,
        confirm_password: Optional[str] = None,
        role: Any = UserRole.USER.value,
    ) -> str:
        """
        Self registration.

        Every check runs before the insert, so a rejected registration
        writes nothing.

        Returns:
            The new user id

        Raises:
            ValidationError: Invalid field, duplicate username or e-mail,
                or storage unavailable
        """
        full_name = self._validate_full_name(full_name)
        username = self._validate_username(username)
        email = self._validate_email(email)
        self._validate_password(password, confirm_password)
        role = self.normalize_role(role)

        if self.user_repo.username_taken(username):
            raise ValidationError('Username is already taken. Please choose a different one.',
                                  field='username')
        if self.user_repo.email_taken(email):
            raise ValidationError('Email is already registered. Please use a different email or login.',
                                  field='email')

        user_id = self.user_repo.add(User(
            username=username,
            email=email,
            password=security.hash_password(password),
            full_name=full_name,
            role=role,
            status=RecordStatus.ACTIVE.value,
        ))
        if user_id is None:
            raise ValidationError('Registration failed. Please try again.')
        logger.info("Registered user %s (%s)", username, role)
        return user_id

    def create_user(
        self,
        full_name: str,
        username: str,
        email: str,
        password: str,
        role: Any = UserRole.USER.value,
        status: str = RecordStatus.ACTIVE.value,
    ) -> str:
        """
        Creates a user from the admin screen.

        Raises:
            ValidationError: Invalid field or duplicate username/e-mail
        """
        full_name = self._validate_full_name(full_name)
        username = self._validate_username(username)
        email = self._validate_email(email)
        self._validate_password(password)
        role = self.normalize_role(role)
        status = self._normalize_status(status)

        if self.user_repo.username_taken(username):
            raise ValidationError('Username already exists. Please choose a different username.',
                                  field='username')
        if self.user_repo.email_taken(email):
            raise ValidationError('Email already exists. Please use a different email.', field='email')

        user_id = self.user_repo.add(User(
            username=username,
            email=email,
            password=security.hash_password(password),
            full_name=full_name,
            role=role,
            status=status,
        ))
        if user_id is None:
            raise ValidationError('Failed to save user. Please try again.')
        return user_id

    def _normalize_status(self, status: Any) -> str:
        value = enum_value(status) or RecordStatus.ACTIVE.value
        if value not in self.VALID_STATUSES:
            raise ValidationError(f"Invalid status: {status}", field='status')
        return value

    def update_user(self, user_id: str, patch: UserPatch) -> bool:
        """
        Edits a user. Given fields are validated; a new password is hashed.

        Args:
            user_id: User to edit
            patch: Fields to change

        Returns:
            False if the user does not exist

        Raises:
            ValidationError: Invalid field or duplicate username/e-mail
        """
        if self.user_repo.get(user_id) is None:
            return False
        changes = patch.changes()
        clean = UserPatch()
        if 'full_name' in changes:
            clean.full_name = self._validate_full_name(changes['full_name'])
        if 'username' in changes:
            clean.username = self._validate_username(changes['username'])
            if self.user_repo.username_taken(clean.username, exclude_id=user_id):
                raise ValidationError('Username already exists. Please choose a different username.',
                                      field='username')
        if 'email' in changes:
            clean.email = self._validate_email(changes['email'])
            if self.user_repo.email_taken(clean.email, exclude_id=user_id):
                raise ValidationError('Email already exists. Please use a different email.', field='email')
        if 'role' in changes:
            clean.role = self.normalize_role(changes['role'])
        if 'status' in changes:
            clean.status = self._normalize_status(changes['status'])
        if changes.get('password'):
            clean.password = security.hash_password(self._validate_password(changes['password']))
        if 'last_login' in changes:
            clean.last_login = changes['last_login']
        if not clean:
            return True
        return self.user_repo.update(user_id, clean)

    def update_profile(self, user_id: str, full_name: str, email: str) -> bool:
        """Profile screen edit; the e-mail must not belong to someone else."""
        full_name = self._validate_full_name(full_name)
        email = self._validate_email(email)
        if self.user_repo.email_taken(email, exclude_id=user_id):
            raise ValidationError('Email address is already in use by another user.', field='email')
        return self.user_repo.update(user_id, UserPatch(full_name=full_name, email=email))

    def change_password(
        self,
        user_id: str,
        current_password: str,
        new_password: str,
        confirm_password: Optional[str] = None,
    ) -> bool:
        """
        Profile screen password change.

        Raises:
            ValidationError: Wrong current password, short or mismatched
                new password
        """
        user = self.user_repo.get(user_id)
        if user is None:
            return False
        if not security.verify_password(current_password, user.password):
            raise ValidationError('Current password is incorrect.', field='current_password')
        if new_password is None or len(new_password) < self.MIN_PASSWORD_LENGTH:
            raise ValidationError('New password must be at least 6 characters long.', field='new_password')
        if confirm_password is not None and confirm_password != new_password:
            raise ValidationError('New passwords do not match.', field='confirm_password')
        return self.user_repo.update(user_id, UserPatch(password=security.hash_password(new_password)))

    def reset_password(self, user_id: str, new_password: str) -> bool:
        """Admin password reset (no current password needed)."""
        self._validate_password(new_password)
        return self.user_repo.update(user_id, UserPatch(password=security.hash_password(new_password)))

    def delete_user(self, user_id: str, acting_user_id: Optional[str]) -> bool:
        """
        Deletes a user from the admin screen.

        Raises:
            ValidationError: If the acting user targets their own account
        """
        if acting_user_id is not None and user_id == acting_user_id:
            raise ValidationError('You cannot delete your own account.')
        return self.user_repo.delete(user_id)

    def delete_own_account(self, user_id: str, password: str) -> bool:
        """
        Profile screen account deletion: confirms the password, deletes the
        user and ends the session.
        """
        user = self.user_repo.get(user_id)
        if user is None:
            return False
        if not security.verify_password(password, user.password):
            raise ValidationError('Incorrect password.', field='password')
        if not self.user_repo.delete(user_id):
            return False
        current = self.sessions.peek_user()
        if current is not None and current.id == user_id:
            self.sessions.clear_session('Account deleted')
        return True

    # =========================================================================
    # QUERIES
    # =========================================================================

    def list_users(self) -> List[User]:
        return self.user_repo.all()

    @staticmethod
    def public_view(user: Any) -> Dict[str, Any]:
        """User record without the password hash."""
        data = user.to_dict() if hasattr(user, 'to_dict') else dict(user)
        data.pop('password', None)
        return data
