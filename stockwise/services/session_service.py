# ==============================================================================
# SESSION SERVICE
# ==============================================================================
# Owns the single serialized auth state blob: who is logged in and until
# when. The blob lives in the shared key-value storage, so every manager
# attached to the same storage sees the same session; a manager re-validates
# whenever another one changes the blob.
#
# STATES:
#   Anonymous --create_session--> Authenticated
#   Authenticated --require_auth (granted)--> Authenticated (expiry slides)
#   Authenticated --clear_session / expiry--> Anonymous
#
# Every LOGIN/LOGOUT goes to the activity log and to the auth log.
# A corrupt blob reads as Anonymous and is never raised to callers.
# ==============================================================================

import json
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from stockwise.config import (
    AUTH_KEY,
    AUTH_LOG_KEY,
    AUTH_LOG_LIMIT,
    DEFAULT_SESSION_CHECK_INTERVAL,
    DEFAULT_SESSION_DURATION,
    LEGACY_AUTH_KEYS,
    REDIRECT_KEY,
)
from stockwise.exceptions import AuthDenied, SessionCorrupt, StorageUnavailable
from stockwise.models.entities import ActivityAction, AuthState, SessionUser, UserRole, enum_value
from stockwise.repositories.base import BaseStorage
from stockwise.repositories.interfaces import IRecordStore
from stockwise.time_utils import from_epoch_ms, to_epoch_ms, to_iso_z, utcnow

logger = logging.getLogger(__name__)

LOGIN_VIEW = 'login'
ADMIN_LANDING_VIEW = 'admin-dashboard'
USER_LANDING_VIEW = 'user-dashboard'

EXPIRED_REASON = 'Session expired'
LOGOUT_REASON = 'User logout'
EXTERNAL_LOGOUT_REASON = 'Logged out in another session'
EXTERNAL_LOGIN_REASON = 'Logged in in another session'
REPLACED_REASON = 'New session started'

RoleSpec = Union[str, UserRole, Iterable[Union[str, UserRole]]]


def landing_view_for(role: Optional[str]) -> str:
    """View a user is sent to after login or on access denied."""
    if enum_value(role) == UserRole.ADMIN.value:
        return ADMIN_LANDING_VIEW
    return USER_LANDING_VIEW


def allowed_roles(required: RoleSpec) -> frozenset:
    """Normalize a single role or a collection of roles to a set of strings."""
    if isinstance(required, (str, UserRole)):
        return frozenset([enum_value(required)])
    return frozenset(enum_value(r) for r in required)


@dataclass(frozen=True)
class AuthCheck:
    """
    Result of require_auth.

    Attributes:
        user: Session user when access is granted, else None
        redirect: View to send the caller to when not granted
        notice: Blocking message to show before redirecting (access denied)
    """
    user: Optional[SessionUser] = None
    redirect: Optional[str] = None
    notice: Optional[str] = None

    @property
    def granted(self) -> bool:
        return self.user is not None


@dataclass(frozen=True)
class AuthChange:
    """Notification sent to session observers."""
    authenticated: bool
    user: Optional[SessionUser]
    reason: str = ''


class SessionManager:
    """
    Session lifecycle and role-gated access checks.

    Usage:
        sessions = SessionManager(storage, store)
        sessions.create_session(user, remember=False)
        check = sessions.require_auth('admin', current_view='users')
        if not check.granted:
            ...  # show check.notice, go to check.redirect

    Args:
        storage: Shared key-value storage holding the auth blob
        store: Record store receiving LOGIN/LOGOUT audit entries
        clock: Returns the current aware UTC datetime
        session_duration: Lifetime granted on login and on every refresh
        auth_log_limit: Auth log entries kept (oldest dropped first)
    """

    def __init__(
        self,
        storage: BaseStorage,
        store: IRecordStore,
        clock: Callable = utcnow,
        session_duration: timedelta = DEFAULT_SESSION_DURATION,
        auth_log_limit: int = AUTH_LOG_LIMIT,
    ):
        self._storage = storage
        self._store = store
        self._clock = clock
        self.session_duration = session_duration
        self.auth_log_limit = auth_log_limit
        self._lock = threading.RLock()
        self._local = threading.local()
        self._observers: List[Callable[[AuthChange], None]] = []
        self._known_user_id: Optional[str] = None
        peeked = self.peek_user()
        self._known_user_id = peeked.id if peeked else None
        self._unsubscribe = storage.subscribe(self.handle_external_change)

    # =========================================================================
    # STATE ACCESS
    # =========================================================================

    def _now_ms(self) -> int:
        return to_epoch_ms(self._clock())

    @property
    def _duration_ms(self) -> int:
        return int(self.session_duration / timedelta(milliseconds=1))

    @contextmanager
    def _own_write(self):
        # Storage notifications for our own writes arrive synchronously.
        self._local.writing = True
        try:
            yield
        finally:
            self._local.writing = False

    def _read_state(self) -> Optional[AuthState]:
        try:
            raw = self._storage.get(AUTH_KEY)
        except StorageUnavailable as exc:
            logger.error("Cannot read auth state: %s", exc)
            return None
        if raw is None:
            return None
        try:
            return AuthState.from_dict(json.loads(raw))
        except ValueError:
            logger.warning("Stored auth state is not valid JSON, treating as anonymous")
        except SessionCorrupt as exc:
            logger.warning("Stored auth state is corrupt (%s), treating as anonymous", exc)
        return None

    def _write_state(self, state: AuthState) -> bool:
        try:
            with self._own_write():
                self._storage.set(AUTH_KEY, json.dumps(state.to_dict()))
        except StorageUnavailable as exc:
            logger.error("Cannot save auth state: %s", exc)
            return False
        return True

    def _remove_state(self) -> bool:
        try:
            with self._own_write():
                self._storage.remove(AUTH_KEY)
        except StorageUnavailable as exc:
            logger.error("Cannot remove auth state: %s", exc)
            return False
        return True

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def create_session(self, user: Any, remember: bool = False) -> Optional[AuthState]:
        """
        Log a user in.

        Only a password-free snapshot of the user is kept. An existing
        session is ended first.

        Args:
            user: User entity, SessionUser or raw user record
            remember: "Remember me" flag kept in the state

        Returns:
            The new state, or None if it could not be saved
        """
        snapshot = SessionUser.from_user(user)
        with self._lock:
            previous = self._read_state()
            if previous is not None:
                self._end_session(previous, REPLACED_REASON)
            now = self._now_ms()
            state = AuthState(
                user=snapshot,
                created_at=now,
                expires_at=now + self._duration_ms,
                remember_me=bool(remember),
                last_activity=now,
            )
            if not self._write_state(state):
                return None
            self._known_user_id = snapshot.id
            self._audit(ActivityAction.LOGIN, snapshot, '')
        logger.info("User %s logged in", snapshot.username)
        self._notify(AuthChange(True, snapshot, 'Login'))
        return state

    def get_auth_state(self) -> Optional[AuthState]:
        """
        Current valid state.

        Returns None when there is no state, it is corrupt, or it has
        expired; an expired state is cleared with reason "Session expired".
        """
        with self._lock:
            state = self._read_state()
            if state is None:
                return None
            if state.is_expired(self._now_ms()):
                self._end_session(state, EXPIRED_REASON)
                return None
            return state

    def refresh_session(self) -> bool:
        """Slide the expiry to now + session duration."""
        with self._lock:
            state = self.get_auth_state()
            if state is None:
                return False
            return self._refresh(state)

    def _refresh(self, state: AuthState) -> bool:
        now = self._now_ms()
        return self._write_state(replace(state, expires_at=now + self._duration_ms, last_activity=now))

    def clear_session(self, reason: str = LOGOUT_REASON) -> bool:
        """
        Log out.

        Args:
            reason: Stored as the LOGOUT entry details

        Returns:
            False if nobody was logged in
        """
        with self._lock:
            state = self._read_state()
            if state is None:
                # Drop an unreadable blob without auditing it
                try:
                    if self._storage.get(AUTH_KEY) is not None:
                        self._remove_state()
                except StorageUnavailable as exc:
                    logger.error("Cannot read auth state: %s", exc)
                return False
            return self._end_session(state, reason)

    def _end_session(self, state: AuthState, reason: str) -> bool:
        if not self._remove_state():
            return False
        self._known_user_id = None
        self._audit(ActivityAction.LOGOUT, state.user, reason)
        logger.info("User %s logged out: %s", state.user.username, reason)
        self._notify(AuthChange(False, None, reason))
        return True

    def check_expiry(self) -> bool:
        """
        Liveness check run periodically by SessionMonitor.

        Returns:
            True if an expired session was ended
        """
        with self._lock:
            state = self._read_state()
            if state is not None and state.is_expired(self._now_ms()):
                return self._end_session(state, EXPIRED_REASON)
            return False

    def poll_external_changes(self) -> None:
        """Ask storages that cannot push changes (files) to look for them."""
        reload = getattr(self._storage, 'reload', None)
        if reload is not None:
            reload()

    # =========================================================================
    # QUERIES
    # =========================================================================

    def peek_user(self) -> Optional[SessionUser]:
        """Current user without side effects (no expiry clearing, no refresh)."""
        state = self._read_state()
        if state is None or state.is_expired(self._now_ms()):
            return None
        return state.user

    def current_user(self) -> Optional[SessionUser]:
        state = self.get_auth_state()
        return state.user if state else None

    def is_authenticated(self) -> bool:
        return self.get_auth_state() is not None

    def has_role(self, roles: RoleSpec) -> bool:
        """Exact membership test; admin does not imply other roles."""
        user = self.current_user()
        return user is not None and user.role in allowed_roles(roles)

    # =========================================================================
    # AUTHORIZATION
    # =========================================================================

    def require_auth(self, required_role: Optional[RoleSpec] = None,
                     current_view: Optional[str] = None) -> AuthCheck:
        """
        Gate a protected view.

        Args:
            required_role: Role or collection of roles allowed (None for any
                authenticated user)
            current_view: View being opened, remembered for after login

        Returns:
            AuthCheck with the user when granted (the session is refreshed),
            otherwise the redirect and, for a role mismatch, the notice
        """
        with self._lock:
            state = self.get_auth_state()
            if state is None:
                if current_view:
                    self.remember_redirect(current_view)
                return AuthCheck(redirect=LOGIN_VIEW)

            if required_role is not None:
                allowed = allowed_roles(required_role)
                if state.user.role not in allowed:
                    denied = AuthDenied(state.user.role, allowed)
                    logger.info("Access denied for %s (role %s, allowed %s)",
                                state.user.username, state.user.role, sorted(allowed))
                    return AuthCheck(redirect=landing_view_for(state.user.role), notice=str(denied))

            self._refresh(state)
            return AuthCheck(user=state.user)

    def remember_redirect(self, view: str) -> None:
        try:
            self._storage.set(REDIRECT_KEY, json.dumps(view))
        except StorageUnavailable as exc:
            logger.error("Cannot save post-login redirect: %s", exc)

    def consume_post_login_redirect(self) -> str:
        """
        View to open after login: the remembered one (returned once) or the
        landing view of the current role.
        """
        view = None
        try:
            raw = self._storage.get(REDIRECT_KEY)
            if raw is not None:
                self._storage.remove(REDIRECT_KEY)
                view = json.loads(raw)
        except StorageUnavailable as exc:
            logger.error("Cannot read post-login redirect: %s", exc)
        except ValueError:
            view = None
        if isinstance(view, str) and view and view != LOGIN_VIEW:
            return view
        user = self.peek_user()
        return landing_view_for(user.role if user else None)

    # =========================================================================
    # AUDIT
    # =========================================================================

    def _audit(self, action: ActivityAction, user: SessionUser, reason: str) -> None:
        self._store.log_activity(action, 'users', user.id, user=user, details=reason)
        self._append_auth_log(action, user, reason)

    def _append_auth_log(self, action: ActivityAction, user: SessionUser, reason: str) -> None:
        entry = {
            'action': action.value,
            'user_id': user.id,
            'username': user.username,
            'reason': reason,
            'timestamp': to_iso_z(from_epoch_ms(self._now_ms())),
        }
        try:
            logs = self.auth_history()
            logs.append(entry)
            self._storage.set(AUTH_LOG_KEY, json.dumps(logs[-self.auth_log_limit:]))
        except StorageUnavailable as exc:
            logger.warning("Cannot write auth log: %s", exc)

    def auth_history(self) -> List[Dict[str, Any]]:
        """Auth log entries, oldest first."""
        try:
            raw = self._storage.get(AUTH_LOG_KEY)
        except StorageUnavailable as exc:
            logger.warning("Cannot read auth log: %s", exc)
            return []
        if raw is None:
            return []
        try:
            logs = json.loads(raw)
        except ValueError:
            return []
        return logs if isinstance(logs, list) else []

    # =========================================================================
    # OBSERVERS AND EXTERNAL CHANGES
    # =========================================================================

    def on_change(self, callback: Callable[[AuthChange], None]) -> Callable[[], None]:
        """
        Subscribe to login/logout transitions.

        Returns:
            Function that removes the subscription
        """
        with self._lock:
            self._observers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._observers:
                    self._observers.remove(callback)

        return unsubscribe

    def _notify(self, change: AuthChange) -> None:
        with self._lock:
            observers = list(self._observers)
        for callback in observers:
            try:
                callback(change)
            except Exception:
                logger.exception("Session observer failed for %s", change)

    def handle_external_change(self, key: str) -> None:
        """
        Storage listener: re-validate when another manager or process
        changed the auth blob.
        """
        if key != AUTH_KEY or getattr(self._local, 'writing', False):
            return
        with self._lock:
            previous_id = self._known_user_id
            state = self.get_auth_state()
            current = state.user if state else None
            self._known_user_id = current.id if current else None
        if previous_id and current is None:
            logger.info("Session ended outside this manager")
            self._notify(AuthChange(False, None, EXTERNAL_LOGOUT_REASON))
        elif current is not None and current.id != previous_id:
            self._notify(AuthChange(True, current, EXTERNAL_LOGIN_REASON))

    # =========================================================================
    # LEGACY MIGRATION
    # =========================================================================

    def migrate_legacy_keys(self) -> Optional[SessionUser]:
        """
        Convert auth keys written by older releases.

        The first valid user found becomes a remembered session when nobody
        is logged in. Every legacy key is removed.

        Returns:
            The migrated user, if any
        """
        migrated = None
        for key in LEGACY_AUTH_KEYS:
            try:
                raw = self._storage.get(key)
            except StorageUnavailable as exc:
                logger.error("Cannot read legacy key %s: %s", key, exc)
                continue
            if raw is None:
                continue
            try:
                data = json.loads(raw)
                candidate = data.get('user', data) if isinstance(data, dict) else data
                user = SessionUser.from_user(candidate)
            except (ValueError, TypeError, AttributeError):
                logger.warning("Ignoring unreadable legacy auth key %s", key)
                user = None
            if user is not None and migrated is None and self._read_state() is None:
                if self.create_session(user, remember=True) is not None:
                    migrated = user
                    logger.info("Migrated legacy session for %s", user.username)
            try:
                self._storage.remove(key)
            except StorageUnavailable as exc:
                logger.error("Cannot remove legacy key %s: %s", key, exc)
        return migrated

    def close(self) -> None:
        self._unsubscribe()
        with self._lock:
            self._observers.clear()


class SessionMonitor:
    """
    Runs the session liveness check on a background timer.

    Args:
        sessions: Manager to check
        interval: Seconds between checks
    """

    def __init__(self, sessions: SessionManager, interval: float = DEFAULT_SESSION_CHECK_INTERVAL):
        self.sessions = sessions
        self.interval = interval
        self._timer: Optional[threading.Timer] = None
        self._running = False
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        with self._lock:
            if self._running:
                return
            self._running = True
            self._schedule()

    def _schedule(self) -> None:
        self._timer = threading.Timer(self.interval, self._tick)
        self._timer.daemon = True
        self._timer.start()

    def _tick(self) -> None:
        try:
            self.run_once()
        except Exception:
            logger.exception("Session check failed")
        finally:
            with self._lock:
                if self._running:
                    self._schedule()

    def run_once(self) -> bool:
        """One check: pick up external changes, then end an expired session."""
        self.sessions.poll_external_changes()
        return self.sessions.check_expiry()

    def stop(self) -> None:
        with self._lock:
            self._running = False
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
