import json

from stockwise.config import AUTH_KEY, REDIRECT_KEY
from stockwise.exceptions import AuthDenied
from stockwise.models.entities import UserRole
from stockwise.services import SessionManager, SessionMonitor


def _logouts(store):
    return [e for e in store.get_all('activity_logs') if e['action'] == 'LOGOUT']


def test_create_session_stores_snapshot_without_password(sessions, storage, store, staff_user):
    staff_user.password = 'scrypt:secret'
    state = sessions.create_session(staff_user, remember=True)

    blob = json.loads(storage.get(AUTH_KEY))
    assert set(blob) == {'user', 'createdAt', 'expiresAt', 'rememberMe', 'lastActivity'}
    assert 'password' not in blob['user']
    assert blob['rememberMe'] is True
    assert state.expires_at - state.created_at == 60 * 60 * 1000

    logins = [e for e in store.get_all('activity_logs') if e['action'] == 'LOGIN']
    assert len(logins) == 1
    assert logins[0]['user_id'] == staff_user.id
    assert sessions.auth_history()[-1]['action'] == 'LOGIN'


def test_session_expires_after_duration_and_logs_one_logout(sessions, store, clock, staff_user):
    sessions.create_session(staff_user, remember=False)
    clock.advance(hours=1, seconds=1)

    assert sessions.get_auth_state() is None
    assert sessions.get_auth_state() is None

    logouts = _logouts(store)
    assert len(logouts) == 1
    assert logouts[0]['details'] == 'Session expired'
    assert logouts[0]['username'] == 'staff'


def test_role_mismatch_denies_without_refreshing(sessions, clock, staff_user):
    sessions.create_session(staff_user)
    clock.advance(minutes=30)
    expires_before = sessions.get_auth_state().expires_at

    check = sessions.require_auth('admin')

    assert check.user is None
    assert not check.granted
    assert check.redirect == 'user-dashboard'
    assert check.notice == AuthDenied.message
    assert sessions.get_auth_state().expires_at == expires_before


def test_role_matching_is_exact_membership(sessions, admin_user, staff_user):
    sessions.create_session(staff_user)
    assert sessions.require_auth({'admin', 'staff'}).granted
    assert sessions.require_auth([UserRole.STAFF]).granted

    sessions.create_session(admin_user)
    check = sessions.require_auth('staff')
    assert not check.granted
    assert check.redirect == 'admin-dashboard'
    assert sessions.has_role('admin')
    assert not sessions.has_role('staff')


def test_successful_check_slides_expiry(sessions, clock, staff_user):
    sessions.create_session(staff_user)
    clock.advance(minutes=50)
    assert sessions.require_auth().granted
    clock.advance(minutes=50)

    check = sessions.require_auth()
    assert check.granted
    assert check.user.username == 'staff'


def test_anonymous_is_redirected_to_login_and_view_is_remembered(sessions, staff_user):
    check = sessions.require_auth('staff', current_view='products')
    assert check.user is None
    assert check.redirect == 'login'
    assert check.notice is None

    sessions.create_session(staff_user)
    assert sessions.consume_post_login_redirect() == 'products'
    assert sessions.consume_post_login_redirect() == 'user-dashboard'


def test_corrupt_blob_reads_as_anonymous(sessions, storage, store):
    storage.set(AUTH_KEY, '{"user": "nobody"')
    assert sessions.get_auth_state() is None
    assert sessions.require_auth().redirect == 'login'

    storage.set(AUTH_KEY, json.dumps({'user': {'id': 'x', 'username': 'y'}, 'expiresAt': 'soon'}))
    assert sessions.current_user() is None

    assert sessions.clear_session() is False
    assert storage.get(AUTH_KEY) is None
    assert _logouts(store) == []


def test_clear_session_logs_reason_and_notifies(sessions, store, staff_user):
    changes = []
    sessions.on_change(changes.append)
    sessions.create_session(staff_user)

    assert sessions.clear_session() is True
    assert sessions.clear_session() is False

    assert [(c.authenticated, c.reason) for c in changes] == [(True, 'Login'), (False, 'User logout')]
    assert [e['details'] for e in _logouts(store)] == ['User logout']


def test_new_login_ends_previous_session(sessions, store, staff_user, admin_user):
    sessions.create_session(staff_user)
    sessions.create_session(admin_user)

    assert sessions.current_user().username == 'admin'
    assert [e['username'] for e in _logouts(store)] == ['staff']


def test_failing_observer_does_not_break_login(sessions, staff_user):
    def boom(change):
        raise RuntimeError('observer bug')

    sessions.on_change(boom)
    assert sessions.create_session(staff_user) is not None


def test_other_manager_sees_external_logout(storage, store, clock, staff_user):
    tab_a = SessionManager(storage, store, clock=clock)
    tab_b = SessionManager(storage, store, clock=clock)
    seen_a, seen_b = [], []
    tab_a.on_change(seen_a.append)
    tab_b.on_change(seen_b.append)

    tab_a.create_session(staff_user)
    assert tab_b.current_user().username == 'staff'

    tab_a.clear_session()

    assert [(c.authenticated, c.reason) for c in seen_a] == [(True, 'Login'), (False, 'User logout')]
    assert [(c.authenticated, c.reason) for c in seen_b] == [
        (True, 'Logged in in another session'),
        (False, 'Logged out in another session'),
    ]
    assert tab_b.get_auth_state() is None
    # Only the manager that logged out writes the audit entry
    assert len(_logouts(store)) == 1
    tab_a.close()
    tab_b.close()


def test_monitor_check_ends_expired_session(sessions, store, clock, staff_user):
    monitor = SessionMonitor(sessions, interval=60)
    sessions.create_session(staff_user)

    assert monitor.run_once() is False
    clock.advance(hours=2)
    assert monitor.run_once() is True
    assert [e['details'] for e in _logouts(store)] == ['Session expired']


def test_monitor_start_and_stop(sessions):
    monitor = SessionMonitor(sessions, interval=3600)
    monitor.start()
    monitor.start()
    assert monitor.running
    monitor.stop()
    assert not monitor.running


def test_peek_user_has_no_side_effects(sessions, store, clock, staff_user):
    sessions.create_session(staff_user)
    clock.advance(hours=2)

    assert sessions.peek_user() is None
    assert _logouts(store) == []


def test_legacy_keys_are_migrated_and_removed(sessions, storage):
    storage.set('stockwise_user', json.dumps({'id': 'u9', 'username': 'legacy', 'role': 'staff'}))
    storage.set('stockwise_session', 'not json')

    migrated = sessions.migrate_legacy_keys()

    assert migrated.username == 'legacy'
    state = sessions.get_auth_state()
    assert state.remember_me is True
    assert state.user.role == 'staff'
    assert storage.get('stockwise_user') is None
    assert storage.get('stockwise_session') is None


def test_redirect_key_is_not_the_login_view(sessions, storage, admin_user):
    storage.set(REDIRECT_KEY, json.dumps('login'))
    sessions.create_session(admin_user)
    assert sessions.consume_post_login_redirect() == 'admin-dashboard'


def test_non_finite_expiry_reads_as_anonymous(sessions, storage):
    storage.set(AUTH_KEY, '{"user": {"id": "u1", "username": "a", "role": "admin"}, "expiresAt": Infinity}')
    assert sessions.get_auth_state() is None
    assert sessions.require_auth().redirect == 'login'


def test_malformed_role_is_denied_as_anonymous(sessions, storage, clock):
    storage.set(AUTH_KEY, json.dumps({
        'user': {'id': 'u1', 'username': 'a', 'role': ['admin']},
        'expiresAt': 10 ** 15,
    }))

    check = sessions.require_auth('admin')

    assert not check.granted
    assert check.redirect == 'login'
    assert sessions.has_role('admin') is False
