import pytest

from stockwise.exceptions import ValidationError
from stockwise.models.entities import UserPatch
from stockwise.security import legacy_hash, needs_rehash


def _register_alice(container, **overrides):
    fields = dict(full_name='Alice Liddell', username='alice', email='alice@x.com',
                  password='secret123', confirm_password='secret123')
    fields.update(overrides)
    return container.user_service.register(**fields)


# =============================================================================
# REGISTRATION
# =============================================================================

def test_register_creates_active_user_with_hashed_password(container):
    user_id = _register_alice(container)

    user = container.user_repo.get(user_id)
    assert user.username == 'alice'
    assert user.role == 'user'
    assert user.status == 'active'
    assert user.password != 'secret123'
    assert container.store.verify_password('secret123', user.password)


def test_duplicate_username_is_rejected_before_any_write(container):
    _register_alice(container)
    users_before = container.store.get_all('users')
    log_before = container.store.get_all('activity_logs')

    with pytest.raises(ValidationError) as excinfo:
        _register_alice(container, email='other@x.com')

    assert excinfo.value.field == 'username'
    assert container.store.get_all('users') == users_before
    assert container.store.get_all('activity_logs') == log_before


def test_duplicate_email_is_rejected_case_insensitively(container):
    _register_alice(container)
    with pytest.raises(ValidationError) as excinfo:
        _register_alice(container, username='alice2', email='ALICE@x.com')
    assert excinfo.value.field == 'email'
    assert container.user_repo.count() == 1


def test_similar_username_is_not_a_duplicate(container):
    _register_alice(container)
    _register_alice(container, username='alice_b', email='b@x.com')
    assert container.user_repo.count() == 2


@pytest.mark.parametrize('overrides, field', [
    ({'full_name': 'A'}, 'full_name'),
    ({'username': 'al'}, 'username'),
    ({'username': 'alice smith'}, 'username'),
    ({'email': 'alice@x'}, 'email'),
    ({'password': '12345', 'confirm_password': '12345'}, 'password'),
    ({'confirm_password': 'different'}, 'confirm_password'),
    ({'role': 'superuser'}, 'role'),
])
def test_register_validation(container, overrides, field):
    with pytest.raises(ValidationError) as excinfo:
        _register_alice(container, **overrides)
    assert excinfo.value.field == field
    assert container.user_repo.count() == 0


# =============================================================================
# AUTHENTICATION
# =============================================================================

def test_authenticate_opens_session_and_stamps_last_login(container):
    user_id = _register_alice(container)

    user = container.user_service.authenticate('alice', 'secret123', remember=True)

    assert user.id == user_id
    assert container.sessions.current_user().username == 'alice'
    assert container.sessions.get_auth_state().remember_me is True
    assert container.user_repo.get(user_id).last_login is not None


def test_authenticate_is_case_insensitive_but_exact(container):
    _register_alice(container)
    assert container.user_service.authenticate('ALICE', 'secret123') is not None
    container.sessions.clear_session()
    assert container.user_service.authenticate('alic', 'secret123') is None


def test_authenticate_rejects_wrong_password_and_inactive_users(container):
    user_id = _register_alice(container)
    assert container.user_service.authenticate('alice', 'wrong-pass') is None

    container.user_repo.update(user_id, UserPatch(status='inactive'))
    assert container.user_service.authenticate('alice', 'secret123') is None
    assert container.sessions.current_user() is None


def test_legacy_hash_matches_browser_values():
    assert legacy_hash('') == 'hash_0'
    assert legacy_hash('a') == 'hash_2p'
    assert legacy_hash('ab') == 'hash_2e9'


def test_legacy_password_is_upgraded_on_login(container):
    user_id = container.store.insert('users', {
        'username': 'legacy', 'email': 'legacy@x.com', 'password': legacy_hash('password123'),
        'full_name': 'Legacy User', 'role': 'staff', 'status': 'active',
    })

    assert container.user_service.authenticate('legacy', 'password123') is not None

    stored = container.user_repo.get(user_id).password
    assert not needs_rehash(stored)
    assert container.store.verify_password('password123', stored)


# =============================================================================
# USER MANAGEMENT
# =============================================================================

def test_update_user_keeps_own_email_but_rejects_anothers(container):
    alice_id = _register_alice(container)
    _register_alice(container, username='bob', email='bob@x.com')

    assert container.user_service.update_user(alice_id, UserPatch(email='alice@x.com', full_name='Alice L'))
    with pytest.raises(ValidationError):
        container.user_service.update_user(alice_id, UserPatch(email='BOB@x.com'))
    assert container.user_repo.get(alice_id).full_name == 'Alice L'


def test_update_user_hashes_new_password(container):
    alice_id = _register_alice(container)
    container.user_service.update_user(alice_id, UserPatch(password='newpass1'))
    assert container.user_service.authenticate('alice', 'newpass1') is not None


def test_update_missing_user_returns_false(container):
    assert container.user_service.update_user('missing', UserPatch(full_name='Nobody')) is False


def test_change_password_checks_current_and_length(container):
    alice_id = _register_alice(container)
    service = container.user_service

    with pytest.raises(ValidationError):
        service.change_password(alice_id, 'wrong-pass', 'another1', 'another1')
    with pytest.raises(ValidationError):
        service.change_password(alice_id, 'secret123', '123', '123')
    with pytest.raises(ValidationError):
        service.change_password(alice_id, 'secret123', 'another1', 'another2')

    assert service.change_password(alice_id, 'secret123', 'another1', 'another1')
    assert service.authenticate('alice', 'another1') is not None


def test_reset_password_requires_minimum_length(container):
    alice_id = _register_alice(container)
    with pytest.raises(ValidationError):
        container.user_service.reset_password(alice_id, 'abc')
    assert container.user_service.reset_password(alice_id, 'abcdef')


def test_cannot_delete_own_account_from_admin_screen(container, registered_admin):
    bob_id = _register_alice(container, username='bob', email='bob@x.com')
    service = container.user_service

    with pytest.raises(ValidationError):
        service.delete_user(registered_admin.id, registered_admin.id)
    assert service.delete_user(bob_id, registered_admin.id) is True
    assert container.user_repo.get(bob_id) is None


def test_delete_own_account_ends_session(container):
    alice_id = _register_alice(container)
    container.user_service.authenticate('alice', 'secret123')

    with pytest.raises(ValidationError):
        container.user_service.delete_own_account(alice_id, 'wrong-pass')
    assert container.user_service.delete_own_account(alice_id, 'secret123')

    assert container.sessions.current_user() is None
    logouts = [e for e in container.store.get_all('activity_logs') if e['action'] == 'LOGOUT']
    assert logouts[-1]['details'] == 'Account deleted'


def test_public_view_hides_password(container):
    alice_id = _register_alice(container)
    data = container.user_service.public_view(container.user_repo.get(alice_id))
    assert 'password' not in data
    assert data['username'] == 'alice'


def test_login_ignores_malformed_user_records(container):
    container.store.import_data({'users': [
        {'id': 'u1', 'username': 12345, 'email': None, 'password': None, 'status': 'active'},
    ]})
    alice_id = _register_alice(container)

    assert container.user_service.authenticate('12345', 'whatever') is None
    assert container.user_service.authenticate('alice', 'secret123').id == alice_id
