"""
Pytest fixtures for StockWise tests.

Provides a controllable clock, in-memory storage, a record store, a session
manager and a fully wired container.
"""

from datetime import datetime, timedelta, timezone

import pytest

from stockwise.app_container import AppContainer
from stockwise.config import Config
from stockwise.models.entities import User
from stockwise.repositories import MemoryStorage, RecordStore
from stockwise.services import SessionManager


class FakeClock:
    """Manually advanced aware UTC clock."""

    def __init__(self, start=None):
        self.now = start or datetime(2026, 1, 5, 9, 0, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def store(storage, clock):
    store = RecordStore(storage, clock=clock)
    store.initialize()
    return store


@pytest.fixture
def sessions(storage, store, clock):
    manager = SessionManager(storage, store, clock=clock)
    store.actor_provider = manager.peek_user
    yield manager
    manager.close()


@pytest.fixture
def staff_user():
    return User(id='u-staff', username='staff', email='staff@stockwise.com',
                full_name='Staff Member', role='staff')


@pytest.fixture
def admin_user():
    return User(id='u-admin', username='admin', email='admin@stockwise.com',
                full_name='System Administrator', role='admin')


@pytest.fixture
def container(storage, clock):
    config = Config(storage_backend='memory', seed_sample_data=False,
                    start_session_monitor=False)
    container = AppContainer(config, storage=storage, clock=clock)
    container.open()
    yield container
    container.close()


@pytest.fixture
def registered_admin(container):
    """An active admin created through the user service."""
    user_id = container.user_service.create_user(
        'Alice Admin', 'alice', 'alice@x.com', 'secret123', role='admin')
    return container.user_repo.get(user_id)
