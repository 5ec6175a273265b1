from datetime import date

import pytest

from fakes import FakeSupabase
from habitstack.auth import SessionAuth
from habitstack.db import SupabaseGateway
from habitstack.local_store import LocalStore
from habitstack.manager import HabitStateManager
from habitstack.models import User

# A Wednesday; its week starts on Sunday 2026-10-18.
TODAY = date(2026, 10, 21)


class Clock:
    def __init__(self, today=TODAY):
        self.today = today

    def __call__(self):
        return self.today


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def store(tmp_path):
    return LocalStore(str(tmp_path / "local.json"))


@pytest.fixture
def client():
    return FakeSupabase()


@pytest.fixture
def gateway(client):
    return SupabaseGateway(client)


@pytest.fixture
def user():
    return User(id="user-1", email="ada@example.com")


@pytest.fixture
def auth():
    return SessionAuth()


@pytest.fixture
def local_manager(auth, store, gateway, clock):
    manager = HabitStateManager(auth, store, gateway, clock=clock)
    yield manager
    manager.close()


@pytest.fixture
def remote_manager(auth, store, gateway, clock, user):
    manager = HabitStateManager(auth, store, gateway, clock=clock)
    auth.sign_in(user)
    yield manager
    manager.close()
