import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from readboost.core.config import RemoteBackend, Settings
from readboost.models.progress import Identity
from readboost.services.reconciliation import ProgressReconciler
from readboost.services.sessions import SessionTracker
from readboost.stores.local import SqlLocalStore
from readboost.stores.remote import MemoryRemoteStore

DAY0 = datetime(2024, 3, 4, tzinfo=timezone.utc)

REMOTE_WRITES = {"set_document", "update_fields", "run_transaction"}
LOCAL_WRITES = {"put_progress", "update_field"}


class FakeClock:
    """Settable clock."""

    def __init__(self, now: datetime = DAY0 + timedelta(hours=9)):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class StoreDown(ConnectionError):
    pass


class FlakyStore:
    """
    Wraps a store, records every call and fails or stalls chosen methods.

    @param inner - Real store doing the work
    @param methods - Method names forwarded to the inner store
    """

    def __init__(self, inner, methods):
        self.inner = inner
        self.methods = set(methods)
        self.calls: list[tuple] = []
        self.failing: set[str] = set()
        self.delay = 0.0

    def fail(self, *methods: str) -> None:
        self.failing.update(methods or self.methods)

    def recover(self) -> None:
        self.failing.clear()
        self.delay = 0.0

    def called(self, *names: str) -> list[tuple]:
        return [call for call in self.calls if call[0] in names]

    def __getattr__(self, name):
        if name not in self.methods:
            return getattr(self.inner, name)

        async def call(*args):
            self.calls.append((name, *args))
            if self.delay:
                await asyncio.sleep(self.delay)
            if name in self.failing:
                raise StoreDown(f"{name} unavailable")
            return await getattr(self.inner, name)(*args)

        return call


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        remote_backend=RemoteBackend.MEMORY,
        local_database_url="sqlite://",
        store_timeout_seconds=0.5,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sql_store():
    store = SqlLocalStore("sqlite://")
    store.init()
    yield store
    store.dispose()


@pytest.fixture
def memory_remote():
    return MemoryRemoteStore()


@pytest.fixture
def remote(memory_remote):
    return FlakyStore(
        memory_remote,
        {"ping", "get_document", "set_document", "update_fields", "run_transaction", "query"},
    )


@pytest.fixture
def local(sql_store):
    return FlakyStore(sql_store, {"ping", "get_progress", "put_progress", "update_field"})


@pytest.fixture
def tracker(remote, settings, clock):
    return SessionTracker(remote, settings, clock=clock)


@pytest.fixture
def reconciler(remote, local, settings, tracker, clock):
    return ProgressReconciler(remote, local, settings, sessions=tracker, clock=clock)


@pytest.fixture
def alice():
    return Identity(user_id="alice", display_name="Alice")


@pytest.fixture
def bob():
    return Identity(user_id="bob", display_name="Bob")


@pytest.fixture
def run():
    return asyncio.run
