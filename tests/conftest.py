"""
Pytest configuration and shared fixtures.
"""

import asyncio
from typing import Any, Dict, List, Optional, Tuple

import pytest

from jobtracker.adapter import LocalStoreAdapter
from jobtracker.cache import EntityCache
from jobtracker.coordinator import MutationCoordinator
from jobtracker.errors import StoreError
from jobtracker.identity import Identity
from jobtracker.session import TrackerSession
from jobtracker.store_service import EntityStore


class GatedAdapter:
    """
    Adapter double that forwards to a real adapter, but lets a test hold
    calls in flight (``hold``/``release``) or make the next call of one kind
    fail (``fail_next``).
    """

    def __init__(self, inner):
        self.inner = inner
        self.calls: List[Tuple[str, tuple]] = []
        self._gate: Optional[asyncio.Event] = None
        self._failures: Dict[str, StoreError] = {}

    def hold(self) -> None:
        self._gate = asyncio.Event()

    def release(self) -> None:
        gate, self._gate = self._gate, None
        if gate is not None:
            gate.set()

    def fail_next(self, action: str, error: StoreError) -> None:
        self._failures[action] = error

    def count(self, action: str) -> int:
        return sum(1 for name, _ in self.calls if name == action)

    async def _run(self, action: str, *args: Any, **kwargs: Any):
        self.calls.append((action, args))
        gate = self._gate
        if gate is not None:
            await gate.wait()
        error = self._failures.pop(action, None)
        if error is not None:
            raise error
        return await getattr(self.inner, action)(*args, **kwargs)

    async def list(self, entity_type, order=None):
        return await self._run("list", entity_type, order=order)

    async def get(self, entity_type, entity_id):
        return await self._run("get", entity_type, entity_id)

    async def create(self, entity_type, fields):
        return await self._run("create", entity_type, fields)

    async def update(self, entity_type, entity_id, fields):
        return await self._run("update", entity_type, entity_id, fields)

    async def delete(self, entity_type, entity_id):
        return await self._run("delete", entity_type, entity_id)


@pytest.fixture
def store(tmp_path) -> EntityStore:
    """Empty SQLite-backed store."""
    return EntityStore.open(tmp_path / "test.db")


@pytest.fixture
def alice() -> Identity:
    return Identity.signed_in("alice", "token-alice")


@pytest.fixture
def bob() -> Identity:
    return Identity.signed_in("bob", "token-bob")


@pytest.fixture
def job_fields() -> Dict[str, Any]:
    """Valid job create payload."""
    return {"title": "Backend Engineer", "company": "Acme", "notes": "referral from Sam"}


@pytest.fixture
def adapter(store, alice) -> GatedAdapter:
    return GatedAdapter(LocalStoreAdapter(store, alice))


@pytest.fixture
def cache() -> EntityCache:
    return EntityCache()


@pytest.fixture
def coordinator(cache, adapter, alice) -> MutationCoordinator:
    return MutationCoordinator(cache, adapter, alice)


@pytest.fixture
def session(store) -> TrackerSession:
    """Session whose adapters are GatedAdapters over the local store."""
    return TrackerSession(lambda identity: GatedAdapter(LocalStoreAdapter(store, identity)))


@pytest.fixture
def settle():
    """Let scheduled tasks run until they block."""

    async def _settle(rounds: int = 10) -> None:
        for _ in range(rounds):
            await asyncio.sleep(0)

    return _settle


@pytest.fixture
def gated_adapter():
    """The GatedAdapter class, for tests that build their own adapter factory."""
    return GatedAdapter
