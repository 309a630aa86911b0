"""
Shared test configuration and fixtures.

Provides an in-memory remote store that counts calls and can be made to
fail or stall, a controllable clock for TTL decisions, and a factory that
builds engines attached to a shared in-memory origin (one engine per
simulated tab).
"""

import asyncio
import copy
import logging
from collections.abc import Callable
from typing import Any

import pytest

from shaadi_kv.config import KVSyncConfig
from shaadi_kv.engine import KVSyncEngine
from shaadi_kv.exceptions import RemoteOperationError, RemoteUnavailableError
from shaadi_kv.local import LocalStoreAdapter, MemoryOrigin
from shaadi_kv.remote import RemoteConnection, RemoteStore

logger = logging.getLogger(__name__)

PREFIX = "shaadi_partner_"


class FakeRemoteStore(RemoteStore):
    """
    In-memory remote document store for testing without Cosmos DB.

    Counts every call. ``fail_init``/``fail_get``/``fail_set`` simulate
    outages; ``hold_gets``/``hold_sets`` park calls until released so tests
    can observe in-flight behaviour.
    """

    def __init__(self, docs: dict[str, dict[str, Any]] | None = None):
        self.endpoint = "fake://remote"
        self.docs: dict[str, dict[str, Any]] = copy.deepcopy(docs or {})
        self.init_calls = 0
        self.get_calls: list[str] = []
        self.set_calls: list[tuple[str, dict[str, Any]]] = []
        self.delete_calls: list[str] = []
        self.fail_init = False
        self.fail_get = False
        self.fail_set = False
        self.closed = False
        self._get_gate: asyncio.Event | None = None
        self._set_gate: asyncio.Event | None = None

    def hold_gets(self) -> None:
        self._get_gate = asyncio.Event()

    def release_gets(self) -> None:
        if self._get_gate is not None:
            self._get_gate.set()
            self._get_gate = None

    def hold_sets(self) -> None:
        self._set_gate = asyncio.Event()

    def release_sets(self) -> None:
        if self._set_gate is not None:
            self._set_gate.set()
            self._set_gate = None

    async def initialize(self) -> None:
        self.init_calls += 1
        await asyncio.sleep(0)
        if self.fail_init:
            raise RemoteUnavailableError(self.endpoint, RuntimeError("connection refused"))

    async def get(self, key: str) -> dict[str, Any] | None:
        self.get_calls.append(key)
        gate = self._get_gate
        if gate is not None:
            await gate.wait()
        if self.fail_get:
            raise RemoteOperationError("get", key, RuntimeError("503"))
        doc = self.docs.get(key)
        return copy.deepcopy(doc) if doc is not None else None

    async def set(self, key: str, document: dict[str, Any]) -> bool:
        self.set_calls.append((key, copy.deepcopy(document)))
        gate = self._set_gate
        if gate is not None:
            await gate.wait()
        if self.fail_set:
            raise RemoteOperationError("set", key, RuntimeError("503"))
        self.docs[key] = {**copy.deepcopy(document), "id": key, "key": key}
        return True

    async def delete(self, key: str) -> bool:
        self.delete_calls.append(key)
        self.docs.pop(key, None)
        return True

    async def close(self) -> None:
        self.closed = True


async def wait_until(predicate: Callable[[], Any], attempts: int = 200) -> None:
    """Yield to the event loop until ``predicate()`` is truthy."""
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def remote() -> FakeRemoteStore:
    return FakeRemoteStore()


@pytest.fixture
def origin() -> MemoryOrigin:
    """Shared local store seen by every simulated tab."""
    return MemoryOrigin()


@pytest.fixture
async def make_engine(origin: MemoryOrigin, clock: FakeClock):
    """
    Factory fixture building engines on the shared origin.

    Each call attaches a new storage area (a new "tab"). Engines are closed
    at teardown.
    """
    engines: list[KVSyncEngine] = []

    def factory(
        remote_store: RemoteStore | None = None,
        origin_id: str = "tab-a",
        **config_values: Any,
    ) -> KVSyncEngine:
        config_values.setdefault("ttl_seconds", 30.0)
        config_values.setdefault("failure_backoff_seconds", 5.0)
        config = KVSyncConfig(origin_id=origin_id, **config_values)
        candidates = [remote_store] if remote_store is not None else []
        engine = KVSyncEngine(
            LocalStoreAdapter(origin.attach(), prefix=PREFIX),
            RemoteConnection(candidates),
            config=config,
            clock=clock,
        )
        engines.append(engine)
        return engine

    yield factory

    for engine in engines:
        await engine.aclose(timeout=1.0)


@pytest.fixture
async def engine(make_engine: Callable[..., KVSyncEngine], remote: FakeRemoteStore):
    """Engine for tab-a backed by the fake remote."""
    return make_engine(remote)
