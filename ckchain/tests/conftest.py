"""
Pytest configuration and fixtures for ckchain tests.

``FakeServices`` answers JSON-RPC calls through httpx's MockTransport so the
real transport and service pool are exercised. ``FakeDatabase`` is a minimal
in-memory stand-in for a pymongo database supporting the queries the index
issues (equality, array membership, ``$in``, ``$or``, sort, limit).
"""

from __future__ import annotations

import json
import os
from collections.abc import Callable
from typing import Any

import httpx
import pytest
from pymongo.errors import PyMongoError

from ckchain.index import EthereumIndex
from ckcore.cache import TTLCache
from ckcore.rpc import JSONRPCClient, RPCServicePool


class FakeServices:
    """Scripted JSON-RPC endpoints recording every call."""

    def __init__(self) -> None:
        self.responses: dict[tuple[str, str], Any] = {}
        self.calls: list[tuple[str, str, Any]] = []

    def on(self, endpoint: str, method: str, result: Any) -> None:
        """Answer ``method`` with ``result`` (or ``result(params)`` when callable)."""
        self.responses[(endpoint, method)] = result

    def _handler(self, endpoint: str) -> Callable[[httpx.Request], httpx.Response]:
        def handle(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            method, params = body["method"], body["params"]
            self.calls.append((endpoint, method, params))
            key = (endpoint, method)
            if key not in self.responses:
                return httpx.Response(
                    200, json={"error": {"code": -32601, "message": f"Method not found: {method}"}}
                )
            result = self.responses[key]
            if callable(result):
                result = result(params)
            return httpx.Response(200, json={"result": result, "error": None, "id": body["id"]})

        return handle

    def pool(self, *endpoints: str) -> RPCServicePool:
        clients = {
            name: JSONRPCClient(
                f"http://{name}.local", transport=httpx.MockTransport(self._handler(name))
            )
            for name in endpoints
        }
        return RPCServicePool(clients, cache=TTLCache())

    def methods(self, endpoint: str | None = None) -> list[str]:
        return [method for name, method, _ in self.calls if endpoint in (None, name)]

    def params(self, method: str) -> list[Any]:
        return [params for _, name, params in self.calls if name == method]


def _matches(doc: dict[str, Any], query: dict[str, Any]) -> bool:
    for key, expected in query.items():
        if key == "$or":
            if not any(_matches(doc, clause) for clause in expected):
                return False
            continue
        value = doc.get(key)
        if isinstance(expected, dict) and "$in" in expected:
            candidates = expected["$in"]
            values = value if isinstance(value, list) else [value]
            if not any(v in candidates for v in values):
                return False
        elif isinstance(value, list):
            if expected not in value:
                return False
        elif value != expected:
            return False
    return True


class FakeCursor:
    def __init__(self, docs: list[dict[str, Any]]):
        self._docs = docs

    def sort(self, keys: list[tuple[str, int]]) -> FakeCursor:
        for key, direction in reversed(keys):
            self._docs.sort(key=lambda doc: doc.get(key, 0), reverse=direction < 0)
        return self

    def limit(self, n: int) -> FakeCursor:
        if n:
            self._docs = self._docs[:n]
        return self

    def __iter__(self):
        return iter(self._docs)


class FakeCollection:
    def __init__(self, name: str):
        self.name = name
        self.docs: list[dict[str, Any]] = []
        self.find_calls = 0
        self.error: PyMongoError | None = None

    def insert_many(self, docs: list[dict[str, Any]]) -> None:
        for doc in docs:
            self.docs.append({"_id": f"{self.name}-{len(self.docs)}", **doc})

    def _check(self) -> None:
        self.find_calls += 1
        if self.error is not None:
            raise self.error

    def find(self, query: dict[str, Any] | None = None) -> FakeCursor:
        self._check()
        return FakeCursor([dict(doc) for doc in self.docs if _matches(doc, query or {})])

    def find_one(self, query: dict[str, Any] | None = None) -> dict[str, Any] | None:
        self._check()
        for doc in self.docs:
            if _matches(doc, query or {}):
                return dict(doc)
        return None


class FakeDatabase(dict):
    """Collections are created on first access, as with pymongo."""

    def __missing__(self, name: str) -> FakeCollection:
        collection = FakeCollection(name)
        self[name] = collection
        return collection


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def services() -> FakeServices:
    return FakeServices()


@pytest.fixture
def db() -> FakeDatabase:
    return FakeDatabase()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_index(db: FakeDatabase, clock: FakeClock) -> Callable[..., EthereumIndex]:
    """Build an EthereumIndex over the fake database with a controllable clock."""

    def factory(asset_contracts: dict[str, str] | None = None, **kwargs: Any) -> EthereumIndex:
        return EthereumIndex(
            db, asset_contracts=asset_contracts, cache=TTLCache(clock=clock), **kwargs
        )

    return factory


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    """Keep the developer's CRYPTOKIT_* variables and .env file out of the tests."""
    for name in list(os.environ):
        if name.upper().startswith("CRYPTOKIT_"):
            monkeypatch.delenv(name)
    monkeypatch.chdir(tmp_path)
