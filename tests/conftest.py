from __future__ import annotations

import copy
import itertools
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import pytest


_AUTO_IDS = itertools.count(1)


class _FakeSnap:
    def __init__(self, *, doc_id: str, exists: bool, data: dict[str, Any] | None):
        self.id = doc_id
        self.exists = bool(exists)
        self._data = copy.deepcopy(dict(data or {}))

    def to_dict(self) -> dict[str, Any]:
        return copy.deepcopy(self._data)


@dataclass
class _FakeDocRef:
    store: dict[str, dict[str, Any]]
    path: str

    @property
    def id(self) -> str:
        return self.path.rsplit("/", 1)[-1]

    def collection(self, name: str) -> "_FakeCollection":
        return _FakeCollection(store=self.store, path=f"{self.path}/{name}")

    def get(self) -> _FakeSnap:
        return _FakeSnap(doc_id=self.id, exists=self.path in self.store, data=self.store.get(self.path))

    def set(self, data: dict[str, Any], merge: bool = False) -> None:  # noqa: FBT001,FBT002
        if merge and self.path in self.store:
            merged = dict(self.store[self.path])
            merged.update(copy.deepcopy(dict(data)))
            self.store[self.path] = merged
        else:
            self.store[self.path] = copy.deepcopy(dict(data))

    def update(self, data: dict[str, Any]) -> None:
        from google.api_core.exceptions import NotFound

        if self.path not in self.store:
            raise NotFound(f"no document to update: {self.path}")
        self.store[self.path].update(copy.deepcopy(dict(data)))

    def delete(self) -> None:
        self.store.pop(self.path, None)


_OPS: dict[str, Callable[[Any, Any], bool]] = {
    "==": lambda a, b: a == b,
    ">=": lambda a, b: a is not None and a >= b,
    "<=": lambda a, b: a is not None and a <= b,
    ">": lambda a, b: a is not None and a > b,
    "<": lambda a, b: a is not None and a < b,
    "in": lambda a, b: a in b,
}


@dataclass
class _FakeQuery:
    store: dict[str, dict[str, Any]]
    path: str
    filters: list[tuple[str, str, Any]] = field(default_factory=list)
    orders: list[tuple[str, str]] = field(default_factory=list)
    _limit: Optional[int] = None
    _offset: int = 0

    def _copy(self, **changes: Any) -> "_FakeQuery":
        q = _FakeQuery(
            store=self.store,
            path=self.path,
            filters=list(self.filters),
            orders=list(self.orders),
            _limit=self._limit,
            _offset=self._offset,
        )
        for k, v in changes.items():
            setattr(q, k, v)
        return q

    def where(self, field_path: str, op: str, value: Any) -> "_FakeQuery":
        return self._copy(filters=self.filters + [(field_path, op, value)])

    def order_by(self, field_path: str, direction: str = "ASCENDING") -> "_FakeQuery":
        return self._copy(orders=self.orders + [(field_path, direction)])

    def limit(self, n: int) -> "_FakeQuery":
        return self._copy(_limit=int(n))

    def offset(self, n: int) -> "_FakeQuery":
        return self._copy(_offset=int(n))

    def stream(self):
        prefix = f"{self.path}/"
        rows = [
            (p[len(prefix):], d)
            for p, d in self.store.items()
            if p.startswith(prefix) and "/" not in p[len(prefix):]
        ]
        for f, op, v in self.filters:
            rows = [(i, d) for i, d in rows if _OPS[op](d.get(f), v)]
        for f, direction in reversed(self.orders):
            # Firestore drops documents missing an order_by field.
            rows = [(i, d) for i, d in rows if d.get(f) is not None]
            rows.sort(key=lambda r: r[1][f], reverse=str(direction).upper() == "DESCENDING")
        rows = rows[self._offset:]
        if self._limit is not None:
            rows = rows[: self._limit]
        return iter([_FakeSnap(doc_id=i, exists=True, data=d) for i, d in rows])

    def get(self):
        return list(self.stream())


@dataclass
class _FakeCollection(_FakeQuery):
    def document(self, doc_id: Optional[str] = None) -> _FakeDocRef:
        if doc_id is None:
            doc_id = f"auto{next(_AUTO_IDS):06d}"
        return _FakeDocRef(store=self.store, path=f"{self.path}/{doc_id}")

    def add(self, data: dict[str, Any]):
        ref = self.document()
        ref.set(data)
        return None, ref


class _FakeBatch:
    def __init__(self, db: "FakeFirestore"):
        self._db = db
        self._ops: list[tuple[str, _FakeDocRef, dict[str, Any]]] = []

    def set(self, ref: _FakeDocRef, data: dict[str, Any], merge: bool = False) -> None:  # noqa: FBT001,FBT002
        self._ops.append(("set_merge" if merge else "set", ref, dict(data)))

    def update(self, ref: _FakeDocRef, data: dict[str, Any]) -> None:
        self._ops.append(("update", ref, dict(data)))

    def commit(self) -> list[Any]:
        from google.api_core.exceptions import NotFound

        self._db.commits += 1
        if self._db.fail_next_commit is not None:
            exc, self._db.fail_next_commit = self._db.fail_next_commit, None
            raise exc
        # All-or-nothing: validate before applying anything.
        created = {ref.path for kind, ref, _ in self._ops if kind.startswith("set")}
        for kind, ref, _ in self._ops:
            if kind == "update" and ref.path not in self._db._store and ref.path not in created:
                raise NotFound(f"no document to update: {ref.path}")
        for kind, ref, data in self._ops:
            if kind == "update":
                ref.update(data)
            else:
                ref.set(data, merge=kind == "set_merge")
        return [None] * len(self._ops)


class FakeFirestore:
    def __init__(self):
        self._store: dict[str, dict[str, Any]] = {}
        self.commits = 0
        self.fail_next_commit: Optional[BaseException] = None

    def collection(self, name: str) -> _FakeCollection:
        return _FakeCollection(store=self._store, path=name)

    def document(self, path: str) -> _FakeDocRef:
        return _FakeDocRef(store=self._store, path=path)

    def batch(self) -> _FakeBatch:
        return _FakeBatch(self)

    # Test helpers
    def docs(self, collection: str) -> dict[str, dict[str, Any]]:
        prefix = f"{collection}/"
        return {
            p[len(prefix):]: copy.deepcopy(d)
            for p, d in self._store.items()
            if p.startswith(prefix) and "/" not in p[len(prefix):]
        }

    def put(self, path: str, data: dict[str, Any]) -> None:
        self._store[path] = copy.deepcopy(dict(data))


@pytest.fixture
def fake_db() -> FakeFirestore:
    return FakeFirestore()


@pytest.fixture(autouse=True)
def _fresh_config(monkeypatch):
    from portal.common import config

    for name in (
        "PACK_HEALTH_REQUIRED_CATEGORIES",
        "PACK_HEALTH_WEIGHTS",
        "PACK_HEALTH_EXPIRATION_WARNING_DAYS",
        "PLATFORM_FEE_PERCENTAGE",
        "FREE_TIER_PACK_LIMIT",
        "MAX_DOCUMENT_BYTES",
        "APP_URL",
    ):
        monkeypatch.delenv(name, raising=False)
    config.get_config.cache_clear()
    yield
    config.get_config.cache_clear()


class _Caller:
    def __init__(self):
        from portal.identity.context import PortalContext

        self.ctx = PortalContext(uid="sme-1", role="sme_user")

    def become(self, uid: str, role: str = "sme_user", **claims: Any) -> None:
        from portal.identity.context import PortalContext

        self.ctx = PortalContext(uid=uid, role=role, claims=claims)


@pytest.fixture
def caller() -> _Caller:
    return _Caller()


@pytest.fixture
def client(monkeypatch, fake_db, caller):
    from fastapi.testclient import TestClient

    from portal.identity.auth import get_portal_context
    from portal.service import app as app_module
    from portal.service.routers import proof_packs, qa, revenue

    for mod in (proof_packs, qa, revenue):
        monkeypatch.setattr(mod, "get_db", lambda: fake_db)

    app = app_module.app
    app.dependency_overrides[get_portal_context] = lambda: caller.ctx
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.pop(get_portal_context, None)
