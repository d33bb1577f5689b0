"""
Pytest configuration for RosterSync tests.
"""

import copy
import os
import sys
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Any, Dict, List

import pytest

# Ensure project root is importable
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if project_root not in sys.path:
    sys.path.insert(0, project_root)

os.environ.setdefault("MODASH_API_KEY", "mock-modash-key-for-testing")
os.environ.setdefault("CRON_SECRET", "cron-secret-for-tests")
# Keep main.py from dialing a real project on import
os.environ["NEXT_PUBLIC_SUPABASE_URL"] = ""
os.environ["NEXT_PUBLIC_SUPABASE_ANON_KEY"] = ""


# ==============================================================
# 🧩 In-memory Supabase
# ==============================================================


class FakeSupabase:
    """In-memory stub for the Supabase client, enough for the query shapes we use."""

    def __init__(self):
        self.tables: Dict[str, List[Dict[str, Any]]] = {}
        self.fail_writes = set()
        self.queries: List[SimpleNamespace] = []

    def seed(self, name: str, *rows: Dict[str, Any]) -> None:
        self.tables.setdefault(name, []).extend(dict(r) for r in rows)

    def rows(self, name: str) -> List[Dict[str, Any]]:
        return self.tables.get(name, [])

    def table(self, name):
        self.tables.setdefault(name, [])
        return _FakeQuery(self, name)


class _FakeQuery:
    def __init__(self, db: FakeSupabase, name: str):
        self._db = db
        self._name = name
        self._op = "select"
        self._payload = None
        self._on_conflict = None
        self._filters = []
        self._order = None
        self._limit = None

    # --- builders ---
    def select(self, *a, **k):
        self._op = "select"
        return self

    def insert(self, payload):
        self._op, self._payload = "insert", payload
        return self

    def upsert(self, payload, on_conflict=None):
        self._op, self._payload, self._on_conflict = "upsert", payload, on_conflict
        return self

    def update(self, payload):
        self._op, self._payload = "update", payload
        return self

    def eq(self, key, val):
        self._filters.append(lambda r: r.get(key) == val)
        return self

    def in_(self, key, values):
        values = list(values)
        self._filters.append(lambda r: r.get(key) in values)
        return self

    def lte(self, key, val):
        self._filters.append(lambda r: r.get(key) is not None and r.get(key) <= val)
        return self

    def order(self, key, desc=False):
        self._order = (key, desc)
        return self

    def limit(self, n):
        self._limit = n
        return self

    # --- execution ---
    def _matching(self):
        return [r for r in self._db.tables[self._name] if all(f(r) for f in self._filters)]

    def execute(self):
        self._db.queries.append(SimpleNamespace(table=self._name, op=self._op))
        if self._op != "select" and self._name in self._db.fail_writes:
            raise RuntimeError(f"write to {self._name} rejected")

        rows = self._db.tables[self._name]

        if self._op == "insert":
            rows.append(dict(self._payload))
            return SimpleNamespace(data=[dict(self._payload)])

        if self._op == "upsert":
            keys = self._on_conflict.split(",") if self._on_conflict else []
            for row in rows:
                if keys and all(row.get(k) == self._payload.get(k) for k in keys):
                    row.update(self._payload)
                    return SimpleNamespace(data=[dict(row)])
            rows.append(dict(self._payload))
            return SimpleNamespace(data=[dict(self._payload)])

        if self._op == "update":
            matched = self._matching()
            for row in matched:
                row.update(self._payload)
            return SimpleNamespace(data=[dict(r) for r in matched])

        result = [copy.deepcopy(r) for r in self._matching()]
        if self._order:
            key, desc = self._order
            result.sort(key=lambda r: (r.get(key) is None, r.get(key)), reverse=desc)
        if self._limit is not None:
            result = result[: self._limit]
        return SimpleNamespace(data=result)


# ==============================================================
# ⏱️ Clocks
# ==============================================================


class FakeClock:
    """Aware UTC wall clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeMonotonic:
    """Monotonic seconds clock plus a sleep that advances it."""

    def __init__(self):
        self.t = 0.0
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.t

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.t += seconds


# ==============================================================
# 🔧 Shared fixtures
# ==============================================================


@pytest.fixture
def fake_db():
    return FakeSupabase()


@pytest.fixture
def clock():
    return FakeClock(datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def monotonic():
    return FakeMonotonic()


def make_report(followers=12000, engagement=0.035, avg_views=4800, username="jane.doe", **extra):
    """Provider profile report in the nested {"profile": {"profile": {...}}} shape."""
    block = {
        "followers": followers,
        "engagementRate": engagement,
        "avgViews": avg_views,
        "username": username,
        "url": f"https://instagram.com/{username}",
        "picture": "https://cdn.example.com/pic.jpg",
    }
    block.update(extra)
    return {"error": False, "profile": {"userId": "12345678", "profile": block}}
