import copy
import threading
from datetime import datetime, timedelta, timezone

import pytest

from billy import db, profiles, outcomes


class FakeResponse:
    def __init__(self, data=None, error=None, count=None):
        self.data = data
        self.error = error
        self.count = count


def _same(a, b) -> bool:
    if isinstance(a, bool) or isinstance(b, bool):
        return a == b
    if a is None or b is None:
        return a is None and b is None
    return str(a) == str(b)


def _sort_key(v):
    return (v is not None, str(v) if v is not None else "")


class FakeQuery:
    """Just enough of the PostgREST query builder for billy.db."""

    def __init__(self, store: "FakeSupabase", table: str):
        self.store = store
        self.table = table
        self.op = "select"
        self.columns = "*"
        self.payload = None
        self.filters = []
        self.orders = []
        self._limit = None

    def select(self, columns="*", count=None):
        self.op = "select"
        self.columns = columns
        return self

    def insert(self, rows):
        self.op = "insert"
        self.payload = rows
        return self

    def update(self, values):
        self.op = "update"
        self.payload = values
        return self

    def delete(self):
        self.op = "delete"
        return self

    def eq(self, col, val):
        self.filters.append(lambda r: _same(r.get(col), val))
        return self

    def in_(self, col, vals):
        vals = list(vals)
        self.filters.append(lambda r: any(_same(r.get(col), v) for v in vals))
        return self

    def order(self, col, desc=False):
        self.orders.append((col, desc))
        return self

    def limit(self, n):
        self._limit = n
        return self

    def _matches(self, row) -> bool:
        return all(f(row) for f in self.filters)

    def _project(self, row):
        if self.columns.strip() == "*":
            return copy.deepcopy(row)
        cols = [c.strip() for c in self.columns.split(",")]
        return {c: copy.deepcopy(row.get(c)) for c in cols}

    def execute(self):
        with self.store.lock:
            self.store.calls.append((self.table, self.op))
            err = self.store._take_failure(self.table, self.op)
            if isinstance(err, Exception):
                raise err
            if err is not None:
                return FakeResponse(data=None, error=err)

            rows = self.store.tables.setdefault(self.table, [])

            if self.op == "insert":
                payload = self.payload if isinstance(self.payload, list) else [self.payload]
                out = []
                for r in payload:
                    row = copy.deepcopy(r)
                    if row.get("id") is None:
                        row["id"] = self.store._next_id(self.table)
                    if not row.get("created_at"):
                        row["created_at"] = self.store._next_ts()
                    rows.append(row)
                    out.append(copy.deepcopy(row))
                return FakeResponse(data=out)

            hits = [r for r in rows if self._matches(r)]

            if self.op == "update":
                for r in hits:
                    r.update(copy.deepcopy(self.payload))
                return FakeResponse(data=[copy.deepcopy(r) for r in hits])

            if self.op == "delete":
                self.store.tables[self.table] = [r for r in rows if not self._matches(r)]
                return FakeResponse(data=[copy.deepcopy(r) for r in hits])

            for col, desc in reversed(self.orders):
                hits = sorted(hits, key=lambda r: _sort_key(r.get(col)), reverse=desc)
            if self._limit is not None:
                hits = hits[: self._limit]
            return FakeResponse(data=[self._project(r) for r in hits], count=len(hits))


class FakeSupabase:
    def __init__(self):
        self.tables = {}
        self.calls = []
        self.lock = threading.RLock()
        self._ids = {}
        self._failures = {}
        self._clock = datetime(2025, 1, 1, tzinfo=timezone.utc)

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def fail(self, table: str, op: str, error="boom", times: int = 1, after: int = 0):
        """
        Make matching calls fail (``error`` may be an exception to raise).

        The first ``after`` matching calls still go through; then ``times``
        calls fail (None: every call from then on).
        """
        self._failures[(table, op)] = [error, times, after]

    def _take_failure(self, table, op):
        entry = self._failures.get((table, op))
        if not entry:
            return None
        error, times, after = entry
        if after > 0:
            entry[2] -= 1
            return None
        if times is not None:
            entry[1] -= 1
            if entry[1] <= 0:
                del self._failures[(table, op)]
        return error

    def _next_id(self, table):
        self._ids[table] = self._ids.get(table, 0) + 1
        return self._ids[table]

    def _next_ts(self):
        self._clock += timedelta(seconds=1)
        return self._clock.isoformat()

    def rows(self, table):
        return self.tables.get(table, [])


@pytest.fixture
def sb():
    fake = FakeSupabase()
    db.use_client(fake)
    yield fake
    db.use_client(None)


@pytest.fixture
def profile(sb):
    return str(profiles.add_profile("Piso", "ana@mail.com")["id"])


@pytest.fixture
def category(sb, profile):
    return str(outcomes.add_category(profile, "Comida", "#ff0000", "food")["id"])
