import uuid
from types import SimpleNamespace

import pytest


@pytest.fixture
def anyio_backend():
    return "asyncio"


class FakeQuery:
    """Chainable stand-in for a postgrest request builder over in-memory rows."""

    def __init__(self, db, name):
        self.db = db
        self.name = name
        self.op = "select"
        self.payload = None
        self.filters = []
        self.order_by = None
        self.limit_n = None
        self.ignore_duplicates = False

    def select(self, *columns):
        self.op = "select"
        return self

    def insert(self, rows):
        self.op, self.payload = "insert", rows
        return self

    def upsert(self, row, ignore_duplicates=False):
        self.op, self.payload = "upsert", row
        self.ignore_duplicates = ignore_duplicates
        return self

    def update(self, values):
        self.op, self.payload = "update", values
        return self

    def delete(self):
        self.op = "delete"
        return self

    def eq(self, column, value):
        self.filters.append(lambda r: r.get(column) == value)
        return self

    def gte(self, column, value):
        self.filters.append(lambda r: r.get(column) is not None and str(r[column]) >= str(value))
        return self

    def lte(self, column, value):
        self.filters.append(lambda r: r.get(column) is not None and str(r[column]) <= str(value))
        return self

    def or_(self, expression):
        self.db.or_filters.append(expression)
        return self

    def order(self, column, desc=False):
        self.order_by = (column, desc)
        return self

    def limit(self, n):
        self.limit_n = n
        return self

    def execute(self):
        self.db.executed.append((self.name, self.op))
        if self.db.fail:
            raise RuntimeError("database unavailable")
        if self.op == "select" and self.db.failing_reads > 0:
            self.db.failing_reads -= 1
            raise RuntimeError("read timed out")

        rows = self.db.tables.setdefault(self.name, [])

        if self.op in ("insert", "upsert"):
            new_rows = self.payload if isinstance(self.payload, list) else [self.payload]
            written = []
            for row in new_rows:
                row = dict(row)
                row.setdefault("id", str(uuid.uuid4()))
                if self.op == "upsert":
                    if self.ignore_duplicates and any(r.get("id") == row["id"] for r in rows):
                        continue
                    rows[:] = [r for r in rows if r.get("id") != row["id"]]
                rows.append(row)
                written.append(dict(row))
            return SimpleNamespace(data=written)

        matched = [r for r in rows if all(f(r) for f in self.filters)]

        if self.op == "update":
            for row in matched:
                row.update(self.payload)
            return SimpleNamespace(data=[dict(r) for r in matched])

        if self.op == "delete":
            rows[:] = [r for r in rows if r not in matched]
            return SimpleNamespace(data=[dict(r) for r in matched])

        if self.order_by:
            column, desc = self.order_by
            matched = sorted(matched, key=lambda r: str(r.get(column) or ""), reverse=desc)
        if self.limit_n:
            matched = matched[: self.limit_n]
        return SimpleNamespace(data=[dict(r) for r in matched])


class FakeSupabase:
    def __init__(self, tables=None, fail=False, failing_reads=0):
        self.tables = {name: [dict(r) for r in rows] for name, rows in (tables or {}).items()}
        self.fail = fail
        self.failing_reads = failing_reads
        self.executed = []
        self.or_filters = []

    def table(self, name):
        return FakeQuery(self, name)


class FakeLLM:
    """Records chat calls; `reply` may be a string or an exception to raise."""

    def __init__(self, reply="", chunks=None):
        self.reply = reply
        self.chunks = chunks
        self.calls = []

    def chat(self, messages, temperature=0.7, max_tokens=2000, model=None):
        self.calls.append({"messages": messages, "temperature": temperature, "max_tokens": max_tokens, "model": model})
        if isinstance(self.reply, Exception):
            raise self.reply
        return self.reply

    def stream(self, messages, temperature=0.7, max_tokens=2000):
        self.calls.append({"messages": messages, "temperature": temperature, "max_tokens": max_tokens})
        if isinstance(self.reply, Exception):
            raise self.reply
        for chunk in self.chunks or [self.reply]:
            yield chunk


@pytest.fixture
def fake_db():
    return FakeSupabase()
