from __future__ import annotations

import random
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path

import httpx
import pytest
from postgrest.exceptions import APIError

# Ensure repo root is importable so `import app` works under pytest's import modes.
_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(_ROOT))

from app import create_app  # noqa: E402
from chains.tracker import close_trackers  # noqa: E402
from extensions import db  # noqa: E402


class FakeResponse:
    def __init__(self, data):
        self.data = data
        self.count = None


class FakeQuery:
    """Just enough of the postgrest query builder for the StarWish services."""

    def __init__(self, backend: "FakeSupabase", table: str):
        self.backend = backend
        self.table = table
        self.op = "select"
        self.payload = None
        self.filters = []
        self.order_key = None
        self.order_desc = False
        self.on_conflict = None
        self.ignore_duplicates = False

    def select(self, *columns, **kwargs):
        self.op = "select"
        return self

    def insert(self, payload, **kwargs):
        self.op = "insert"
        self.payload = payload
        return self

    def upsert(self, payload, on_conflict="", ignore_duplicates=False, **kwargs):
        self.op = "upsert"
        self.payload = payload
        self.on_conflict = [column for column in on_conflict.split(",") if column] or ["id"]
        self.ignore_duplicates = ignore_duplicates
        return self

    def update(self, payload, **kwargs):
        self.op = "update"
        self.payload = payload
        return self

    def delete(self, **kwargs):
        self.op = "delete"
        return self

    def eq(self, column, value):
        self.filters.append(lambda row: row.get(column) == value)
        return self

    def in_(self, column, values):
        allowed = set(values)
        self.filters.append(lambda row: row.get(column) in allowed)
        return self

    def order(self, column, desc=False):
        self.order_key = column
        self.order_desc = desc
        return self

    def execute(self):
        failure = self.backend.failures.pop((self.table, self.op), None)
        if failure is not None:
            raise failure
        rows = self.backend.tables.setdefault(self.table, [])
        matching = [row for row in rows if all(check(row) for check in self.filters)]

        if self.op == "select":
            result = [dict(row) for row in matching]
            if self.order_key:
                result.sort(key=lambda row: row.get(self.order_key) or "", reverse=self.order_desc)
            return FakeResponse(result)

        if self.op == "insert":
            payloads = self.payload if isinstance(self.payload, list) else [self.payload]
            inserted = [self.backend.add_row(self.table, payload) for payload in payloads]
            return FakeResponse([dict(row) for row in inserted])

        if self.op == "upsert":
            payloads = self.payload if isinstance(self.payload, list) else [self.payload]
            written = []
            for payload in payloads:
                existing = next(
                    (
                        row
                        for row in rows
                        if all(row.get(column) == payload.get(column) for column in self.on_conflict)
                    ),
                    None,
                )
                if existing is not None:
                    if not self.ignore_duplicates:
                        existing.update(payload)
                        written.append(dict(existing))
                    continue
                written.append(dict(self.backend.add_row(self.table, payload)))
            return FakeResponse(written)

        if self.op == "update":
            for row in matching:
                row.update(self.payload)
            return FakeResponse([dict(row) for row in matching])

        for row in matching:
            rows.remove(row)
        return FakeResponse([dict(row) for row in matching])


class FakeSupabase:
    def __init__(self):
        self.tables: dict[str, list[dict]] = {}
        self.failures: dict[tuple[str, str], Exception] = {}

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def fail_next(self, table: str, op: str, message: str = "rejected", code: str = "42501") -> None:
        self.failures[(table, op)] = APIError({"message": message, "code": code, "hint": None, "details": None})

    def fail_next_transport(self, table: str, op: str, message: str = "connection refused") -> None:
        self.failures[(table, op)] = httpx.ConnectError(message)

    def add_row(self, table: str, payload: dict) -> dict:
        now = datetime.now(timezone.utc).isoformat()
        row = {"id": str(uuid.uuid4()), "created_at": now, "updated_at": now}
        row.update(payload)
        self.tables.setdefault(table, []).append(row)
        return row


def _make_app(**overrides):
    config = {
        "TESTING": True,
        "SECRET_KEY": "starwish-tests",
        "SQLALCHEMY_DATABASE_URI": "sqlite://",
        "USE_SUPABASE": False,
        "SUPABASE_CLIENT": None,
        "STARWISH_PUBLIC_ORIGIN": "https://starwish.test",
        "BLIND_BOX_RNG": random.Random(20240214),
    }
    config.update(overrides)
    return create_app(config)


@pytest.fixture()
def app():
    app = _make_app()
    yield app
    close_trackers(app)
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def fake_supabase():
    return FakeSupabase()


@pytest.fixture()
def supabase_app(fake_supabase):
    app = _make_app(USE_SUPABASE=True, SUPABASE_CLIENT=fake_supabase)
    yield app
    close_trackers(app)
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


def sign_up(client, email: str = "nova@example.com", name: str = "Nova", fingerprint: str = "fp-nova") -> dict:
    resp = client.post(
        "/api/session/sign-up",
        json={"email": email, "password": "stardust", "name": name},
        headers={"X-Fingerprint": fingerprint},
    )
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()


def add_wish(client, title: str, **fields) -> dict:
    payload = {"title": title}
    payload.update(fields)
    resp = client.post("/api/wishes", json=payload)
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()
