"""
Pytest Configuration and Shared Fixtures.

This module provides common fixtures for all tests:

- fake_supabase: in-memory stand-in for the Supabase client (tables + auth)
- fake_places: canned Google Places client
- sample_location: a business location row owned by the test user
- json_transport: builds an httpx.MockTransport from a request handler
"""

import os
import uuid
from datetime import datetime, timezone
from types import SimpleNamespace
from typing import Any, Callable, Optional

import httpx
import pytest
from postgrest.exceptions import APIError

# Settings are read at import time by the API module
os.environ.setdefault("SUPABASE_URL", "https://project.supabase.co")
os.environ.setdefault("SUPABASE_KEY", "service-role-key")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("APP_URL", "https://app.example.com")

TEST_USER_ID = "11111111-1111-1111-1111-111111111111"
OTHER_USER_ID = "22222222-2222-2222-2222-222222222222"
TEST_TOKEN = "test-token"
LOCATION_ID = "33333333-3333-3333-3333-333333333333"


# =============================================================================
# Fake Supabase
# =============================================================================


class FakeQuery:
    """Chainable query builder evaluated against in-memory rows."""

    def __init__(self, db: "FakeSupabase", table: str):
        self.db = db
        self.table_name = table
        self.op = "select"
        self.payload: Any = None
        self.on_conflict: Optional[str] = None
        self.filters: list[Callable[[dict], bool]] = []
        self.orders: list[tuple[str, bool, bool]] = []
        self.limit_n: Optional[int] = None
        self._negate = False

    # Operations

    def select(self, *columns: str, **kwargs: Any) -> "FakeQuery":
        self.op = "select"
        return self

    def insert(self, rows: Any, **kwargs: Any) -> "FakeQuery":
        self.op = "insert"
        self.payload = rows
        return self

    def upsert(self, rows: Any, on_conflict: Optional[str] = None, **kwargs: Any) -> "FakeQuery":
        self.op = "upsert"
        self.payload = rows
        self.on_conflict = on_conflict
        return self

    def update(self, values: dict[str, Any]) -> "FakeQuery":
        self.op = "update"
        self.payload = values
        return self

    def delete(self) -> "FakeQuery":
        self.op = "delete"
        return self

    # Filters

    @property
    def not_(self) -> "FakeQuery":
        self._negate = True
        return self

    def _add(self, predicate: Callable[[dict], bool]) -> "FakeQuery":
        if self._negate:
            self._negate = False
            self.filters.append(lambda row: not predicate(row))
        else:
            self.filters.append(predicate)
        return self

    def eq(self, column: str, value: Any) -> "FakeQuery":
        return self._add(lambda row: row.get(column) == value)

    def neq(self, column: str, value: Any) -> "FakeQuery":
        return self._add(lambda row: row.get(column) != value)

    def lte(self, column: str, value: Any) -> "FakeQuery":
        return self._add(lambda row: row.get(column) is not None and row[column] <= value)

    def gte(self, column: str, value: Any) -> "FakeQuery":
        return self._add(lambda row: row.get(column) is not None and row[column] >= value)

    def contains(self, column: str, values: list[Any]) -> "FakeQuery":
        return self._add(lambda row: all(v in (row.get(column) or []) for v in values))

    def is_(self, column: str, value: str) -> "FakeQuery":
        return self._add(lambda row: row.get(column) is None)

    def order(self, column: str, desc: bool = False, nullsfirst: bool = False) -> "FakeQuery":
        self.orders.append((column, desc, nullsfirst))
        return self

    def limit(self, n: int) -> "FakeQuery":
        self.limit_n = n
        return self

    # Execution

    def _matching(self) -> list[dict[str, Any]]:
        return [row for row in self.db.rows(self.table_name) if all(f(row) for f in self.filters)]

    def execute(self) -> SimpleNamespace:
        self.db.calls.append((self.table_name, self.op, self.payload))
        failure = self.db.failures.pop((self.table_name, self.op), None)
        if failure is not None:
            raise failure
        handler = getattr(self, f"_execute_{self.op}")
        return SimpleNamespace(data=handler())

    def _execute_select(self) -> list[dict[str, Any]]:
        rows = [dict(row) for row in self._matching()]
        for column, desc, nullsfirst in reversed(self.orders):
            present = sorted(
                (r for r in rows if r.get(column) is not None),
                key=lambda r: r[column],
                reverse=desc,
            )
            missing = [r for r in rows if r.get(column) is None]
            rows = missing + present if nullsfirst else present + missing
        if self.limit_n is not None:
            rows = rows[: self.limit_n]
        return rows

    def _execute_insert(self) -> list[dict[str, Any]]:
        rows = self.payload if isinstance(self.payload, list) else [self.payload]
        return [dict(self.db.insert_row(self.table_name, dict(row))) for row in rows]

    def _execute_upsert(self) -> list[dict[str, Any]]:
        rows = self.payload if isinstance(self.payload, list) else [self.payload]
        keys = [k.strip() for k in (self.on_conflict or "id").split(",")]
        stored = []
        for row in rows:
            existing = next(
                (
                    r
                    for r in self.db.rows(self.table_name)
                    if all(r.get(k) == row.get(k) for k in keys)
                ),
                None,
            )
            if existing is not None:
                existing.update(row)
                stored.append(dict(existing))
            else:
                stored.append(dict(self.db.insert_row(self.table_name, dict(row))))
        return stored

    def _execute_update(self) -> list[dict[str, Any]]:
        updated = []
        for row in self._matching():
            row.update(self.payload)
            updated.append(dict(row))
        return updated

    def _execute_delete(self) -> list[dict[str, Any]]:
        doomed = self._matching()
        doomed_ids = {id(row) for row in doomed}
        table = self.db.rows(self.table_name)
        table[:] = [row for row in table if id(row) not in doomed_ids]
        return [dict(row) for row in doomed]


class FakeAuth:
    def __init__(self) -> None:
        self.tokens: dict[str, SimpleNamespace] = {}

    def get_user(self, token: str) -> SimpleNamespace:
        if token not in self.tokens:
            raise ValueError("invalid JWT")
        return SimpleNamespace(user=self.tokens[token])


class FakeSupabase:
    """In-memory tables behind the supabase-py query builder API.

    ``unique`` maps a table to column tuples; inserting a duplicate raises
    postgrest ``APIError`` with code 23505 like Postgres would.
    """

    def __init__(self) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = {}
        self.unique: dict[str, tuple[str, ...]] = {}
        self.calls: list[tuple[str, str, Any]] = []
        self.failures: dict[tuple[str, str], Exception] = {}
        self.auth = FakeAuth()

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def fail_next(self, name: str, op: str, error: Exception) -> None:
        """Make the next ``op`` on table ``name`` raise ``error``."""
        self.failures[(name, op)] = error

    def rows(self, name: str) -> list[dict[str, Any]]:
        return self.tables.setdefault(name, [])

    def seed(self, name: str, *rows: dict[str, Any]) -> None:
        for row in rows:
            self.insert_row(name, dict(row))

    def insert_row(self, name: str, row: dict[str, Any]) -> dict[str, Any]:
        unique = self.unique.get(name)
        if unique and any(all(r.get(c) == row.get(c) for c in unique) for r in self.rows(name)):
            raise APIError({"message": "duplicate key value", "code": "23505", "hint": None, "details": None})
        row.setdefault("id", str(uuid.uuid4()))
        row.setdefault("created_at", datetime.now(timezone.utc).isoformat())
        self.rows(name).append(row)
        return row

    def add_user(self, token: str, user_id: str, email: str = "owner@example.com") -> None:
        self.auth.tokens[token] = SimpleNamespace(id=user_id, email=email)


class FakePlaces:
    """Canned Google Places responses with the client's async interface."""

    def __init__(self) -> None:
        self.suggestions: list[dict[str, Any]] = []
        self.nearby: list[dict[str, Any]] = []
        self.text_results: list[dict[str, Any]] = []
        self.details: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple[str, Any]] = []

    async def autocomplete(self, text: str) -> list[dict[str, Any]]:
        self.calls.append(("autocomplete", text))
        return self.suggestions

    async def place_details(self, place_id: str, fields: Optional[list[str]] = None) -> dict[str, Any]:
        self.calls.append(("place_details", place_id))
        return self.details.get(place_id, {})

    async def nearby_search(self, lat: float, lng: float, radius: int, keyword: Optional[str] = None):
        self.calls.append(("nearby_search", keyword))
        return self.nearby

    async def text_search(self, query: str) -> list[dict[str, Any]]:
        self.calls.append(("text_search", query))
        return self.text_results

    def photo_urls(self, photos: Optional[list[dict[str, Any]]], limit: int, max_width: int = 400) -> list[str]:
        refs = [p["photo_reference"] for p in photos or [] if p.get("photo_reference")]
        return [f"https://photos.example.com/{ref}?w={max_width}" for ref in refs[:limit]]

    async def photo_urls_for_place(self, place_id: str, limit: int, max_width: int = 400) -> list[str]:
        return self.photo_urls(self.details.get(place_id, {}).get("photos"), limit, max_width)

    async def details_many(self, place_ids: list[str], fields: Optional[list[str]] = None):
        return [self.details.get(place_id) for place_id in place_ids]

    async def aclose(self) -> None:
        pass


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def _fresh_settings():
    """Re-read settings from the environment for every test."""
    from antistatic.config.settings import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def fake_supabase() -> FakeSupabase:
    db = FakeSupabase()
    db.add_user(TEST_TOKEN, TEST_USER_ID)
    return db


@pytest.fixture
def fake_places() -> FakePlaces:
    return FakePlaces()


@pytest.fixture
def sample_location() -> dict:
    """Return a business location owned by the test user."""
    return {
        "id": LOCATION_ID,
        "user_id": TEST_USER_ID,
        "name": "Bean There Cafe",
        "place_id": "ChIJanchor",
        "formatted_address": "12 Long Street, Cape Town, 8001, South Africa",
        "lat": -33.9249,
        "lng": 18.4241,
        "category": "Cafe, Coffee shop",
        "categories": ["Cafe", "Coffee shop"],
        "phone_number": "+27 21 555 0101",
        "website": "https://beanthere.example.com",
        "google_location_name": "accounts/123/locations/456",
        "enabled_tools": ["reputation_hub"],
    }


@pytest.fixture
def json_transport():
    """Build an ``httpx.MockTransport`` that records requests."""

    def _build(handler: Callable[[httpx.Request], httpx.Response]):
        seen: list[httpx.Request] = []

        def _handle(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return handler(request)

        transport = httpx.MockTransport(_handle)
        transport.requests = seen
        return transport

    return _build
