"""
Pytest fixtures and configuration for Echo Bot tests.

Provides:
- Mock Supabase client for the guild settings store
- A fake gateway that records sends and logins
- Sample job fixtures
"""
import os
from typing import Any, Dict, List, Optional

import pytest

from echobot.core.database import GuildSettingsStore
from echobot.models.schemas import LifecycleSignal
from echobot.services.job_loader import GuildJobLoader
from echobot.services.registry import JobRegistry
from echobot.services.scheduler import EchoScheduler
from echobot.services.task_runner import SendFailureMonitor, TaskRunner


os.environ.setdefault("DISCORD_TOKEN", "test-token")
os.environ.setdefault("SUPABASE_URL", "https://example.supabase.co")
os.environ.setdefault("SUPABASE_ANON_KEY", "test-anon-key")


# ==========================================
# MOCK SUPABASE RESPONSE & TABLE
# ==========================================

class MockSupabaseResponse:
    """Mock response from Supabase operations."""

    def __init__(self, data: list = None):
        self.data = data or []

    def execute(self):
        return self


class MockSupabaseTable:
    """Mock Supabase table operations (the subset the settings store uses)."""

    def __init__(
        self,
        table_name: str,
        mock_data: Dict[str, list],
        fail: bool = False,
        max_rows: Optional[int] = None,
    ):
        self.table_name = table_name
        self.mock_data = mock_data
        self.fail = fail
        self.max_rows = max_rows
        self._filters = []
        self._order_by: List[str] = []
        self._limit = None
        self._range = None
        self._select_fields = "*"
        self._upsert = None

    def select(self, fields: str = "*"):
        self._select_fields = fields
        return self

    def eq(self, column: str, value: Any):
        self._filters.append(("eq", column, value))
        return self

    def neq(self, column: str, value: Any):
        self._filters.append(("neq", column, value))
        return self

    def limit(self, count: int):
        self._limit = count
        return self

    def order(self, column: str, desc: bool = False):
        self._order_by.append(column)
        return self

    def range(self, start: int, end: int):
        self._range = (start, end)
        return self

    def upsert(self, data: dict, on_conflict: str = None):
        self._upsert = (data, (on_conflict or "id").split(","))
        return self

    def _apply_filters(self, results: list) -> list:
        for op, column, value in self._filters:
            if op == "eq":
                results = [r for r in results if r.get(column) == value]
            elif op == "neq":
                results = [r for r in results if r.get(column) != value]
        return results

    def execute(self):
        if self.fail:
            raise ConnectionError("database unavailable")

        rows = self.mock_data.setdefault(self.table_name, [])
        if self._upsert is not None:
            data, conflict_columns = self._upsert
            for row in rows:
                if all(row.get(c) == data.get(c) for c in conflict_columns):
                    row.update(data)
                    return MockSupabaseResponse([row])
            rows.append(dict(data))
            return MockSupabaseResponse([data])

        results = self._apply_filters(list(rows))
        if self._order_by:
            results.sort(key=lambda r: tuple(str(r.get(c) or "") for c in self._order_by))
        if self._range is not None:
            start, end = self._range
            results = results[start:end + 1]
        elif self._limit:
            results = results[:self._limit]
        # PostgREST max-rows cap
        if self.max_rows is not None:
            results = results[:self.max_rows]
        if self._select_fields != "*":
            fields = [f.strip() for f in self._select_fields.split(",")]
            results = [{f: r.get(f) for f in fields} for r in results]
        return MockSupabaseResponse(results)


class MockSupabaseClientInner:
    def __init__(self, owner: "MockSupabaseClient"):
        self.owner = owner

    def table(self, table_name: str) -> MockSupabaseTable:
        return MockSupabaseTable(
            table_name, self.owner.mock_data, fail=self.owner.fail, max_rows=self.owner.max_rows
        )


class MockSupabaseClient:
    """
    Mock Supabase client wrapper (matches SupabaseClient class structure).
    The .client property provides the table operations.
    """

    def __init__(self):
        self.mock_data: Dict[str, list] = {"guild_settings": []}
        self.fail = False
        self.max_rows: Optional[int] = None
        self.client = MockSupabaseClientInner(self)

    def seed(self, guild_id: str, key: str, value: Any) -> None:
        self.mock_data["guild_settings"].append(
            {"guild_id": guild_id, "key": key, "value": value}
        )

    def value(self, guild_id: str, key: str) -> Optional[Any]:
        for row in self.mock_data["guild_settings"]:
            if row["guild_id"] == guild_id and row["key"] == key:
                return row["value"]
        return None


# ==========================================
# FAKE GATEWAY
# ==========================================

class FakeChannel:
    def __init__(self, channel_id: str):
        self.id = channel_id

    def __repr__(self):
        return f"FakeChannel({self.id})"


class FakeGateway:
    """In-memory stand-in for DiscordGateway."""

    def __init__(self, channels: List[str] = (), guilds: int = 0):
        self.channels = {cid: FakeChannel(cid) for cid in channels}
        self.guild_count = guilds
        self.sent: List[tuple] = []
        self.logins: List[str] = []
        self.login_error: Optional[Exception] = None
        self.send_error: Optional[Exception] = None
        self.resumed = 0
        self.closed = 0

    async def login(self, token: str) -> None:
        self.logins.append(token)
        if self.login_error is not None:
            raise self.login_error

    async def resume(self) -> None:
        self.resumed += 1

    def get_channel(self, channel_id: str):
        return self.channels.get(str(channel_id))

    async def send(self, channel, payload) -> None:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((channel.id, payload))

    async def close(self) -> None:
        self.closed += 1


class RecordingSink:
    """Collects signals a gateway emits."""

    def __init__(self):
        self.signals: List[LifecycleSignal] = []

    def __call__(self, signal: LifecycleSignal) -> None:
        self.signals.append(signal)

    @property
    def kinds(self):
        return [s.kind for s in self.signals]


# ==========================================
# FIXTURES
# ==========================================

@pytest.fixture(scope="function")
def mock_db() -> MockSupabaseClient:
    """Function-scoped fresh mock client (clean for each test)."""
    return MockSupabaseClient()


@pytest.fixture(scope="function")
def storage(mock_db) -> GuildSettingsStore:
    return GuildSettingsStore(mock_db)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway(channels=["C1", "C2"], guilds=1)


@pytest.fixture
def registry() -> JobRegistry:
    return JobRegistry()


@pytest.fixture
def monitor() -> SendFailureMonitor:
    return SendFailureMonitor(window_hours=24)


@pytest.fixture
def scheduler() -> EchoScheduler:
    """
    A scheduler that is never started.

    ScheduledTask.start() needs a live AsyncIOScheduler, so tests that load
    jobs either run inside asyncio.run with ``scheduler.start()`` or patch it.
    """
    return EchoScheduler(timezone="UTC")


@pytest.fixture
def loader(storage, gateway, scheduler, registry, monitor) -> GuildJobLoader:
    return GuildJobLoader(storage, gateway, scheduler, registry, TaskRunner(gateway, monitor))


@pytest.fixture
def sample_jobs() -> List[Dict[str, Any]]:
    """Two stored jobs for guild G1: one valid, one pointing at a missing channel."""
    return [
        {"identifier": "j1", "textChannelId": "C1", "expression": "*/5 * * * *", "payload": "hi", "active": True},
        {"identifier": "j2", "textChannelId": "C9", "expression": "0 9 * * *", "payload": "yo", "active": True},
    ]


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests (isolated, fast)")
    config.addinivalue_line("markers", "integration: Integration tests (real scheduler or event loop)")
    config.addinivalue_line("markers", "edge: Edge case tests")
