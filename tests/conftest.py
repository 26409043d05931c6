from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from peertrace.db.sqlite_runtime import open_db
from peertrace.db.sqlite_schema import init_schema
from peertrace.vpn.statistics import Session


class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeStore:
    """In-memory metadata store with optional per-key failures and delays."""

    def __init__(self, data: dict[str, dict[str, str]] | None = None) -> None:
        self.data = data or {}
        self.fail_keys: set[str] = set()
        self.delay = 0.0
        self.calls: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.cancelled: list[str] = []

    async def get_metadata(self, meta_key: str) -> dict[str, str]:
        self.calls.append(meta_key)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if meta_key in self.fail_keys:
                raise RuntimeError(f"store unavailable for {meta_key}")
            if self.delay:
                await asyncio.sleep(self.delay)
            return dict(self.data.get(meta_key, {}))
        except asyncio.CancelledError:
            self.cancelled.append(meta_key)
            raise
        finally:
            self.in_flight -= 1

    async def get_updated_at(self, meta_key: str):
        return None


def session(label: str, *addrs: str, endpoint: str | None = None, last_active: float | None = None) -> Session:
    return Session(label=label, virtual_addresses=tuple(addrs), endpoint=endpoint, last_active=last_active)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    path = tmp_path / "peertrace.db"
    with open_db(path) as conn:
        init_schema(conn)
    return path
