from __future__ import annotations

import asyncio

import pytest

from peertrace.identity.registry import IdentityRegistry
from peertrace.identity.vpn_profile import DEFAULT_VPN_PROFILE_CN, VPNProfile
from peertrace.vpn.statistics import StaticStatisticsSource

from conftest import FakeStore, session


def _registry(source, store, **kwargs) -> IdentityRegistry:
    return IdentityRegistry(source, store, **kwargs)


def test_refresh_creates_identities_with_connections(store):
    source = StaticStatisticsSource(
        identities={"alice": {"name": "Alice"}, "bob": {}},
        sessions=[
            session("alice", "10.8.0.5", endpoint="203.0.113.5:1194", last_active=100.0),
            session("alice", "10.8.0.9", endpoint="198.51.100.7:1194", last_active=250.0),
            session("carol", "10.8.0.7", last_active=300.0),
        ],
    )
    registry = _registry(source, store)
    snapshot = asyncio.run(registry.refresh())

    assert set(snapshot) == {"alice", "bob"}
    alice = snapshot["alice"]
    assert isinstance(alice, VPNProfile)
    assert alice.settings["name"] == "Alice"
    assert alice.settings["cn"] == "alice"
    assert [c.endpoint for c in alice.connections] == ["203.0.113.5:1194", "198.51.100.7:1194"]
    assert alice.last_active_timestamp == 250.0
    assert snapshot["bob"].connections == []
    assert snapshot["bob"].last_active_timestamp is None


def test_identity_instances_are_updated_in_place(store):
    source = StaticStatisticsSource(identities={"alice": {"name": "Alice"}})
    registry = _registry(source, store)
    first = asyncio.run(registry.refresh())["alice"]

    source.identities = {"alice": {"name": "Alice Renamed"}}
    source.sessions = [session("alice", "10.8.0.5", last_active=42.0)]
    second = asyncio.run(registry.refresh())["alice"]

    assert second is first
    assert second.settings["name"] == "Alice Renamed"
    assert second.last_active_timestamp == 42.0


def test_label_absent_from_next_pass_is_removed(store):
    source = StaticStatisticsSource(identities={"alice": {}, "bob": {}})
    registry = _registry(source, store)
    asyncio.run(registry.refresh())
    assert "bob" in registry

    source.identities = {"alice": {}}
    # Removal happens only when the next pass runs
    assert "bob" in registry
    asyncio.run(registry.refresh())
    assert "bob" not in registry
    assert set(registry.get_snapshot()) == {"alice"}


def test_no_active_flag_left_false_after_refresh(store):
    source = StaticStatisticsSource(identities={"alice": {}, "bob": {}})
    registry = _registry(source, store)
    asyncio.run(registry.refresh())
    source.identities = {"bob": {}}
    snapshot = asyncio.run(registry.refresh())
    assert all(identity.active for identity in snapshot.values())


def test_persisted_metadata_overrides_live_settings():
    store = FakeStore({"vpn_profile:alice": {"F": "2", "note": "vip"}})
    source = StaticStatisticsSource(identities={"alice": {"F": 1, "other": "x"}})
    registry = _registry(source, store)
    alice = asyncio.run(registry.refresh())["alice"]

    assert alice.settings["F"] == 2
    assert alice.settings["note"] == "vip"
    assert alice.settings["other"] == "x"
    assert alice.metadata == {"F": 2, "note": "vip"}


def test_metadata_is_reapplied_on_every_pass():
    store = FakeStore({"vpn_profile:alice": {"F": "2"}})
    source = StaticStatisticsSource(identities={"alice": {"F": 1}})
    registry = _registry(source, store)
    asyncio.run(registry.refresh())
    asyncio.run(registry.refresh())
    assert store.calls == ["vpn_profile:alice", "vpn_profile:alice"]
    assert registry.get("alice").settings["F"] == 2


def test_refresh_twice_is_idempotent():
    store = FakeStore({"vpn_profile:alice": {"F": "2"}})
    source = StaticStatisticsSource(
        identities={"alice": {"F": 1}, "bob": {}},
        sessions=[session("alice", "10.8.0.5", last_active=10.0)],
    )
    registry = _registry(source, store)

    def _state():
        return {
            label: (dict(i.settings), list(i.connections), i.last_active_timestamp)
            for label, i in registry.get_snapshot().items()
        }

    asyncio.run(registry.refresh())
    before = _state()
    asyncio.run(registry.refresh())
    assert _state() == before


def test_store_failure_aborts_pass_and_cancels_other_fetches():
    store = FakeStore()
    store.fail_keys = {"vpn_profile:bad"}
    store.delay = 0.05
    source = StaticStatisticsSource(identities={"bad": {}, "slow1": {}, "slow2": {}})
    registry = _registry(source, store)

    with pytest.raises(RuntimeError, match="store unavailable"):
        asyncio.run(registry.refresh())

    assert set(store.cancelled) == {"vpn_profile:slow1", "vpn_profile:slow2"}
    # Live reconciliation already happened before the failed merge
    assert set(registry.get_snapshot()) == {"bad", "slow1", "slow2"}


def test_metadata_fetches_are_bounded():
    store = FakeStore()
    store.delay = 0.01
    source = StaticStatisticsSource(identities={f"user{i}": {} for i in range(10)})
    registry = _registry(source, store, metadata_concurrency=3)
    asyncio.run(registry.refresh())
    assert len(store.calls) == 10
    assert store.max_in_flight == 3


def test_empty_listing_clears_registry(store):
    source = StaticStatisticsSource(identities={"alice": {}})
    registry = _registry(source, store)
    asyncio.run(registry.refresh())
    source.identities = {}
    assert dict(asyncio.run(registry.refresh())) == {}


def test_default_profile_matches_sessions_by_prefix(store):
    source = StaticStatisticsSource(
        identities={DEFAULT_VPN_PROFILE_CN: {}, "alice": {}},
        sessions=[
            session(f"{DEFAULT_VPN_PROFILE_CN}-phone", "10.8.0.10", last_active=5.0),
            session(DEFAULT_VPN_PROFILE_CN, "10.8.0.11", last_active=7.0),
            session("alice-laptop", "10.8.0.12", last_active=9.0),
        ],
    )
    snapshot = asyncio.run(_registry(source, store).refresh())
    assert len(snapshot[DEFAULT_VPN_PROFILE_CN].connections) == 2
    assert snapshot[DEFAULT_VPN_PROFILE_CN].last_active_timestamp == 7.0
    assert snapshot["alice"].connections == []


def test_snapshot_is_read_only(store):
    registry = _registry(StaticStatisticsSource(identities={"alice": {}}), store)
    snapshot = asyncio.run(registry.refresh())
    with pytest.raises(TypeError):
        snapshot["mallory"] = snapshot["alice"]  # type: ignore[index]


def test_delete(store):
    registry = _registry(StaticStatisticsSource(identities={"alice": {}}), store)
    asyncio.run(registry.refresh())
    assert registry.delete("alice") is True
    assert registry.delete("alice") is False
    assert len(registry) == 0


def test_rejects_invalid_concurrency(store):
    with pytest.raises(ValueError):
        IdentityRegistry(StaticStatisticsSource(), store, metadata_concurrency=0)


def test_every_failed_fetch_is_collected(caplog):
    store = FakeStore()
    store.fail_keys = {"vpn_profile:bad1", "vpn_profile:bad2"}
    store.delay = 0.05
    source = StaticStatisticsSource(identities={"bad1": {}, "bad2": {}, "slow": {}})
    registry = _registry(source, store)

    with caplog.at_level("ERROR", logger="peertrace.identity.registry"):
        with pytest.raises(RuntimeError, match="store unavailable"):
            asyncio.run(registry.refresh())

    assert "IDENTITY_META 2 fetch(es) failed" in caplog.text
    assert store.cancelled == ["vpn_profile:slow"]
