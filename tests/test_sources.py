from __future__ import annotations

import asyncio
import json

from peertrace.identity.ip_cache import IPIdentityCache
from peertrace.identity.registry import IdentityRegistry
from peertrace.vpn import build_source
from peertrace.vpn.openvpn import OpenVPNStatisticsSource, parse_ccd, parse_status
from peertrace.vpn.statistics import JsonFileStatisticsSource, StaticStatisticsSource, Statistics
from peertrace.vpn.wireguard import WireGuardStatisticsSource, parse_wg_show_dump
from peertrace.utils.config import Config

NOW = 1_700_000_000

ALICE_KEY = "aLiCe" + "A" * 38 + "="
BOB_KEY = "bOb/" + "B" * 39 + "="

WG_DUMP = "\n".join([
    "wg0\tPRIVKEY\tSERVERPUB\t51820\toff",
    f"wg0\t{ALICE_KEY}\t(none)\t203.0.113.5:40000\t10.8.0.5/32,fd00:8::5/128\t{NOW - 30}\t1000\t2000\t25",
    f"wg0\t{BOB_KEY}\t(none)\t(none)\t10.8.0.6/32,192.168.50.0/24\t{NOW - 600}\t0\t0\toff",
    "",
])


def test_parse_wg_show_dump():
    peers = parse_wg_show_dump(WG_DUMP)
    assert [p.public_key for p in peers] == [ALICE_KEY, BOB_KEY]
    alice, bob = peers
    assert alice.interface == "wg0"
    assert alice.endpoint == "203.0.113.5:40000"
    assert alice.allowed_ips == ["10.8.0.5/32", "fd00:8::5/128"]
    assert alice.handshake_ts == NOW - 30
    assert alice.persistent_keepalive == 25
    assert bob.endpoint is None
    assert bob.persistent_keepalive is None


def test_parse_wg_show_dump_without_interface_column():
    dump = "wg1\tPRIV\tPUB\t51821\toff\n" + f"{ALICE_KEY}\t(none)\t(none)\t10.9.0.2/32\t0\t0\t0\toff\n"
    (peer,) = parse_wg_show_dump(dump)
    assert peer.interface == "wg1"
    assert peer.handshake_ts == 0


def _wg_source(stdout: str, code: int = 0) -> WireGuardStatisticsSource:
    calls = []

    async def runner(*args):
        calls.append(args)
        return code, stdout, "" if code == 0 else "Unable to access interface"

    source = WireGuardStatisticsSource(handshake_threshold=180, clock=lambda: float(NOW), runner=runner)
    source.calls = calls  # type: ignore[attr-defined]
    return source


def test_wireguard_source_lists_all_peers_as_identities():
    identities = asyncio.run(_wg_source(WG_DUMP).list_identities())
    assert set(identities) == {ALICE_KEY, BOB_KEY}
    assert identities[BOB_KEY]["allowedIPs"] == ["10.8.0.6/32", "192.168.50.0/24"]
    assert identities[ALICE_KEY]["interface"] == "wg0"


def test_wireguard_source_reports_recent_handshakes_as_sessions():
    source = _wg_source(WG_DUMP)
    stats = asyncio.run(source.get_statistics())
    assert len(stats.sessions) == 1
    (alice,) = stats.sessions
    assert alice.label == ALICE_KEY
    assert alice.virtual_addresses == ("10.8.0.5", "fd00:8::5")
    assert alice.endpoint == "203.0.113.5:40000"
    assert alice.last_active == float(NOW - 30)
    assert source.calls == [("wg", "show", "all", "dump")]


def test_wireguard_source_command_failure_yields_empty():
    source = _wg_source("", code=1)
    assert asyncio.run(source.list_identities()) == {}
    assert asyncio.run(source.get_statistics()).sessions == []


STATUS_V2 = """TITLE,OpenVPN 2.5.9 x86_64-pc-linux-gnu
TIME,Mon Nov 14 22:13:20 2023,1700000000
HEADER,CLIENT_LIST,Common Name,Real Address,Virtual Address,Virtual IPv6 Address,Bytes Received,Bytes Sent,Connected Since,Connected Since (time_t),Username,Client ID,Peer ID,Data Channel Cipher
CLIENT_LIST,alice,203.0.113.5:1194,10.8.0.5,fd00:8::5,1234,5678,Mon Nov 14 22:00:00 2023,1699999200,UNDEF,0,0,AES-256-GCM
CLIENT_LIST,bob,198.51.100.7:51000,10.8.0.6,,10,20,Mon Nov 14 22:10:00 2023,1699999800,UNDEF,1,1,AES-256-GCM
CLIENT_LIST,UNDEF,192.0.2.1:3000,,,0,0,Mon Nov 14 22:10:00 2023,1699999800,UNDEF,2,2,AES-256-GCM
HEADER,ROUTING_TABLE,Virtual Address,Common Name,Real Address,Last Ref,Last Ref (time_t)
ROUTING_TABLE,10.8.0.5,alice,203.0.113.5:1194,Mon Nov 14 22:12:00 2023,1699999920
ROUTING_TABLE,fd00:8::5,alice,203.0.113.5:1194,Mon Nov 14 22:13:00 2023,1699999980
GLOBAL_STATS,Max bcast/mcast queue length,0
END
"""


def test_parse_status_v2():
    sessions = parse_status(STATUS_V2)
    assert [s.label for s in sessions] == ["alice", "bob"]
    alice, bob = sessions
    assert alice.virtual_addresses == ("10.8.0.5", "fd00:8::5")
    assert alice.endpoint == "203.0.113.5:1194"
    assert alice.last_active == 1699999980.0
    assert bob.virtual_addresses == ("10.8.0.6",)
    assert bob.last_active == 1699999800.0


def test_parse_status_v3_tab_separated():
    text = STATUS_V2.replace(",", "\t")
    assert [s.label for s in parse_status(text)] == ["alice", "bob"]


def test_parse_ccd():
    text = "# site gateway\nifconfig-push 10.8.0.20 255.255.255.0\niroute 192.168.10.0 255.255.255.0\niroute 192.168.20.0 255.255.255.0\niroute-ipv6 fd10::/64\n"
    settings = parse_ccd("site-a", text)
    assert settings["cn"] == "site-a"
    assert settings["ifconfigPush"] == "10.8.0.20"
    assert settings["clientSubnets"] == ["192.168.10.0/24", "192.168.20.0/24", "fd10::/64"]


def test_openvpn_source_reads_files(tmp_path):
    status = tmp_path / "status.log"
    status.write_text(STATUS_V2, encoding="utf-8")
    ccd = tmp_path / "ccd"
    ccd.mkdir()
    (ccd / "alice").write_text("ifconfig-push 10.8.0.5 255.255.255.0\n", encoding="utf-8")
    (ccd / ".swp").write_text("", encoding="utf-8")

    source = OpenVPNStatisticsSource(status, ccd)
    assert set(asyncio.run(source.list_identities())) == {"alice"}
    assert len(asyncio.run(source.get_statistics()).sessions) == 2


def test_openvpn_source_missing_files_are_empty(tmp_path):
    source = OpenVPNStatisticsSource(tmp_path / "missing.log", tmp_path / "no-ccd")
    assert asyncio.run(source.list_identities()) == {}
    assert asyncio.run(source.get_statistics()).sessions == []


def test_statistics_from_payload_tolerates_garbage():
    assert Statistics.from_payload(None).sessions == []
    assert Statistics.from_payload({"sessions": "nope"}).sessions == []
    stats = Statistics.from_payload({"sessions": [
        {"label": "alice", "virtualAddresses": ["10.8.0.5", 7], "endpoint": "203.0.113.5:1194", "lastActive": 12},
        {"virtualAddresses": ["10.8.0.6"]},
        "junk",
        {"label": "bob", "virtualAddresses": "10.8.0.7"},
    ]})
    assert [s.label for s in stats.sessions] == ["alice", "bob"]
    assert stats.sessions[0].virtual_addresses == ("10.8.0.5",)
    assert stats.sessions[0].last_active == 12.0
    assert stats.sessions[1].virtual_addresses == ()


def test_json_file_source(tmp_path):
    path = tmp_path / "stats.json"
    path.write_text(json.dumps({
        "identities": {"alice": {"name": "Alice"}},
        "sessions": [{"label": "alice", "virtualAddresses": ["10.8.0.5"], "endpoint": "203.0.113.5:1194", "lastActive": 1}],
    }), encoding="utf-8")
    source = JsonFileStatisticsSource(path)
    assert asyncio.run(source.list_identities()) == {"alice": {"name": "Alice"}}
    assert asyncio.run(source.get_statistics()).sessions[0].endpoint == "203.0.113.5:1194"

    path.write_text("{not json", encoding="utf-8")
    assert asyncio.run(source.list_identities()) == {}
    assert asyncio.run(source.get_statistics()).sessions == []


def test_build_source_selects_implementation(tmp_path):
    base = dict(data_dir=tmp_path, db_path=tmp_path / "db")
    assert isinstance(build_source(Config(**base, statistics_source="wireguard")), WireGuardStatisticsSource)
    assert isinstance(build_source(Config(**base, statistics_source="openvpn")), OpenVPNStatisticsSource)
    assert isinstance(
        build_source(Config(**base, statistics_source="file", statistics_file=tmp_path / "s.json")),
        JsonFileStatisticsSource,
    )
    assert isinstance(build_source(Config(**base, statistics_source="none")), StaticStatisticsSource)


def test_json_file_source_with_undecodable_bytes_is_empty(tmp_path, clock):
    path = tmp_path / "stats.json"
    path.write_bytes(b'{"identities": {"alice": {}}, "note": "\xff"}')
    source = JsonFileStatisticsSource(path)

    assert asyncio.run(source.list_identities()) == {}
    assert asyncio.run(source.get_statistics()).sessions == []
    assert asyncio.run(IPIdentityCache(source, clock=clock).refresh()) == 0


def test_json_file_source_with_wrong_shapes(tmp_path):
    path = tmp_path / "stats.json"
    path.write_text(json.dumps({"identities": ["alice"], "sessions": {"label": "alice"}}), encoding="utf-8")
    source = JsonFileStatisticsSource(path)
    assert asyncio.run(source.list_identities()) == {}
    assert asyncio.run(source.get_statistics()).sessions == []

    path.write_text(json.dumps({"identities": {"alice": "not a mapping"}}), encoding="utf-8")
    assert asyncio.run(source.list_identities()) == {"alice": {}}


def test_ccd_file_with_latin1_comment_does_not_abort_refresh(tmp_path, store):
    ccd = tmp_path / "ccd"
    ccd.mkdir()
    (ccd / "alice").write_text("ifconfig-push 10.8.0.5 255.255.255.0\n", encoding="utf-8")
    (ccd / "bob").write_bytes(b"# caf\xe9\nifconfig-push 10.8.0.7 255.255.255.0\n")
    status = tmp_path / "status.log"
    status.write_bytes(STATUS_V2.encode("utf-8") + b"TITLE,caf\xe9\n")

    source = OpenVPNStatisticsSource(status, ccd)
    snapshot = asyncio.run(IdentityRegistry(source, store).refresh())

    assert set(snapshot) == {"alice", "bob"}
    assert snapshot["bob"].settings["ifconfigPush"] == "10.8.0.7"
    assert len(snapshot["alice"].connections) == 1
