#!/usr/bin/env python3
#
# peertrace/vpn/wireguard.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""WireGuard statistics source backed by ``wg show all dump``."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from ..utils.config import DEFAULT_HANDSHAKE_THRESHOLD
from ..utils.network import host_route_address
from ..utils.time import Clock, epoch_now
from .statistics import Session, Statistics

_log = logging.getLogger(__name__)

__all__ = [
	"WgPeerDump",
	"parse_wg_show_dump",
	"run_wg_command",
	"WireGuardStatisticsSource",
]

# Timeout for wg commands (seconds)
WG_COMMAND_TIMEOUT = 30

# Secondary timeout for process cleanup after kill (seconds)
_KILL_WAIT_TIMEOUT = 5

CommandRunner = Callable[..., Awaitable[tuple[int, str, str]]]


def safe_int(value: str, default: int = 0) -> int:
	"""Safely convert string to int, returning default on failure."""
	try:
		return int(value) if value else default
	except (ValueError, TypeError):
		return default


@dataclass
class WgPeerDump:
	"""Structured representation of a peer line from `wg show all dump`."""
	interface: str | None
	public_key: str
	endpoint: str | None
	allowed_ips: list[str]
	handshake_ts: int
	persistent_keepalive: int | None


def parse_wg_show_dump(stdout: str) -> list[WgPeerDump]:
	"""Parse `wg show all dump` output into structured peer records.

	Handles both output formats:
	- Format A (9 cols): iface, pubkey, psk, endpoint, allowed-ips, handshake, rx, tx, keepalive
	- Format B (8 cols): pubkey, psk, endpoint, allowed-ips, handshake, rx, tx, keepalive

	Interface header lines (5 cols) are tracked to provide context for format B.
	"""
	results: list[WgPeerDump] = []
	last_iface: str | None = None

	for line in stdout.strip().split("\n"):
		if not line:
			continue
		parts = line.split("\t")

		# Interface header (5 cols): iface, privkey, pubkey, listen_port, fwmark
		if 5 <= len(parts) < 8:
			last_iface = parts[0]
			continue

		if len(parts) >= 9:
			offset = 1
			iface = parts[0] or last_iface
		elif len(parts) >= 8:
			offset = 0
			iface = last_iface
		else:
			continue

		if iface:
			last_iface = iface

		endpoint = parts[offset + 2]
		allowed = parts[offset + 3]
		keepalive = parts[offset + 7]

		results.append(WgPeerDump(
			interface=iface,
			public_key=parts[offset],
			endpoint=None if endpoint == "(none)" else endpoint,
			allowed_ips=[] if allowed == "(none)" else [a.strip() for a in allowed.split(",") if a.strip()],
			handshake_ts=safe_int(parts[offset + 4]),
			persistent_keepalive=safe_int(keepalive) or None,
		))

	return results


async def run_wg_command(*args: str, timeout: int = WG_COMMAND_TIMEOUT) -> tuple[int, str, str]:
	"""Run a command with timeout, returning ``(returncode, stdout, stderr)``."""
	try:
		proc = await asyncio.create_subprocess_exec(
			*args,
			stdout=asyncio.subprocess.PIPE,
			stderr=asyncio.subprocess.PIPE,
		)
		try:
			stdout_bytes, stderr_bytes = await asyncio.wait_for(proc.communicate(), timeout=timeout)
			return (
				proc.returncode if proc.returncode is not None else 1,
				stdout_bytes.decode("utf-8", errors="replace"),
				stderr_bytes.decode("utf-8", errors="replace"),
			)
		except asyncio.TimeoutError:
			proc.kill()
			try:
				await asyncio.wait_for(proc.wait(), timeout=_KILL_WAIT_TIMEOUT)
			except asyncio.TimeoutError:
				pass  # Process stuck; will become zombie but we can't do more
			return 1, "", f"Command timed out after {timeout}s"
	except OSError as e:
		return 1, "", str(e)


class WireGuardStatisticsSource:
	"""Statistics source reading peers from the kernel WireGuard interfaces.

	Every configured peer is an identity keyed by its public key. A peer counts
	as a live session while its latest handshake is younger than
	``handshake_threshold`` seconds; its host-route allowed IPs are the session's
	virtual addresses.
	"""

	def __init__(
		self,
		*,
		handshake_threshold: int = DEFAULT_HANDSHAKE_THRESHOLD,
		clock: Clock = epoch_now,
		runner: CommandRunner = run_wg_command,
	) -> None:
		self._handshake_threshold = handshake_threshold
		self._clock = clock
		self._runner = runner

	async def _dump(self) -> list[WgPeerDump]:
		code, stdout, stderr = await self._runner("wg", "show", "all", "dump")
		if code != 0:
			_log.warning("WG_SHOW_DUMP failed: code=%d stderr=%s", code, stderr.strip())
			return []
		return parse_wg_show_dump(stdout)

	async def list_identities(self) -> dict[str, dict[str, Any]]:
		identities: dict[str, dict[str, Any]] = {}
		for peer in await self._dump():
			identities[peer.public_key] = {
				"publicKey": peer.public_key,
				"interface": peer.interface,
				"allowedIPs": list(peer.allowed_ips),
				"endpoint": peer.endpoint,
				"persistentKeepalive": peer.persistent_keepalive,
			}
		return identities

	async def get_statistics(self) -> Optional[Statistics]:
		now = self._clock()
		sessions: list[Session] = []
		for peer in await self._dump():
			if not peer.handshake_ts or (now - peer.handshake_ts) >= self._handshake_threshold:
				continue
			addrs = tuple(a for a in (host_route_address(e) for e in peer.allowed_ips) if a)
			sessions.append(Session(
				label=peer.public_key,
				virtual_addresses=addrs,
				endpoint=peer.endpoint,
				last_active=float(peer.handshake_ts),
			))
		return Statistics(sessions=sessions)
