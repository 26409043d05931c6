#!/usr/bin/env python3
#
# peertrace/vpn/openvpn.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""OpenVPN statistics source: status file plus client-config directory.

Live sessions come from the ``status-version 2`` (comma separated) or
``status-version 3`` (tab separated) status file. Configured identities are the
files in the client-config directory, one per certificate common name.
"""

from __future__ import annotations

import asyncio
import ipaddress
import logging
from pathlib import Path
from typing import Any, Optional

from .statistics import Session, Statistics

_log = logging.getLogger(__name__)

__all__ = [
	"parse_status",
	"parse_ccd",
	"OpenVPNStatisticsSource",
]


def _safe_float(value: str | None) -> float | None:
	try:
		return float(value) if value else None
	except ValueError:
		return None


def parse_status(text: str) -> list[Session]:
	"""Parse an OpenVPN status file into sessions.

	Column positions are taken from the ``HEADER`` rows, so extra columns added by
	newer OpenVPN releases are tolerated. Last-active is the most recent
	``ROUTING_TABLE`` reference for the client, falling back to its connect time.
	"""
	headers: dict[str, list[str]] = {}
	clients: list[dict[str, str]] = []
	last_ref: dict[tuple[str, str], float] = {}

	for line in text.splitlines():
		if not line.strip():
			continue
		parts = line.split("\t") if "\t" in line else line.split(",")
		kind = parts[0]
		if kind == "HEADER" and len(parts) > 2:
			headers[parts[1]] = parts[2:]
			continue
		if kind not in ("CLIENT_LIST", "ROUTING_TABLE") or kind not in headers:
			continue
		row = dict(zip(headers[kind], parts[1:]))
		if kind == "CLIENT_LIST":
			clients.append(row)
		else:
			ref = _safe_float(row.get("Last Ref (time_t)"))
			key = (row.get("Common Name", ""), row.get("Real Address", ""))
			if ref is not None and ref > last_ref.get(key, 0):
				last_ref[key] = ref

	sessions: list[Session] = []
	for row in clients:
		cn = row.get("Common Name", "")
		if not cn or cn == "UNDEF":
			continue
		endpoint = row.get("Real Address") or None
		addrs = tuple(
			a for a in (row.get("Virtual Address", ""), row.get("Virtual IPv6 Address", "")) if a
		)
		sessions.append(Session(
			label=cn,
			virtual_addresses=addrs,
			endpoint=endpoint,
			last_active=last_ref.get((cn, endpoint or "")) or _safe_float(row.get("Connected Since (time_t)")),
		))
	return sessions


def parse_ccd(cn: str, text: str) -> dict[str, Any]:
	"""Build a settings blob from a client-config-dir file."""
	settings: dict[str, Any] = {"cn": cn, "clientSubnets": []}
	for raw in text.splitlines():
		line = raw.split("#", 1)[0].strip()
		if not line:
			continue
		directive, *args = line.split()
		if directive == "ifconfig-push" and args:
			settings["ifconfigPush"] = args[0]
		elif directive == "iroute" and args:
			mask = args[1] if len(args) > 1 else "255.255.255.255"
			try:
				settings["clientSubnets"].append(str(ipaddress.IPv4Network(f"{args[0]}/{mask}", strict=False)))
			except ValueError:
				_log.warning("OPENVPN_CCD invalid iroute cn=%s value=%r", cn, line)
		elif directive == "iroute-ipv6" and args:
			try:
				settings["clientSubnets"].append(str(ipaddress.IPv6Network(args[0], strict=False)))
			except ValueError:
				_log.warning("OPENVPN_CCD invalid iroute-ipv6 cn=%s value=%r", cn, line)
		elif directive == "disable":
			settings["disabled"] = True
	return settings


class OpenVPNStatisticsSource:
	"""Reads OpenVPN status and ccd files off the event loop."""

	def __init__(self, status_path: Path, ccd_dir: Path) -> None:
		self._status_path = status_path
		self._ccd_dir = ccd_dir

	def _read_ccd_sync(self) -> dict[str, dict[str, Any]]:
		if not self._ccd_dir.is_dir():
			_log.debug("OPENVPN_CCD directory not found: %s", self._ccd_dir)
			return {}
		identities: dict[str, dict[str, Any]] = {}
		for path in sorted(self._ccd_dir.iterdir()):
			if not path.is_file() or path.name.startswith("."):
				continue
			try:
				identities[path.name] = parse_ccd(path.name, path.read_text(encoding="utf-8", errors="replace"))
			except OSError as exc:
				_log.warning("OPENVPN_CCD failed to read %s: %s", path, exc)
		return identities

	def _read_status_sync(self) -> list[Session]:
		try:
			text = self._status_path.read_text(encoding="utf-8", errors="replace")
		except FileNotFoundError:
			_log.debug("OPENVPN_STATUS file not found: %s", self._status_path)
			return []
		except OSError as exc:
			_log.warning("OPENVPN_STATUS failed to read %s: %s", self._status_path, exc)
			return []
		return parse_status(text)

	async def list_identities(self) -> dict[str, dict[str, Any]]:
		return await asyncio.to_thread(self._read_ccd_sync)

	async def get_statistics(self) -> Optional[Statistics]:
		sessions = await asyncio.to_thread(self._read_status_sync)
		return Statistics(sessions=sessions)
