#!/usr/bin/env python3
#
# peertrace/vpn/statistics.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Live VPN statistics: session records and the source interface."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional, Protocol

_log = logging.getLogger(__name__)

__all__ = [
	"Session",
	"Statistics",
	"StatisticsSource",
	"StaticStatisticsSource",
	"JsonFileStatisticsSource",
]


@dataclass(frozen=True)
class Session:
	"""One live VPN connection as reported by the statistics source."""
	label: str
	virtual_addresses: tuple[str, ...] = ()
	endpoint: Optional[str] = None
	last_active: Optional[float] = None

	def to_dict(self) -> dict[str, Any]:
		return {
			"label": self.label,
			"virtualAddresses": list(self.virtual_addresses),
			"endpoint": self.endpoint,
			"lastActive": self.last_active,
		}


@dataclass
class Statistics:
	"""Snapshot of all live sessions."""
	sessions: list[Session] = field(default_factory=list)

	@classmethod
	def from_payload(cls, payload: Any) -> "Statistics":
		"""Build statistics from a ``{"sessions": [...]}`` mapping.

		A missing or malformed payload yields no sessions. Individual entries
		without a label are dropped; a non-list address field counts as empty.
		"""
		if not isinstance(payload, Mapping):
			return cls()
		raw_sessions = payload.get("sessions")
		if not isinstance(raw_sessions, list):
			return cls()

		sessions: list[Session] = []
		for raw in raw_sessions:
			if not isinstance(raw, Mapping) or not raw.get("label"):
				continue
			addrs = raw.get("virtualAddresses")
			last_active = raw.get("lastActive")
			sessions.append(Session(
				label=str(raw["label"]),
				virtual_addresses=tuple(a for a in addrs if isinstance(a, str)) if isinstance(addrs, list) else (),
				endpoint=raw.get("endpoint") if isinstance(raw.get("endpoint"), str) else None,
				last_active=float(last_active) if isinstance(last_active, (int, float)) else None,
			))
		return cls(sessions=sessions)


class StatisticsSource(Protocol):
	"""Foreign-owned source of configured identities and live sessions."""

	async def list_identities(self) -> dict[str, dict[str, Any]]:
		"""Return ``label -> settings`` for every configured identity."""
		...

	async def get_statistics(self) -> Optional[Statistics]:
		"""Return the current live sessions (None is treated as no sessions)."""
		...


class StaticStatisticsSource:
	"""In-memory source whose contents are replaced by the caller.

	Used when no VPN daemon is configured (``statistics_source=none``) and in tests.
	"""

	def __init__(
		self,
		identities: Mapping[str, Mapping[str, Any]] | None = None,
		sessions: list[Session] | None = None,
	) -> None:
		self.identities: dict[str, dict[str, Any]] = {k: dict(v) for k, v in (identities or {}).items()}
		self.sessions: list[Session] = list(sessions or [])

	async def list_identities(self) -> dict[str, dict[str, Any]]:
		return {label: dict(settings) for label, settings in self.identities.items()}

	async def get_statistics(self) -> Optional[Statistics]:
		return Statistics(sessions=list(self.sessions))


class JsonFileStatisticsSource:
	"""Reads a JSON document written by an external collector.

	Expected layout::

		{
			"identities": {"<label>": {...settings...}},
			"sessions": [{"label": ..., "virtualAddresses": [...], "endpoint": ..., "lastActive": ...}]
		}

	A missing, unreadable or malformed file behaves like an empty listing.
	"""

	def __init__(self, path: Path) -> None:
		self._path = path

	def _load_sync(self) -> Any:
		try:
			return json.loads(self._path.read_text(encoding="utf-8"))
		except FileNotFoundError:
			_log.debug("STATISTICS file not found: %s", self._path)
		except (OSError, ValueError) as exc:
			_log.warning("STATISTICS failed to read %s: %s", self._path, exc)
		return None

	async def list_identities(self) -> dict[str, dict[str, Any]]:
		payload = await asyncio.to_thread(self._load_sync)
		identities = payload.get("identities") if isinstance(payload, Mapping) else None
		if not isinstance(identities, Mapping):
			return {}
		return {
			str(label): dict(settings) if isinstance(settings, Mapping) else {}
			for label, settings in identities.items()
		}

	async def get_statistics(self) -> Optional[Statistics]:
		payload = await asyncio.to_thread(self._load_sync)
		return Statistics.from_payload(payload)
