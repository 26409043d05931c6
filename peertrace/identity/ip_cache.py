#!/usr/bin/env python3
#
# peertrace/identity/ip_cache.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Virtual-IP lookup caches.

Two caches with deliberately different retention:

- :class:`IPIdentityCache` keeps ``ip -> label`` for a TTL window after the last
  time the address was seen live. Flow logs are often written after the client
  has disconnected, so attribution has to outlive the session.
- :class:`IPEndpointCache` keeps nothing. Every snapshot is rebuilt from the
  sessions that are live right now.
"""

from __future__ import annotations

import logging
from typing import Generic, Iterator, Optional, TypeVar

from ..utils.config import DEFAULT_IP_UID_TTL_SECONDS
from ..utils.network import is_valid_address
from ..utils.time import Clock, epoch_now
from ..vpn.statistics import Session, StatisticsSource

_log = logging.getLogger(__name__)

__all__ = [
	"TTLMap",
	"IPIdentityCache",
	"IPEndpointCache",
]

K = TypeVar("K")
V = TypeVar("V")


class TTLMap(Generic[K, V]):
	"""Time-based eviction map without a size bound.

	``write`` stores a value and stamps it with the current time. ``peek`` reads
	without touching that stamp, so reads never extend an entry's life. An entry
	expires once ``now - last_write > ttl``.
	"""

	def __init__(self, ttl: float, *, clock: Clock = epoch_now) -> None:
		if ttl <= 0:
			raise ValueError(f"ttl must be > 0, got {ttl}")
		self._ttl = ttl
		self._clock = clock
		self._entries: dict[K, tuple[V, float]] = {}

	@property
	def ttl(self) -> float:
		return self._ttl

	def _expired(self, last_write: float, now: float) -> bool:
		return now - last_write > self._ttl

	def write(self, key: K, value: V) -> None:
		self._entries[key] = (value, self._clock())

	def peek(self, key: K) -> Optional[V]:
		entry = self._entries.get(key)
		if entry is None or self._expired(entry[1], self._clock()):
			return None
		return entry[0]

	def prune(self) -> int:
		"""Drop all expired entries; returns how many were removed."""
		now = self._clock()
		stale = [k for k, (_, ts) in self._entries.items() if self._expired(ts, now)]
		for key in stale:
			del self._entries[key]
		return len(stale)

	def items(self) -> Iterator[tuple[K, V]]:
		"""Iterate over unexpired entries."""
		now = self._clock()
		for key, (value, ts) in list(self._entries.items()):
			if not self._expired(ts, now):
				yield key, value

	def __len__(self) -> int:
		return len(self._entries)


def _valid_addresses(session: Session) -> Iterator[str]:
	for addr in session.virtual_addresses:
		if is_valid_address(addr):
			yield addr


class IPIdentityCache:
	"""Time-windowed ``virtual IP -> identity label`` map."""

	def __init__(
		self,
		source: StatisticsSource,
		*,
		ttl: float = DEFAULT_IP_UID_TTL_SECONDS,
		clock: Clock = epoch_now,
	) -> None:
		self._source = source
		self._map: TTLMap[str, str] = TTLMap(ttl, clock=clock)

	async def refresh(self) -> int:
		"""Write every valid virtual address of every live session.

		Addresses missing from the current scan are left alone and age toward
		expiry. Returns the number of entries written.
		"""
		statistics = await self._source.get_statistics()
		if statistics is None:
			return 0
		written = 0
		for session in statistics.sessions:
			if not session.label:
				continue
			for addr in _valid_addresses(session):
				self._map.write(addr, session.label)
				written += 1
		_log.debug("IP_UID_CACHE refreshed written=%d size=%d", written, len(self._map))
		return written

	def lookup(self, ip: str) -> Optional[str]:
		"""Return the label for ``ip`` without extending its lifetime."""
		return self._map.peek(ip)

	def prune(self) -> int:
		removed = self._map.prune()
		if removed:
			_log.debug("IP_UID_CACHE pruned=%d", removed)
		return removed

	def snapshot(self) -> dict[str, str]:
		"""All unexpired mappings (pruned first)."""
		self.prune()
		return dict(self._map.items())


class IPEndpointCache:
	"""Current ``virtual IP -> real endpoint`` map with no retention."""

	def __init__(self, source: StatisticsSource) -> None:
		self._source = source

	async def snapshot(self) -> dict[str, str]:
		statistics = await self._source.get_statistics()
		if statistics is None:
			return {}
		mapping: dict[str, str] = {}
		for session in statistics.sessions:
			if not session.endpoint:
				continue
			for addr in _valid_addresses(session):
				mapping[addr] = session.endpoint
		return mapping
