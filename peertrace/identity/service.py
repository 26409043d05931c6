#!/usr/bin/env python3
#
# peertrace/identity/service.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Process-wide identity service: registry, IP caches and refresh triggers."""

from __future__ import annotations

import logging
from typing import Any, Mapping

from ..db.sqlite_identity_meta import MetadataStore
from ..utils.config import Config
from ..utils.time import Clock, epoch_now
from ..vpn.statistics import StatisticsSource
from .base import IdentityKind, make_meta_key
from .ip_cache import IPEndpointCache, IPIdentityCache
from .registry import IdentityRegistry
from .vpn_profile import VPNProfile, sessions_for

_log = logging.getLogger(__name__)

__all__ = ["IdentityService"]


class IdentityService:
	"""Owns the single registry and both IP caches for one statistics source.

	Construct once during application startup and keep it on ``app.state``.
	"""

	def __init__(
		self,
		source: StatisticsSource,
		store: MetadataStore,
		*,
		identity_cls: type = VPNProfile,
		ip_uid_ttl: float,
		metadata_concurrency: int,
		clock: Clock = epoch_now,
	) -> None:
		self.source = source
		self.store = store
		self.identity_cls = identity_cls
		self.registry = IdentityRegistry(
			source, store,
			identity_cls=identity_cls,
			metadata_concurrency=metadata_concurrency,
		)
		self.ip_uid_cache = IPIdentityCache(source, ttl=ip_uid_ttl, clock=clock)
		self.ip_endpoint_cache = IPEndpointCache(source)

	@classmethod
	def from_config(
		cls, cfg: Config, source: StatisticsSource, store: MetadataStore, **kwargs: Any,
	) -> "IdentityService":
		return cls(
			source, store,
			ip_uid_ttl=cfg.ip_uid_ttl_seconds,
			metadata_concurrency=cfg.metadata_concurrency,
			**kwargs,
		)

	async def get_identities(self) -> Mapping[str, IdentityKind]:
		"""Reconcile the registry and return its snapshot."""
		return await self.registry.refresh()

	async def get_ip_unique_id_mappings(self) -> dict[str, str]:
		"""Current ``ip -> label`` attribution, including recently disconnected clients."""
		self.ip_uid_cache.prune()
		await self.ip_uid_cache.refresh()
		return self.ip_uid_cache.snapshot()

	async def get_ip_endpoint_mappings(self) -> dict[str, str]:
		"""Current ``ip -> endpoint`` map of live sessions only."""
		return await self.ip_endpoint_cache.snapshot()

	async def get_init_data(self) -> list[dict[str, Any]]:
		"""Read model for UI/reporting: every configured identity with its live sessions.

		Independent of the registry, so it never mutates registry state.
		"""
		listing = await self.source.list_identities() or {}
		statistics = await self.source.get_statistics()
		sessions = statistics.sessions if statistics is not None else []

		profiles: list[dict[str, Any]] = []
		for label, settings in listing.items():
			matched = sessions_for(label, sessions)
			stamps = [s.last_active for s in matched if s.last_active is not None]
			updated_at = await self.store.get_updated_at(make_meta_key(self.identity_cls.namespace(), label))
			profiles.append({
				"uid": label,
				"cn": label,
				"settings": dict(settings or {}),
				"connections": [s.to_dict() for s in matched],
				"lastActiveTimestamp": max(stamps) if stamps else None,
				"timestamp": updated_at.timestamp() if updated_at else None,
			})
		return profiles

	async def handle_event(self, event: str) -> bool:
		"""Dispatch a trigger event to the matching refresh.

		Returns False for events this service does not react to.
		"""
		if event in self.identity_cls.REFRESH_IDENTITIES_EVENTS:
			_log.debug("IDENTITY_EVENT %s -> refresh identities", event)
			await self.registry.refresh()
			return True
		if event in self.identity_cls.REFRESH_IP_MAPPINGS_EVENTS:
			_log.debug("IDENTITY_EVENT %s -> refresh ip mappings", event)
			self.ip_uid_cache.prune()
			await self.ip_uid_cache.refresh()
			return True
		_log.debug("IDENTITY_EVENT %s ignored", event)
		return False

	async def refresh_identities(self) -> None:
		"""Scheduler job: one reconciliation pass."""
		await self.registry.refresh()

	async def refresh_ip_mappings(self) -> None:
		"""Scheduler job: keep the IP attribution cache warm."""
		self.ip_uid_cache.prune()
		await self.ip_uid_cache.refresh()
