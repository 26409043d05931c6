#!/usr/bin/env python3
#
# peertrace/identity/registry.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""In-memory identity registry reconciled against the live VPN source."""

from __future__ import annotations

import asyncio
import logging
from types import MappingProxyType
from typing import Mapping, Optional, Sequence

from ..db.sqlite_identity_meta import MetadataStore, parse_metadata
from ..vpn.statistics import StatisticsSource
from .base import IdentityKind
from .vpn_profile import VPNProfile

_log = logging.getLogger(__name__)

__all__ = ["IdentityRegistry"]

DEFAULT_METADATA_CONCURRENCY = 16


class IdentityRegistry:
	"""Label -> identity map with in-place updates and sweep-based eviction.

	One instance per process, built explicitly at startup (see
	:class:`~peertrace.identity.service.IdentityService`). ``refresh``, ``delete``
	and the constructor are the only mutators.

	WARNING: overlapping ``refresh`` calls on the same instance are not
	serialized. A label swept by one pass can be recreated by another and then
	receive metadata from the first pass's in-flight fetch. Callers (scheduler,
	event dispatch) must not run two passes in parallel.
	"""

	def __init__(
		self,
		source: StatisticsSource,
		store: MetadataStore,
		*,
		identity_cls: type = VPNProfile,
		metadata_concurrency: int = DEFAULT_METADATA_CONCURRENCY,
	) -> None:
		if metadata_concurrency < 1:
			raise ValueError(f"metadata_concurrency must be >= 1, got {metadata_concurrency}")
		self._source = source
		self._store = store
		self._identity_cls = identity_cls
		self._concurrency = metadata_concurrency
		self._identities: dict[str, IdentityKind] = {}

	async def refresh(self) -> Mapping[str, IdentityKind]:
		"""Run one reconciliation pass and return the resulting snapshot.

		Store read failures propagate; the registry may then hold live updates
		without their metadata until the next successful pass.
		"""
		listing = await self._source.list_identities() or {}
		statistics = await self._source.get_statistics()
		sessions = statistics.sessions if statistics is not None else []

		# Mark, update/create and sweep run without suspension points.
		for identity in self._identities.values():
			identity.active = False

		created = 0
		for label, settings in listing.items():
			identity = self._identities.get(label)
			if identity is not None:
				identity.update(settings or {}, sessions)
			else:
				identity = self._identity_cls.from_live(label, settings or {}, sessions)
				self._identities[label] = identity
				created += 1
			identity.active = True

		removed = [label for label, identity in self._identities.items() if not identity.active]
		for label in removed:
			del self._identities[label]
			_log.info("IDENTITY_REMOVED label=%s", label)

		await self._merge_metadata(list(self._identities.values()))

		_log.info(
			"IDENTITY_REFRESH total=%d created=%d removed=%d sessions=%d",
			len(self._identities), created, len(removed), len(sessions),
		)
		return self.get_snapshot()

	async def _merge_metadata(self, identities: Sequence[IdentityKind]) -> None:
		"""Fetch and overlay persisted metadata for every identity concurrently.

		At most ``metadata_concurrency`` reads are in flight. The first failure
		cancels the remaining fetches and is re-raised.
		"""
		if not identities:
			return
		semaphore = asyncio.Semaphore(self._concurrency)

		async def _fetch(identity: IdentityKind) -> None:
			async with semaphore:
				raw = await self._store.get_metadata(identity.meta_key())
			identity.apply_metadata(parse_metadata(raw))

		tasks = [asyncio.create_task(_fetch(identity)) for identity in identities]
		try:
			done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
		except BaseException:
			for task in tasks:
				task.cancel()
			await asyncio.gather(*tasks, return_exceptions=True)
			raise

		if pending:
			for task in pending:
				task.cancel()
			await asyncio.gather(*pending, return_exceptions=True)

		# Retrieve every exception so none is reported as never retrieved
		errors = [task.exception() for task in done if not task.cancelled()]
		failures = [exc for exc in errors if exc is not None]
		if failures:
			_log.error(
				"IDENTITY_META %d fetch(es) failed, aborting pass: %s",
				len(failures), failures[0],
			)
			raise failures[0]

	def get_snapshot(self) -> Mapping[str, IdentityKind]:
		"""Read-only view of the current registry."""
		return MappingProxyType(self._identities)

	def get(self, label: str) -> Optional[IdentityKind]:
		return self._identities.get(label)

	def delete(self, label: str) -> bool:
		"""Remove one identity; returns False if it was not registered."""
		if self._identities.pop(label, None) is None:
			return False
		_log.info("IDENTITY_REMOVED label=%s (explicit)", label)
		return True

	def __len__(self) -> int:
		return len(self._identities)

	def __contains__(self, label: object) -> bool:
		return label in self._identities
