#!/usr/bin/env python3
#
# peertrace/identity/base.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Capability interface shared by all identity kinds.

Identity kinds do not inherit from a common base class. Any class that provides
these members can be tracked by :class:`~peertrace.identity.registry.IdentityRegistry`.
"""

from __future__ import annotations

from typing import Any, ClassVar, Mapping, Optional, Protocol, Sequence, runtime_checkable

from ..vpn.statistics import Session


@runtime_checkable
class IdentityKind(Protocol):
	"""Members every identity variant provides."""

	label: str
	settings: dict[str, Any]
	connections: list[Session]
	last_active_timestamp: Optional[float]
	metadata: dict[str, Any]
	active: bool

	REFRESH_IDENTITIES_EVENTS: ClassVar[tuple[str, ...]]
	REFRESH_IP_MAPPINGS_EVENTS: ClassVar[tuple[str, ...]]

	@classmethod
	def namespace(cls) -> str: ...

	@classmethod
	def key_of_uid_in_alarm(cls) -> str: ...

	@classmethod
	def key_of_init_data(cls) -> str: ...

	@classmethod
	def from_live(
		cls, label: str, settings: Mapping[str, Any], sessions: Sequence[Session],
	) -> "IdentityKind": ...

	def unique_id(self) -> str: ...

	def meta_key(self) -> str: ...

	def update(self, settings: Mapping[str, Any], sessions: Sequence[Session]) -> None: ...

	def apply_metadata(self, metadata: Mapping[str, Any]) -> None: ...

	def readable_name(self) -> str: ...

	def nic_name(self) -> str: ...

	def network_profile(self) -> Optional[str]: ...

	def device_name_in_notification(self, alarm: Mapping[str, Any]) -> Optional[str]: ...

	def notification_key_suffix(self) -> str: ...


def make_meta_key(namespace: str, unique_id: str) -> str:
	"""Key under which an identity's persisted metadata is stored."""
	return f"{namespace}:{unique_id}"
