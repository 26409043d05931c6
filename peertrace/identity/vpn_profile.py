#!/usr/bin/env python3
#
# peertrace/identity/vpn_profile.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""VPN client profile identity."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Iterable, Mapping, Optional, Sequence

from ..utils.network import endpoint_host
from ..vpn.statistics import Session
from .base import make_meta_key

__all__ = [
	"DEFAULT_VPN_PROFILE_CN",
	"MSG_OVPN_PROFILES_UPDATED",
	"MSG_OVPN_CONN_ACCEPTED",
	"NS_VPN_PROFILE",
	"VPNProfile",
	"session_matches",
	"sessions_for",
]

NS_VPN_PROFILE = "vpn_profile"

# Legacy default profile: its clients connect with CNs that only share this prefix
DEFAULT_VPN_PROFILE_CN = "fishboneVPN1"

MSG_OVPN_PROFILES_UPDATED = "OVPN_PROFILES_UPDATED"
MSG_OVPN_CONN_ACCEPTED = "OVPN_CONN_ACCEPTED"

_DEFAULT_NIC = "tun_fwvpn"


def session_matches(label: str, session_label: str) -> bool:
	"""Return True if a live session belongs to the profile ``label``."""
	if label == DEFAULT_VPN_PROFILE_CN:
		return session_label.startswith(label)
	return session_label == label


def sessions_for(label: str, sessions: Iterable[Session]) -> list[Session]:
	"""Sessions attributed to ``label``, in source order."""
	return [s for s in sessions if session_matches(label, s.label)]


def _latest(sessions: Sequence[Session]) -> Optional[float]:
	stamps = [s.last_active for s in sessions if s.last_active is not None]
	return max(stamps) if stamps else None


@dataclass(eq=False)
class VPNProfile:
	"""A VPN client identity keyed by its certificate CN or public key.

	Instances are updated in place across refreshes; ``label`` never changes.
	"""
	label: str
	settings: dict[str, Any] = field(default_factory=dict)
	connections: list[Session] = field(default_factory=list)
	last_active_timestamp: Optional[float] = None
	metadata: dict[str, Any] = field(default_factory=dict)
	active: bool = True

	REFRESH_IDENTITIES_EVENTS: ClassVar[tuple[str, ...]] = (MSG_OVPN_PROFILES_UPDATED,)
	REFRESH_IP_MAPPINGS_EVENTS: ClassVar[tuple[str, ...]] = (MSG_OVPN_CONN_ACCEPTED,)

	@classmethod
	def namespace(cls) -> str:
		return NS_VPN_PROFILE

	@classmethod
	def key_of_uid_in_alarm(cls) -> str:
		return "p.device.vpnProfile"

	@classmethod
	def key_of_init_data(cls) -> str:
		return "vpnProfiles"

	@classmethod
	def from_live(
		cls, label: str, settings: Mapping[str, Any], sessions: Sequence[Session],
	) -> "VPNProfile":
		profile = cls(label=label)
		profile.update(settings, sessions)
		return profile

	def unique_id(self) -> str:
		return self.label

	def meta_key(self) -> str:
		return make_meta_key(self.namespace(), self.unique_id())

	def update(self, settings: Mapping[str, Any], sessions: Sequence[Session]) -> None:
		"""Replace live-supplied state, keeping this record's identity."""
		self.settings = dict(settings)
		self.settings["cn"] = self.label
		self.connections = sessions_for(self.label, sessions)
		self.last_active_timestamp = _latest(self.connections)

	def apply_metadata(self, metadata: Mapping[str, Any]) -> None:
		"""Overlay persisted fields; they win over live-supplied ones."""
		self.metadata = dict(metadata)
		self.settings.update(self.metadata)

	def readable_name(self) -> str:
		name = self.settings.get("name") or self.settings.get("clientBoxName")
		return str(name) if name else self.unique_id()

	def nic_name(self) -> str:
		return self.settings.get("interface") or _DEFAULT_NIC

	def network_profile(self) -> Optional[str]:
		return self.settings.get("nicUUID") or None

	def device_name_in_notification(self, alarm: Mapping[str, Any]) -> Optional[str]:
		real_ip = alarm.get("p.device.real.ip")
		if self.unique_id() == DEFAULT_VPN_PROFILE_CN and real_ip:
			return endpoint_host(real_ip)
		return alarm.get("p.device.name")

	def notification_key_suffix(self) -> str:
		subnets = self.settings.get("clientSubnets")
		kind = "s2s" if isinstance(subnets, list) and len(subnets) > 1 else "cs"
		return f".vpn.{kind}.ovpn"

	def to_dict(self) -> dict[str, Any]:
		return {
			"uid": self.unique_id(),
			"cn": self.label,
			"name": self.readable_name(),
			"settings": dict(self.settings),
			"connections": [s.to_dict() for s in self.connections],
			"lastActiveTimestamp": self.last_active_timestamp,
		}
