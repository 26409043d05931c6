#!/usr/bin/env python3
#
# peertrace/identity/__init__.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Identity registry and virtual-IP attribution caches."""

from .base import IdentityKind
from .ip_cache import IPEndpointCache, IPIdentityCache, TTLMap
from .registry import IdentityRegistry
from .service import IdentityService
from .vpn_profile import (
	DEFAULT_VPN_PROFILE_CN,
	MSG_OVPN_CONN_ACCEPTED,
	MSG_OVPN_PROFILES_UPDATED,
	VPNProfile,
)

__all__ = [
	"IdentityKind",
	"IdentityRegistry",
	"IdentityService",
	"IPEndpointCache",
	"IPIdentityCache",
	"TTLMap",
	"VPNProfile",
	"DEFAULT_VPN_PROFILE_CN",
	"MSG_OVPN_CONN_ACCEPTED",
	"MSG_OVPN_PROFILES_UPDATED",
]
