#!/usr/bin/env python3
#
# peertrace/utils/network.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Address validation and endpoint parsing helpers."""

from __future__ import annotations

from ipaddress import IPv4Address, IPv6Address
from typing import Literal, Optional

__all__ = [
	"AddressFamily",
	"classify_address",
	"is_valid_address",
	"host_route_address",
	"endpoint_host",
]

AddressFamily = Literal["ipv4", "ipv6"]


def classify_address(value: object) -> Optional[AddressFamily]:
	"""Classify a virtual address string as IPv4 or IPv6.

	IPv4 is tried first, then IPv6. Both parsers are strict: no prefix length,
	no leading zeros, no surrounding whitespace. Anything else (including
	non-string input) returns None instead of raising.
	"""
	if not isinstance(value, str) or not value:
		return None
	try:
		IPv4Address(value)
		return "ipv4"
	except ValueError:
		pass
	try:
		IPv6Address(value)
		return "ipv6"
	except ValueError:
		return None


def is_valid_address(value: object) -> bool:
	"""Return True if ``value`` is a strict IPv4 or IPv6 address string."""
	return classify_address(value) is not None


def host_route_address(entry: str) -> str | None:
	"""Strip a host-route prefix (``/32`` or ``/128``) from an allowed-ips entry.

	Returns the bare address for host routes and for entries without a prefix.
	Wider networks (e.g. a site-to-site ``10.0.0.0/24``) are not a single virtual
	address and return None.
	"""
	entry = entry.strip()
	if not entry:
		return None
	if "/" not in entry:
		return entry
	addr, _, prefix = entry.partition("/")
	family = classify_address(addr)
	if (family == "ipv4" and prefix == "32") or (family == "ipv6" and prefix == "128"):
		return addr
	return None


def endpoint_host(endpoint: str | None) -> str | None:
	"""Extract the host part of an ``ip:port`` or ``[ipv6]:port`` endpoint."""
	if not endpoint or endpoint == "(none)":
		return None
	if endpoint.startswith("[") and "]:" in endpoint:
		return endpoint[1:endpoint.index("]:")]
	return endpoint.split(":")[0]
