#!/usr/bin/env python3
#
# peertrace/vpn/__init__.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Live VPN statistics sources."""

from __future__ import annotations

from ..utils.config import Config
from .openvpn import OpenVPNStatisticsSource
from .statistics import (
	JsonFileStatisticsSource,
	Session,
	StaticStatisticsSource,
	Statistics,
	StatisticsSource,
)
from .wireguard import WireGuardStatisticsSource

__all__ = [
	"Session",
	"Statistics",
	"StatisticsSource",
	"build_source",
]


def build_source(cfg: Config) -> StatisticsSource:
	"""Create the statistics source selected by ``cfg.statistics_source``."""
	if cfg.statistics_source == "wireguard":
		return WireGuardStatisticsSource(handshake_threshold=cfg.handshake_threshold)
	if cfg.statistics_source == "openvpn":
		return OpenVPNStatisticsSource(cfg.openvpn_status_path, cfg.openvpn_ccd_dir)
	if cfg.statistics_source == "file" and cfg.statistics_file is not None:
		return JsonFileStatisticsSource(cfg.statistics_file)
	return StaticStatisticsSource()
