#!/usr/bin/env python3
#
# peertrace/utils/config.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Configuration loading and app-level defaults."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

_log = logging.getLogger(__name__)


class ConfigValidationError(Exception):
	"""Raised when critical configuration is missing or invalid."""


# ---------------------------------------------------------------------------
# Fixed constants
# ---------------------------------------------------------------------------
DEFAULT_IP_UID_TTL_SECONDS = 1800  # disconnected clients may still show up in flow logs
DEFAULT_HANDSHAKE_THRESHOLD = 180  # WireGuard peer is "connected" if handshake < 3 min ago
DEFAULT_OPENVPN_STATUS_PATH = Path("/var/log/openvpn/openvpn-status.log")
DEFAULT_OPENVPN_CCD_DIR = Path("/etc/openvpn/ccd")

STATISTICS_SOURCES = frozenset({"wireguard", "openvpn", "file", "none"})


@dataclass(frozen=True)
class Config:
	"""Resolved runtime configuration derived from env and defaults."""
	data_dir: Path
	db_path: Path
	log_level: str = "INFO"
	statistics_source: str = "wireguard"
	openvpn_status_path: Path = DEFAULT_OPENVPN_STATUS_PATH
	openvpn_ccd_dir: Path = DEFAULT_OPENVPN_CCD_DIR
	statistics_file: Path | None = None
	ip_uid_ttl_seconds: float = DEFAULT_IP_UID_TTL_SECONDS
	identity_refresh_interval: float = 60.0
	ip_mapping_refresh_interval: float = 15.0
	metadata_concurrency: int = 16
	handshake_threshold: int = DEFAULT_HANDSHAKE_THRESHOLD
	http_host: str = "127.0.0.1"
	http_port: int = 8000


def _parse_value(raw: str) -> str:
	"""Extract value, respecting quotes and stripping inline comments."""
	raw = raw.strip()
	if raw and raw[0] in ('"', "'"):
		quote = raw[0]
		end = raw.find(quote, 1)
		if end != -1:
			return raw[1:end]
	if " #" in raw:
		raw = raw.split(" #", 1)[0]
	return raw.strip()


def load_dotenv(dotenv_path: Path | None = None) -> None:
	"""Load simple KEY=VALUE pairs from settings.env.

	Blank lines, comments and ``export`` prefixes are handled. Variables that are
	already set in the environment are never overridden.
	"""
	project_root = Path(__file__).resolve().parents[2]
	dotenv_path = dotenv_path or (project_root / "settings.env")
	if not dotenv_path.exists():
		return
	for raw_line in dotenv_path.read_text(encoding="utf-8").splitlines():
		line = raw_line.strip()
		if not line or line.startswith("#") or "=" not in line:
			continue
		key, value = line.split("=", 1)
		key = key.strip()
		if key.startswith("export "):
			key = key[7:].strip()
		if not key:
			continue
		os.environ.setdefault(key, _parse_value(value))


def _env_number(name: str, default: float, *, minimum: float, cast=float):
	raw = os.getenv(name)
	if raw is None or raw.strip() == "":
		return cast(default)
	try:
		value = cast(raw.strip())
	except ValueError as exc:
		raise ConfigValidationError(f"{name} must be a number, got {raw!r}") from exc
	if value < minimum:
		raise ConfigValidationError(f"{name} must be >= {minimum}, got {value}")
	return value


def load_config(dotenv_path: Path | None = None) -> Config:
	"""Load configuration from environment variables (optionally via settings.env)."""
	load_dotenv(dotenv_path)
	project_root = Path(__file__).resolve().parents[2]

	data_dir = Path(os.getenv("PEERTRACE_DATA_DIR", str(project_root / "data"))).resolve()
	db_path = (data_dir / "peertrace.db").resolve()

	try:
		if data_dir.exists() and not data_dir.is_dir():
			raise ConfigValidationError(f"Path exists but is not a directory: {data_dir}")
		data_dir.mkdir(parents=True, exist_ok=True)
	except OSError as exc:
		raise ConfigValidationError(f"Cannot create data directory: {exc}") from exc

	allowed_levels = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}
	log_level = os.getenv("LOG_LEVEL", "INFO").upper()
	if log_level not in allowed_levels:
		log_level = "INFO"

	source = os.getenv("PEERTRACE_STATISTICS_SOURCE", "wireguard").strip().lower()
	if source not in STATISTICS_SOURCES:
		raise ConfigValidationError(
			f"PEERTRACE_STATISTICS_SOURCE must be one of {sorted(STATISTICS_SOURCES)}, got {source!r}"
		)

	statistics_file: Path | None = None
	if source == "file":
		raw_file = os.getenv("PEERTRACE_STATISTICS_FILE", "").strip()
		if not raw_file:
			raise ConfigValidationError("PEERTRACE_STATISTICS_FILE is required when the statistics source is 'file'")
		statistics_file = Path(raw_file)

	cfg = Config(
		data_dir=data_dir,
		db_path=db_path,
		log_level=log_level,
		statistics_source=source,
		openvpn_status_path=Path(os.getenv("PEERTRACE_OPENVPN_STATUS", str(DEFAULT_OPENVPN_STATUS_PATH))),
		openvpn_ccd_dir=Path(os.getenv("PEERTRACE_OPENVPN_CCD_DIR", str(DEFAULT_OPENVPN_CCD_DIR))),
		statistics_file=statistics_file,
		ip_uid_ttl_seconds=_env_number("PEERTRACE_IP_UID_TTL", DEFAULT_IP_UID_TTL_SECONDS, minimum=1),
		identity_refresh_interval=_env_number("PEERTRACE_IDENTITY_REFRESH_INTERVAL", 60, minimum=1),
		ip_mapping_refresh_interval=_env_number("PEERTRACE_IP_MAPPING_REFRESH_INTERVAL", 15, minimum=1),
		metadata_concurrency=_env_number("PEERTRACE_METADATA_CONCURRENCY", 16, minimum=1, cast=int),
		handshake_threshold=_env_number(
			"PEERTRACE_HANDSHAKE_THRESHOLD", DEFAULT_HANDSHAKE_THRESHOLD, minimum=1, cast=int,
		),
		http_host=os.getenv("PEERTRACE_HTTP_HOST", "127.0.0.1"),
		http_port=_env_number("PEERTRACE_HTTP_PORT", 8000, minimum=1, cast=int),
	)
	_log.debug("Loaded config source=%s data_dir=%s", cfg.statistics_source, cfg.data_dir)
	return cfg

