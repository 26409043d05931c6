#!/usr/bin/env python3
#
# peertrace/db/sqlite_schema.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""SQLite schema initialization."""

from __future__ import annotations

import logging
import sqlite3

from .sqlite_runtime import transaction

_log = logging.getLogger(__name__)


def init_schema(conn: sqlite3.Connection) -> None:
	"""Create the required database schema (idempotent)."""
	with transaction(conn):
		# Per-identity metadata, one row per field (hash-like layout)
		conn.execute(
			"""
			CREATE TABLE IF NOT EXISTS identity_meta (
				meta_key TEXT NOT NULL,
				field TEXT NOT NULL,
				value TEXT NOT NULL,
				updated_at timestamp NOT NULL,
				PRIMARY KEY (meta_key, field)
			)
			"""
		)
		conn.execute(
			"CREATE INDEX IF NOT EXISTS idx_identity_meta_updated ON identity_meta(meta_key, updated_at)"
		)
	_log.debug("SQLite schema ready")
