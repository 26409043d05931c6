#!/usr/bin/env python3
#
# peertrace/db/sqlite_runtime.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Synchronous SQLite helpers used for schema setup and metadata writes."""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

_log = logging.getLogger(__name__)

__all__ = ["connect", "open_db", "transaction"]


def _store_timestamp(value: datetime) -> str:
	# Fixed-width UTC text keeps ORDER BY updated_at chronological
	if value.tzinfo is None:
		raise ValueError("identity_meta timestamps must be timezone-aware")
	return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _load_timestamp(raw: bytes) -> Optional[datetime]:
	text = raw.decode("utf-8", errors="replace")
	try:
		parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
	except ValueError:
		_log.warning("IDENTITY_META unreadable updated_at %r", text)
		return None
	return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


# Process-global registration; aiosqlite readers pick it up as well
sqlite3.register_adapter(datetime, _store_timestamp)
sqlite3.register_converter("timestamp", _load_timestamp)


def connect(db_path: Path) -> sqlite3.Connection:
	"""Open ``db_path`` in WAL mode, creating its directory if needed."""
	db_path.parent.mkdir(parents=True, exist_ok=True)
	conn = sqlite3.connect(
		str(db_path),
		detect_types=sqlite3.PARSE_DECLTYPES,
		check_same_thread=False,
		timeout=30.0,
	)
	conn.row_factory = sqlite3.Row
	# Readers in the refresh fan-out must not block API writes
	conn.execute("PRAGMA journal_mode=WAL")
	return conn


@contextmanager
def open_db(db_path: Path) -> Iterator[sqlite3.Connection]:
	"""Connection scoped to a ``with`` block; always closed on exit."""
	conn = connect(db_path)
	try:
		yield conn
	finally:
		conn.close()


@contextmanager
def transaction(conn: sqlite3.Connection):
	"""Commit on success, roll back on error. Nested use joins the outer transaction."""
	if conn.in_transaction:
		yield
		return
	conn.execute("BEGIN")
	try:
		yield
	except Exception:
		conn.rollback()
		raise
	conn.commit()
