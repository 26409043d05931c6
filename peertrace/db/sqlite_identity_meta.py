#!/usr/bin/env python3
#
# peertrace/db/sqlite_identity_meta.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Persistent per-identity metadata store.

Each identity owns a hash-like set of ``field -> value`` strings under its meta key
(``"<namespace>:<unique id>"``). Reads are async (aiosqlite) because they happen
inside the registry's concurrent fan-out; writes come from API handlers and use the
synchronous runtime helpers.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Mapping, Protocol

import aiosqlite

from ..utils.time import utcnow
from .sqlite_runtime import transaction

_log = logging.getLogger(__name__)

__all__ = [
	"MetadataStore",
	"SqliteMetadataStore",
	"parse_metadata",
	"set_metadata",
	"delete_metadata",
]


class MetadataStore(Protocol):
	"""Read side of the persistent store as seen by the identity registry."""

	async def get_metadata(self, meta_key: str) -> dict[str, str]: ...

	async def get_updated_at(self, meta_key: str) -> datetime | None: ...


def parse_metadata(raw: Mapping[str, str] | None) -> dict[str, Any]:
	"""Turn stored fields back into the values that were written.

	Every value is stored as a JSON document, so ``"42"`` and ``42`` stay distinct.
	Rows that are not valid JSON (edited by hand) are kept as the raw string.
	"""
	parsed: dict[str, Any] = {}
	for field, value in (raw or {}).items():
		try:
			parsed[field] = json.loads(value)
		except (json.JSONDecodeError, TypeError):
			parsed[field] = value
	return parsed


def _encode(value: Any) -> str:
	return json.dumps(value)


class SqliteMetadataStore:
	"""aiosqlite-backed reader for the ``identity_meta`` table."""

	def __init__(self, db_path: Path) -> None:
		self._db_path = db_path

	async def get_metadata(self, meta_key: str) -> dict[str, str]:
		"""Return every stored field for ``meta_key`` (empty dict if none).

		Errors are not caught here: a failing read must abort the caller's pass.
		"""
		async with aiosqlite.connect(self._db_path) as db:
			cursor = await db.execute(
				"SELECT field, value FROM identity_meta WHERE meta_key = ?",
				(meta_key,),
			)
			rows = await cursor.fetchall()
		return {field: value for field, value in rows}

	async def get_updated_at(self, meta_key: str) -> datetime | None:
		"""Return the latest write time for ``meta_key``, or None."""
		async with aiosqlite.connect(self._db_path, detect_types=sqlite3.PARSE_DECLTYPES) as db:
			cursor = await db.execute(
				"SELECT updated_at FROM identity_meta WHERE meta_key = ? ORDER BY updated_at DESC LIMIT 1",
				(meta_key,),
			)
			row = await cursor.fetchone()
		return row[0] if row else None


def set_metadata(conn: sqlite3.Connection, meta_key: str, fields: Mapping[str, Any]) -> int:
	"""Upsert metadata fields for ``meta_key``; returns the number of fields written."""
	now = utcnow()
	with transaction(conn):
		for field, value in fields.items():
			conn.execute(
				"""
				INSERT INTO identity_meta (meta_key, field, value, updated_at) VALUES (?, ?, ?, ?)
				ON CONFLICT(meta_key, field) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
				""",
				(meta_key, field, _encode(value), now),
			)
	_log.info("IDENTITY_META updated key=%s fields=%d", meta_key, len(fields))
	return len(fields)


def delete_metadata(conn: sqlite3.Connection, meta_key: str) -> int:
	"""Delete all metadata for ``meta_key``; returns the number of rows removed."""
	with transaction(conn):
		cur = conn.execute("DELETE FROM identity_meta WHERE meta_key = ?", (meta_key,))
	_log.info("IDENTITY_META deleted key=%s rows=%d", meta_key, cur.rowcount)
	return cur.rowcount
