#!/usr/bin/env python3
#
# peertrace/utils/deps.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""FastAPI dependency helpers."""

from __future__ import annotations

from collections.abc import Generator

from fastapi import HTTPException, Request

from ..db.sqlite_runtime import open_db
from ..identity.service import IdentityService


def get_conn(request: Request) -> Generator:
	"""Yield a per-request SQLite connection."""
	with open_db(request.app.state.db_path) as conn:
		yield conn


def get_identity_service(request: Request) -> IdentityService:
	"""Return the service built during application startup."""
	service = getattr(request.app.state, "identity_service", None)
	if service is None:
		raise HTTPException(status_code=503, detail="Identity service not ready")
	return service
