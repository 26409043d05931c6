#!/usr/bin/env python3
#
# peertrace/api/response.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Common API response helpers."""

from __future__ import annotations

from typing import Any


def ok_response(*, data: Any = None, **extra: Any) -> dict[str, Any]:
	"""Build the ``{"status": "ok", "data": ...}`` success envelope."""
	payload: dict[str, Any] = {"status": "ok"}
	if data is not None:
		payload["data"] = data
	payload.update(extra)
	return payload
