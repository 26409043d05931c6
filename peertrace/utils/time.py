#!/usr/bin/env python3
#
# peertrace/utils/time.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Timezone-aware time utilities."""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Callable

# Wall-clock source returning epoch seconds. Injected into caches and sources
# so tests can drive time explicitly.
Clock = Callable[[], float]


def utcnow() -> datetime:
	"""Return the current UTC time as a timezone-aware datetime."""
	return datetime.now(timezone.utc)


def epoch_now() -> float:
	"""Return the current wall-clock time in epoch seconds."""
	return time.time()
