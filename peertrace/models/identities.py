#!/usr/bin/env python3
#
# peertrace/models/identities.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Identity-related Pydantic models."""

from __future__ import annotations

import re
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from ..vpn.statistics import Session

_FIELD_NAME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_.-]{0,63}$")


class _CamelModel(BaseModel):
	"""Serialised with camelCase keys, matching the read model."""
	model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SessionPublic(_CamelModel):
	"""Live session as exposed by the API."""
	label: str
	virtual_addresses: list[str] = Field(default_factory=list)
	endpoint: Optional[str] = None
	last_active: Optional[float] = None

	@classmethod
	def from_session(cls, session: Session) -> "SessionPublic":
		return cls(
			label=session.label,
			virtual_addresses=list(session.virtual_addresses),
			endpoint=session.endpoint,
			last_active=session.last_active,
		)


class IdentityPublic(_CamelModel):
	"""Registry entry as exposed by the API."""
	uid: str
	name: str
	settings: dict[str, Any] = Field(default_factory=dict)
	metadata: dict[str, Any] = Field(default_factory=dict)
	connections: list[SessionPublic] = Field(default_factory=list)
	last_active_timestamp: Optional[float] = None
	nic: str
	notification_key_suffix: str


class MetadataUpdate(BaseModel):
	"""Persisted metadata upsert payload."""
	data: dict[str, Any] = Field(..., min_length=1, max_length=64)

	@field_validator("data")
	@classmethod
	def field_names_valid(cls, v: dict[str, Any]) -> dict[str, Any]:
		for name in v:
			if not _FIELD_NAME_RE.fullmatch(name):
				raise ValueError(f"Invalid metadata field name: {name!r}")
			if name == "cn":
				raise ValueError("Field 'cn' is derived from the identity label and cannot be overridden")
		return v
