#!/usr/bin/env python3
#
# peertrace/models/__init__.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Pydantic models for PeerTrace."""

from .identities import (
	IdentityPublic,
	MetadataUpdate,
	SessionPublic,
)

__all__ = [
	"IdentityPublic",
	"MetadataUpdate",
	"SessionPublic",
]
