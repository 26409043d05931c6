#!/usr/bin/env python3
#
# peertrace/__init__.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""PeerTrace – VPN client identity tracking and virtual-IP attribution."""

from .main import create_app

__all__ = ["create_app"]
