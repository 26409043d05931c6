#!/usr/bin/env python3
#
# main.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

# PeerTrace - VPN client identity tracking
# Local development entry point
#

import os

import uvicorn
from peertrace.main import LOG_DATE_FORMAT, LOG_FORMAT
from peertrace.utils.config import load_config

# Uvicorn logging dict-config that reuses the same format as the app
_UVICORN_LOG_CONFIG: dict = {
	"version": 1,
	"disable_existing_loggers": False,
	"formatters": {
		"default": {"format": LOG_FORMAT, "datefmt": LOG_DATE_FORMAT},
	},
	"handlers": {
		"default": {
			"formatter": "default",
			"class": "logging.StreamHandler",
			"stream": "ext://sys.stderr",
		},
	},
	"loggers": {
		"uvicorn": {"handlers": ["default"], "level": "INFO", "propagate": False},
		"uvicorn.error": {"level": "INFO"},
		"uvicorn.access": {"handlers": ["default"], "level": "INFO", "propagate": False},
	},
}

if __name__ == "__main__":
	cfg = load_config()

	for _logger in _UVICORN_LOG_CONFIG["loggers"].values():
		_logger["level"] = cfg.log_level

	uvicorn.run(
		"peertrace:create_app",
		host=cfg.http_host,
		port=cfg.http_port,
		reload=os.environ.get("PEERTRACE_DEV_RELOAD", "").lower() in ("1", "true", "yes"),
		factory=True,
		log_config=_UVICORN_LOG_CONFIG,
	)
