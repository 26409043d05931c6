#!/usr/bin/env python3
#
# peertrace/main.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""FastAPI application factory and startup lifecycle wiring."""

from __future__ import annotations

import logging
import os
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .api import identities as identities_api
from .db.sqlite_identity_meta import MetadataStore, SqliteMetadataStore
from .db.sqlite_runtime import open_db
from .db.sqlite_schema import init_schema
from .identity.service import IdentityService
from .utils.config import Config, load_config
from .utils.scheduler import Scheduler
from .vpn import StatisticsSource, build_source

_log = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# ANSI color codes for log levels (if TTY)
_LOG_COLORS = {
	"DEBUG": "\033[36m",
	"INFO": "\033[32m",
	"WARNING": "\033[33m",
	"ERROR": "\033[31m",
	"CRITICAL": "\033[35m",
}
_RESET = "\033[0m"


class _ColoredFormatter(logging.Formatter):
	"""Formatter that colours the level name on a TTY."""

	def format(self, record):
		orig_levelname = record.levelname
		color = _LOG_COLORS.get(orig_levelname)
		record.levelname = f"{color}{orig_levelname:<8}{_RESET}" if color else f"{orig_levelname:<8}"
		try:
			return super().format(record)
		finally:
			record.levelname = orig_levelname


def _setup_logging(log_level: str) -> None:
	"""Configure unified logging for the entire application."""
	level = getattr(logging, log_level, logging.INFO)
	if sys.stdout.isatty():
		formatter: logging.Formatter = _ColoredFormatter(
			fmt="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
			datefmt=LOG_DATE_FORMAT,
		)
	else:
		formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

	# force=True removes pre-existing handlers (e.g. from uvicorn)
	logging.basicConfig(level=level, handlers=[logging.StreamHandler(sys.stdout)], force=True)
	for handler in logging.root.handlers:
		handler.setFormatter(formatter)

	for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
		logger = logging.getLogger(name)
		logger.handlers.clear()
		logger.setLevel(level)
		logger.propagate = True

	logging.getLogger("aiosqlite").setLevel(logging.WARNING)


def _build_scheduler(cfg: Config, service: IdentityService) -> Scheduler:
	scheduler = Scheduler()
	scheduler.add(
		"identity-refresh",
		interval_seconds=cfg.identity_refresh_interval,
		func=service.refresh_identities,
		run_on_start=True,
		timeout=max(cfg.identity_refresh_interval, 30.0),
	)
	scheduler.add(
		"ip-mapping-refresh",
		interval_seconds=cfg.ip_mapping_refresh_interval,
		func=service.refresh_ip_mappings,
		run_on_start=True,
		timeout=max(cfg.ip_mapping_refresh_interval, 30.0),
	)
	return scheduler


@asynccontextmanager
async def _lifespan(app: FastAPI):
	"""Application lifespan manager."""
	cfg: Config = app.state.cfg

	with open_db(cfg.db_path) as conn:
		init_schema(conn)

	source: StatisticsSource | None = app.state.source_override
	if source is None:
		source = build_source(cfg)
	store: MetadataStore | None = app.state.store_override
	if store is None:
		store = SqliteMetadataStore(cfg.db_path)
	service = IdentityService.from_config(cfg, source, store)
	app.state.identity_service = service

	scheduler: Scheduler | None = None
	if app.state.run_scheduler:
		scheduler = _build_scheduler(cfg, service)
		await scheduler.start()
	app.state.scheduler = scheduler

	_log.info(
		"PeerTrace started (source=%s, ttl=%ss, pid=%d)",
		cfg.statistics_source, cfg.ip_uid_ttl_seconds, os.getpid(),
	)

	yield

	if scheduler:
		await scheduler.stop_graceful(timeout=5.0)
	app.state.identity_service = None
	_log.info("PeerTrace shutdown complete")


def create_app(
	cfg: Config | None = None,
	*,
	source: StatisticsSource | None = None,
	store: MetadataStore | None = None,
	run_scheduler: bool = True,
) -> FastAPI:
	"""Application factory for PeerTrace.

	``source`` and ``store`` replace the configured collaborators (tests, embedding).
	"""
	cfg = cfg or load_config()
	_setup_logging(cfg.log_level)

	app = FastAPI(
		title="PeerTrace",
		description="VPN client identity tracking and virtual-IP attribution",
		version="0.1.0",
		lifespan=_lifespan,
		docs_url="/api/docs",
		redoc_url="/api/redoc",
	)

	app.state.cfg = cfg
	app.state.db_path = cfg.db_path
	app.state.source_override = source
	app.state.store_override = store
	app.state.run_scheduler = run_scheduler
	app.state.identity_service = None

	app.include_router(identities_api.router, prefix="/api/identities")

	return app
