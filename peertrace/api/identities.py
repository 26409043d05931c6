#!/usr/bin/env python3
#
# peertrace/api/identities.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Identity and virtual-IP attribution API routes."""

from __future__ import annotations

import logging
import sqlite3
from typing import Any, Awaitable, Callable, TypeVar

from fastapi import APIRouter, Depends, HTTPException, Request
from starlette.concurrency import run_in_threadpool

from ..db.sqlite_identity_meta import delete_metadata, set_metadata
from ..identity.base import IdentityKind, make_meta_key
from ..identity.service import IdentityService
from ..models.identities import IdentityPublic, MetadataUpdate, SessionPublic
from ..utils.deps import get_conn, get_identity_service
from ..utils.network import is_valid_address
from .response import ok_response

_log = logging.getLogger(__name__)

router = APIRouter(tags=["identities"])

__all__ = ["router"]

T = TypeVar("T")


async def _guarded(what: str, call: Callable[[], Awaitable[T]]) -> T:
	"""Run a service call, mapping unexpected failures to a generic 500."""
	try:
		return await call()
	except HTTPException:
		raise
	except Exception as exc:
		_log.exception("IDENTITY_API %s failed", what)
		raise HTTPException(status_code=500, detail=f"Failed to {what}") from exc


def _to_public(identity: IdentityKind) -> IdentityPublic:
	return IdentityPublic(
		uid=identity.unique_id(),
		name=identity.readable_name(),
		settings=identity.settings,
		metadata=identity.metadata,
		connections=[SessionPublic.from_session(s) for s in identity.connections],
		last_active_timestamp=identity.last_active_timestamp,
		nic=identity.nic_name(),
		notification_key_suffix=identity.notification_key_suffix(),
	)


@router.get("")
async def list_profiles(service: IdentityService = Depends(get_identity_service)):
	"""Configured identities with their live connections (read model)."""
	profiles = await _guarded("load identities", service.get_init_data)
	return ok_response(data={service.identity_cls.key_of_init_data(): profiles})


@router.get("/registry")
async def get_registry(service: IdentityService = Depends(get_identity_service)):
	"""Reconcile the registry and return every tracked identity."""
	snapshot = await _guarded("refresh identities", service.get_identities)
	return ok_response(data=[_to_public(i).model_dump(by_alias=True) for i in snapshot.values()])


@router.get("/ip-mappings")
async def get_ip_mappings(service: IdentityService = Depends(get_identity_service)):
	"""Virtual IP to identity label, including recently disconnected clients."""
	mappings = await _guarded("refresh ip mappings", service.get_ip_unique_id_mappings)
	return ok_response(data=mappings)


@router.get("/ip-mappings/{ip}")
async def lookup_ip(ip: str, service: IdentityService = Depends(get_identity_service)):
	"""Resolve one virtual IP from the attribution cache without refreshing it."""
	if not is_valid_address(ip):
		raise HTTPException(status_code=400, detail="Invalid IP address")
	label = service.ip_uid_cache.lookup(ip)
	if label is None:
		raise HTTPException(status_code=404, detail="No identity for this address")
	return ok_response(data={"ip": ip, "uid": label})


@router.get("/endpoints")
async def get_endpoints(service: IdentityService = Depends(get_identity_service)):
	"""Virtual IP to real endpoint for live sessions only."""
	mappings = await _guarded("load endpoints", service.get_ip_endpoint_mappings)
	return ok_response(data=mappings)


@router.post("/events/{event}")
async def post_event(event: str, service: IdentityService = Depends(get_identity_service)):
	"""Dispatch a refresh trigger event (e.g. ``OVPN_CONN_ACCEPTED``)."""
	handled = await _guarded("handle event", lambda: service.handle_event(event))
	return ok_response(event=event, handled=handled)


@router.put("/{label:path}/metadata")
async def put_metadata(
	label: str,
	payload: MetadataUpdate,
	service: IdentityService = Depends(get_identity_service),
	conn: sqlite3.Connection = Depends(get_conn),
):
	"""Upsert persisted metadata; applied on the next reconciliation pass."""
	meta_key = make_meta_key(service.identity_cls.namespace(), label)
	count = await run_in_threadpool(set_metadata, conn, meta_key, payload.data)
	return ok_response(message="Metadata updated", data={"uid": label, "fields": count})


@router.delete("/{label:path}/metadata")
async def remove_metadata(
	label: str,
	service: IdentityService = Depends(get_identity_service),
	conn: sqlite3.Connection = Depends(get_conn),
):
	"""Delete all persisted metadata for an identity."""
	meta_key = make_meta_key(service.identity_cls.namespace(), label)
	removed = await run_in_threadpool(delete_metadata, conn, meta_key)
	if not removed:
		raise HTTPException(status_code=404, detail="No metadata for this identity")
	return ok_response(message="Metadata deleted", data={"uid": label, "fields": removed})


@router.get("/health")
async def health(request: Request):
	"""Liveness plus scheduler job status."""
	scheduler = getattr(request.app.state, "scheduler", None)
	data: dict[str, Any] = {
		"ready": getattr(request.app.state, "identity_service", None) is not None,
		"jobs": scheduler.get_status() if scheduler else [],
	}
	return ok_response(data=data)
