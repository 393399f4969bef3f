"""Scans router -- start scans, poll them, cancel them, stream their progress."""

import asyncio
import json
import logging
from typing import AsyncIterator, Awaitable, Callable
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from diffguard.api.deps import get_current_user, get_progress_bus, get_scan_registry
from diffguard.progress_bus import FAILED_PROGRESS, ProgressBroadcaster
from diffguard.services.scan.models import ScanMode, ScanStatus
from diffguard.services.scan.registry import ScanTaskRegistry
from diffguard.services.scan_service import (
    cancel_scan,
    get_scan_detail,
    get_scan_status,
    list_scans,
    start_scan,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/scans", tags=["scans"])

# Comment frames keep proxies from closing an idle stream
KEEPALIVE_SECONDS = 15.0


class StartScanRequest(BaseModel):
    repository_id: UUID
    mode: ScanMode = ScanMode.BRANCH
    ref: str = Field(..., min_length=1, max_length=255)


def _sse(payload: dict) -> str:
    return f"data: {json.dumps(payload)}\n\n"


def _snapshot_payload(snapshot: dict) -> tuple[dict, bool]:
    """Stream payload for a stored status, and whether it is terminal."""
    status = snapshot["status"]
    if status == ScanStatus.FAILED.value:
        return {"progress": FAILED_PROGRESS, "message": snapshot.get("message") or "Scan failed"}, True
    payload = {"progress": snapshot.get("progress", 0), "message": snapshot.get("message") or ""}
    return payload, status == ScanStatus.COMPLETED.value


async def progress_events(
    bus: ProgressBroadcaster,
    scan_id: str,
    load_snapshot: Callable[[], Awaitable[dict]],
    is_disconnected: Callable[[], Awaitable[bool]],
    keepalive: float = KEEPALIVE_SECONDS,
) -> AsyncIterator[str]:
    """Yield SSE frames for one scan until it ends or the client leaves.

    The stream is attached before the stored status is read, so an event
    published in between is not lost; the stored status goes out first.
    """
    with bus.open_stream(scan_id) as stream:
        payload, finished = _snapshot_payload(await load_snapshot())
        yield _sse(payload)
        while not finished:
            if await is_disconnected():
                logger.debug("Progress stream for scan %s: client gone", scan_id)
                break
            try:
                event = await asyncio.wait_for(stream.get(), timeout=keepalive)
            except asyncio.TimeoutError:
                yield ": keep-alive\n\n"
                continue
            if event is None:
                break
            yield _sse(event.to_payload())
            finished = event.is_terminal


@router.post("")
async def create_scan_endpoint(
    body: StartScanRequest,
    current_user: dict = Depends(get_current_user),
    bus: ProgressBroadcaster = Depends(get_progress_bus),
    registry: ScanTaskRegistry = Depends(get_scan_registry),
) -> dict:
    """Start a scan; returns its id at once while the scan runs in the background."""
    return await start_scan(
        current_user["id"], body.repository_id, body.mode.value, body.ref,
        bus=bus, registry=registry,
    )


@router.get("")
async def list_scans_endpoint(
    limit: int = Query(20, ge=1, le=100),
    current_user: dict = Depends(get_current_user),
) -> dict:
    """Recent scans for the current user."""
    return {"items": await list_scans(current_user["id"], limit=limit)}


@router.get("/{scan_id}")
async def scan_detail_endpoint(
    scan_id: UUID,
    current_user: dict = Depends(get_current_user),
) -> dict:
    return await get_scan_detail(current_user["id"], scan_id)


@router.get("/{scan_id}/status")
async def scan_status_endpoint(
    scan_id: UUID,
    current_user: dict = Depends(get_current_user),
) -> dict:
    """Polling alternative to the progress stream."""
    return await get_scan_status(current_user["id"], scan_id)


@router.post("/{scan_id}/cancel")
async def cancel_scan_endpoint(
    scan_id: UUID,
    current_user: dict = Depends(get_current_user),
    registry: ScanTaskRegistry = Depends(get_scan_registry),
) -> dict:
    return await cancel_scan(current_user["id"], scan_id, registry=registry)


@router.get("/{scan_id}/stream")
async def scan_stream_endpoint(
    scan_id: UUID,
    request: Request,
    current_user: dict = Depends(get_current_user),
    bus: ProgressBroadcaster = Depends(get_progress_bus),
) -> StreamingResponse:
    """Server-sent events: one ``data: {"progress", "message"}`` frame per update."""
    user_id = current_user["id"]
    # Ownership is checked before the response starts so a 404 is still possible
    await get_scan_status(user_id, scan_id)

    events = progress_events(
        bus,
        str(scan_id),
        load_snapshot=lambda: get_scan_status(user_id, scan_id),
        is_disconnected=request.is_disconnected,
    )
    return StreamingResponse(
        events,
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
