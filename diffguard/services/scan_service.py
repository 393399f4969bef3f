"""Scan service -- start, inspect and cancel security scans.

The HTTP layer calls these functions; the long-running work happens in a
task owned by the ``ScanTaskRegistry`` and driven by ``ScanScheduler``.
"""

import json
import logging
from uuid import UUID

from diffguard.errors import BadRequestError, NotFoundError
from diffguard.progress_bus import ProgressBroadcaster
from diffguard.providers import PROVIDERS
from diffguard.repos.repository_repo import get_repository_by_id
from diffguard.repos.scan_repo import create_scan, get_scan, get_scans_by_user
from diffguard.services.scan.models import ScanMode, ScanStatus
from diffguard.services.scan.registry import ScanTaskRegistry
from diffguard.services.scan.scheduler import ScanScheduler

logger = logging.getLogger(__name__)

_TERMINAL = {ScanStatus.COMPLETED.value, ScanStatus.FAILED.value}


def _serialize_scan(scan: dict) -> dict:
    """Convert a scans row to a JSON-safe dict (without results)."""
    return {
        "id": str(scan["id"]),
        "repository_id": str(scan["repository_id"]),
        "provider": scan.get("provider"),
        "mode": scan.get("mode"),
        "ref": scan.get("ref"),
        "status": scan["status"],
        "progress": scan.get("progress", 0),
        "message": scan.get("message"),
        "total_files": scan.get("total_files", 0),
        "scanned_files": scan.get("scanned_files", 0),
        "error": scan.get("error"),
        "created_at": scan["created_at"].isoformat() if scan.get("created_at") else None,
        "completed_at": scan["completed_at"].isoformat() if scan.get("completed_at") else None,
    }


async def _owned_scan(user_id: UUID, scan_id: UUID) -> dict:
    scan = await get_scan(scan_id)
    if scan is None or str(scan["user_id"]) != str(user_id):
        raise NotFoundError("Scan not found")
    return scan


async def start_scan(
    user_id: UUID,
    repository_id: UUID,
    mode: str,
    ref: str,
    *,
    bus: ProgressBroadcaster,
    registry: ScanTaskRegistry,
    scheduler: ScanScheduler | None = None,
) -> dict:
    """Start a scan of a connected repository.

    Validates ownership, creates the pending record, hands the pipeline to
    the task registry and returns immediately.
    """
    try:
        scan_mode = ScanMode(mode)
    except ValueError:
        raise BadRequestError(f"Unknown scan mode: {mode!r}")
    ref = (ref or "").strip()
    if not ref:
        raise BadRequestError("A branch name or pull request number is required")

    repository = await get_repository_by_id(repository_id)
    if repository is None or str(repository["user_id"]) != str(user_id):
        raise NotFoundError("Repository not found")
    if repository["provider"] not in PROVIDERS:
        raise BadRequestError(f"Unsupported provider: {repository['provider']}")

    scan = await create_scan(
        user_id, repository_id,
        provider=repository["provider"], mode=scan_mode.value, ref=ref,
    )
    scan_id = scan["id"]

    scheduler = scheduler or ScanScheduler(bus)
    registry.start(
        scan_id,
        scheduler.run(scan_id, user_id=user_id, repository=repository, mode=scan_mode, ref=ref),
    )
    logger.info(
        "Scan %s started for %s (%s %s)", scan_id, repository["name"], scan_mode.value, ref,
    )
    return {
        "id": str(scan_id),
        "status": scan["status"],
        "repository_name": repository["name"],
    }


async def get_scan_status(user_id: UUID, scan_id: UUID) -> dict:
    """Polling snapshot: ``{progress, message, status}``."""
    scan = await _owned_scan(user_id, scan_id)
    return {
        "progress": scan.get("progress", 0),
        "message": scan.get("message"),
        "status": scan["status"],
    }


async def get_scan_detail(user_id: UUID, scan_id: UUID) -> dict:
    """Full scan record including vulnerabilities and summary."""
    scan = await _owned_scan(user_id, scan_id)
    detail = _serialize_scan(scan)
    result = scan.get("result")
    if isinstance(result, str):
        result = json.loads(result)
    detail["result"] = result
    return detail


async def list_scans(user_id: UUID, limit: int = 20) -> list[dict]:
    """Recent scans for the user, newest first."""
    rows = await get_scans_by_user(user_id, limit=limit)
    return [
        {**_serialize_scan(r), "repository_name": r.get("repository_name")}
        for r in rows
    ]


async def cancel_scan(user_id: UUID, scan_id: UUID, *, registry: ScanTaskRegistry) -> dict:
    """Request cancellation of a running scan."""
    scan = await _owned_scan(user_id, scan_id)
    if scan["status"] in _TERMINAL:
        raise BadRequestError(f"Scan already {scan['status']}")
    if not registry.cancel(scan_id):
        raise BadRequestError("Scan is not running in this process")
    return {"id": str(scan_id), "cancelled": True}

