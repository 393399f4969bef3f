"""Scan scheduler — drives one scan from credential lookup to final summary.

State machine: ``pending → in-progress → {completed, failed}``.

``failed`` is only reachable before analysis starts (credential lookup,
provider listing) or from outside the pipeline (cancellation, deadline, a
final write that did not land).  Once batches run, per-batch errors are
absorbed into the result and the scan completes.

Batches run in fixed-width windows: every batch in a window is analysed
concurrently, and only when the whole window is back does the scheduler
fold the window's outcomes into the running totals.  Nothing inside a
window touches shared state, so no locking is needed.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable

from diffguard import providers
from diffguard.config import settings
from diffguard.errors import AnalysisError, PersistenceError, ScanConfigurationError
from diffguard.progress_bus import FAILED_PROGRESS, ProgressBroadcaster, ProgressEvent
from diffguard.repos import credential_repo, scan_repo

from .analyzer import BatchAnalyzer
from .models import Batch, ScanMode, ScanStatus, Vulnerability, summarize
from .planner import plan_batches

logger = logging.getLogger(__name__)

UpdateScanFn = Callable[..., Awaitable[dict]]
CredentialFn = Callable[..., Awaitable[dict | None]]
AdapterFactory = Callable[[str], providers.ProviderAdapter]


@dataclass
class BatchOutcome:
    """What one batch produced; ``error`` set means it counted as zero findings."""

    batch: Batch
    vulnerabilities: list[Vulnerability] = field(default_factory=list)
    error: str | None = None


@dataclass
class _ScanState:
    scan_id: str
    total_files: int = 0
    scanned_files: int = 0
    failed_files: int = 0
    failed_batches: int = 0
    progress: int = 0
    vulnerabilities: list[Vulnerability] = field(default_factory=list)

    def fold(self, outcomes: list[BatchOutcome]) -> None:
        """Reduce one window's outcomes into the running totals."""
        for outcome in outcomes:
            self.scanned_files += len(outcome.batch)
            if outcome.error is not None:
                self.failed_batches += 1
                self.failed_files += len(outcome.batch)
            else:
                self.vulnerabilities.extend(outcome.vulnerabilities)

    def result(self) -> dict:
        return {
            "vulnerabilities": [v.to_record() for v in self.vulnerabilities],
            "summary": summarize(self.vulnerabilities),
            "failedBatches": self.failed_batches,
            "failedFiles": self.failed_files,
        }


def analysis_progress(scanned: int, total: int) -> int:
    """Linear interpolation between the discovered milestone and the ceiling."""
    low = settings.PROGRESS_FILES_DISCOVERED
    high = settings.PROGRESS_ANALYSIS_CEILING
    if total <= 0:
        return high
    value = low + (high - low) * min(scanned, total) // total
    return min(value, high)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ScanScheduler:
    """Runs scans; one instance serves every scan in the process."""

    def __init__(
        self,
        bus: ProgressBroadcaster,
        *,
        analyzer: BatchAnalyzer | None = None,
        update_scan: UpdateScanFn | None = None,
        get_credential: CredentialFn | None = None,
        adapter_factory: AdapterFactory | None = None,
        window_size: int | None = None,
        deadline_seconds: float | None = None,
    ) -> None:
        self._bus = bus
        self._analyzer = analyzer or BatchAnalyzer()
        self._update_scan = update_scan or scan_repo.update_scan
        self._get_credential = get_credential or credential_repo.get_active_credential
        self._adapter_factory = adapter_factory or providers.get_adapter
        self._window_size = window_size or settings.SCAN_WINDOW_SIZE
        if deadline_seconds is None:
            deadline_seconds = settings.SCAN_DEADLINE_MINUTES * 60
        self._deadline = deadline_seconds or None
        if self._window_size < 1:
            raise ValueError("window_size must be at least 1")

    # ── entry point ───────────────────────────────────────────

    async def run(
        self,
        scan_id,
        *,
        user_id,
        repository: dict,
        mode: ScanMode | str,
        ref: str,
    ) -> dict | None:
        """Run the scan to a terminal state; returns the result on completion.

        Never raises for pipeline faults (they end the scan ``failed``).
        Re-raises task cancellation and a final ``PersistenceError``.
        """
        state = _ScanState(scan_id=str(scan_id))
        pipeline = self._execute(state, scan_id, user_id, repository, ScanMode(mode), ref)
        try:
            if not self._deadline:
                return await pipeline
            try:
                return await asyncio.wait_for(pipeline, timeout=self._deadline)
            except asyncio.TimeoutError:
                logger.warning("Scan %s hit its %.0fs deadline", scan_id, self._deadline)
                await self._fail(
                    state, scan_id, f"Scan exceeded its {self._deadline:.0f}s deadline",
                )
                return None
        except asyncio.CancelledError:
            logger.info("Scan %s cancelled", scan_id)
            await self._fail(state, scan_id, "Scan cancelled")
            raise
        except PersistenceError as exc:
            logger.error("Scan %s results could not be saved: %s", scan_id, exc)
            await self._fail(state, scan_id, f"Could not persist scan results: {exc}")
            raise
        except Exception as exc:
            logger.exception("Scan %s failed", scan_id)
            await self._fail(state, scan_id, str(exc) or type(exc).__name__)
            return None

    # ── pipeline ──────────────────────────────────────────────

    async def _execute(
        self,
        state: _ScanState,
        scan_id,
        user_id,
        repository: dict,
        mode: ScanMode,
        ref: str,
    ) -> dict:
        provider = repository["provider"]
        credential = await self._get_credential(user_id, provider)
        if not credential:
            raise ScanConfigurationError(f"No active {provider} credential found")
        adapter = self._adapter_factory(provider)

        await self._advance(
            state, scan_id, 0, "Initializing scan",
            status=ScanStatus.IN_PROGRESS.value,
        )

        files = await adapter.fetch_changed_files(repository["name"], ref, credential, mode)
        state.total_files = len(files)
        await self._advance(
            state, scan_id, settings.PROGRESS_FILES_DISCOVERED,
            f"Found {len(files)} changed file(s)",
            total_files=len(files),
        )

        batches = plan_batches(files, mode)
        logger.info(
            "Scan %s: %d file(s) in %d batch(es), window %d",
            scan_id, len(files), len(batches), self._window_size,
        )

        for start in range(0, len(batches), self._window_size):
            window = batches[start:start + self._window_size]
            outcomes = await asyncio.gather(*(self._analyze(b) for b in window))
            state.fold(list(outcomes))
            await self._advance(
                state, scan_id,
                analysis_progress(state.scanned_files, state.total_files),
                f"Analyzed {state.scanned_files} of {state.total_files} file(s)",
                scanned_files=state.scanned_files,
            )

        result = state.result()
        state.progress = 100
        # Not guarded: a lost final write must not look like a clean scan
        await self._update_scan(
            scan_id,
            status=ScanStatus.COMPLETED.value,
            progress=100,
            message="Scan completed",
            scanned_files=state.scanned_files,
            result=result,
            error=None,
            completed_at=_now(),
        )
        self._publish(state.scan_id, 100, "Scan completed")
        logger.info(
            "Scan %s completed: %d finding(s), %d failed batch(es)",
            scan_id, result["summary"]["total"], state.failed_batches,
        )
        return result

    async def _analyze(self, batch: Batch) -> BatchOutcome:
        try:
            found = await self._analyzer.analyze(batch)
        except AnalysisError as exc:
            logger.warning("Batch %s failed: %s", batch.paths, exc)
            return BatchOutcome(batch, error=str(exc))
        except Exception as exc:
            logger.exception("Unexpected error analysing batch %s", batch.paths)
            return BatchOutcome(batch, error=str(exc) or type(exc).__name__)
        return BatchOutcome(batch, vulnerabilities=found)

    # ── progress / persistence ────────────────────────────────

    async def _advance(self, state: _ScanState, scan_id, progress: int, message: str, **fields) -> None:
        """Publish and persist a progress step (never moving backwards)."""
        state.progress = max(state.progress, progress)
        self._publish(state.scan_id, state.progress, message)
        try:
            await self._update_scan(scan_id, progress=state.progress, message=message, **fields)
        except PersistenceError as exc:
            logger.warning("Scan %s: progress write failed: %s", scan_id, exc)

    async def _fail(self, state: _ScanState, scan_id, error: str) -> None:
        try:
            await self._update_scan(
                scan_id,
                status=ScanStatus.FAILED.value,
                message="Scan failed",
                error=error,
                completed_at=_now(),
            )
        except PersistenceError as exc:
            logger.error("Scan %s: could not record failure: %s", scan_id, exc)
        self._publish(state.scan_id, FAILED_PROGRESS, f"Scan failed: {error}")

    def _publish(self, scan_id: str, progress: int, message: str) -> None:
        self._bus.publish(ProgressEvent(scan_id=scan_id, progress=progress, message=message))
