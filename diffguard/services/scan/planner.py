"""Batch planner — packs changed files into analysis batches.

Pure and deterministic: the same files in the same order always produce
the same batches.  Two caps apply to every batch, a file count and a byte
budget.  A file that is heavier than the byte budget on its own is never
dropped; it is emitted as a batch of one.
"""

from diffguard.config import settings

from .models import Batch, BatchMode, ChangedFile, ScanMode


def batch_caps(mode: ScanMode) -> tuple[int, int]:
    """Return ``(max_files, max_bytes)`` for *mode* from settings.

    Diffs are small, so diff-only scans pack more files per batch; the byte
    budget is the same for both modes.
    """
    if mode.diff_only:
        max_files = settings.SCAN_MAX_FILES_PER_DIFF_BATCH
    else:
        max_files = settings.SCAN_MAX_FILES_PER_BATCH
    return max_files, settings.SCAN_MAX_BATCH_BYTES


def plan_batches(
    files: list[ChangedFile],
    mode: ScanMode,
    *,
    max_files: int | None = None,
    max_bytes: int | None = None,
) -> list[Batch]:
    """Partition *files* into batches, preserving input order.

    Policy, in priority order:

    1. a file heavier than *max_bytes* flushes the current batch and is
       emitted alone;
    2. a file that would push the current batch over either cap closes it
       and starts the next one;
    3. otherwise the file joins the current batch.
    """
    default_files, default_bytes = batch_caps(mode)
    max_files = max_files if max_files is not None else default_files
    max_bytes = max_bytes if max_bytes is not None else default_bytes
    if max_files < 1 or max_bytes < 1:
        raise ValueError("Batch caps must be positive")

    diff_only = mode.diff_only
    batch_mode = BatchMode.DIFF_ONLY if diff_only else BatchMode.FULL

    batches: list[Batch] = []
    current: list[ChangedFile] = []
    current_bytes = 0

    for changed in files:
        weight = changed.weight(diff_only)

        if weight > max_bytes:
            if current:
                batches.append(Batch(current, batch_mode))
                current, current_bytes = [], 0
            batches.append(Batch([changed], batch_mode))
            continue

        if current and (
            len(current) + 1 > max_files or current_bytes + weight > max_bytes
        ):
            batches.append(Batch(current, batch_mode))
            current, current_bytes = [], 0

        current.append(changed)
        current_bytes += weight

    if current:
        batches.append(Batch(current, batch_mode))
    return batches
