"""Scan pipeline package — plan, analyse and schedule security review of changes.

Sub-modules
-----------
- models    : ChangedFile, Batch, Vulnerability and the scan enums
- planner   : size-aware batch packing
- analyzer  : one reviewer request per batch, response validation
- scheduler : windowed execution, progress, final summary
- registry  : supervised scan tasks (cancel / shutdown)

The scheduler is imported from its module directly; it depends on the
provider adapters, which themselves depend on ``models``.
"""

from .analyzer import BatchAnalyzer, parse_vulnerabilities
from .models import (
    Batch,
    BatchMode,
    ChangedFile,
    ScanMode,
    ScanStatus,
    Vulnerability,
    summarize,
)
from .planner import batch_caps, plan_batches
from .registry import ScanTaskRegistry

__all__ = [
    "Batch",
    "BatchAnalyzer",
    "BatchMode",
    "ChangedFile",
    "ScanMode",
    "ScanStatus",
    "ScanTaskRegistry",
    "Vulnerability",
    "batch_caps",
    "parse_vulnerabilities",
    "plan_batches",
    "summarize",
]
