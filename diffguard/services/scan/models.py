"""Scan pipeline data types — changed files, batches, vulnerabilities."""

import math
from dataclasses import dataclass, field
from enum import Enum
from pathlib import PurePosixPath
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class ScanMode(str, Enum):
    """What a scan's ``ref`` points at."""

    BRANCH = "branch"
    PULL_REQUEST = "pull-request"

    @property
    def diff_only(self) -> bool:
        return self is ScanMode.PULL_REQUEST


class ScanStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    FAILED = "failed"


class BatchMode(str, Enum):
    FULL = "full"
    DIFF_ONLY = "diff-only"


SEVERITIES: tuple[str, ...] = ("low", "medium", "high", "critical")

Severity = Literal["low", "medium", "high", "critical"]


# Language detection by file extension (used to tag files in prompts)
_EXT_TO_LANG: dict[str, str] = {
    ".js": "javascript", ".jsx": "javascript", ".mjs": "javascript", ".cjs": "javascript",
    ".ts": "typescript", ".tsx": "typescript",
    ".py": "python", ".java": "java", ".kt": "kotlin", ".scala": "scala",
    ".c": "c", ".h": "c", ".cpp": "cpp", ".cc": "cpp", ".hpp": "cpp",
    ".cs": "csharp", ".go": "go", ".rb": "ruby", ".php": "php",
    ".swift": "swift", ".rs": "rust",
    ".html": "html", ".css": "css", ".scss": "scss",
    ".json": "json", ".yaml": "yaml", ".yml": "yaml", ".xml": "xml",
    ".md": "markdown", ".sql": "sql", ".sh": "bash", ".bat": "batch",
    ".ps1": "powershell", ".tf": "terraform",
}

_NAME_TO_LANG: dict[str, str] = {
    "dockerfile": "dockerfile",
    "makefile": "makefile",
}


def detect_language(path: str) -> str:
    """Detect language from file extension (``plaintext`` when unknown)."""
    p = PurePosixPath(path)
    name = p.name.lower()
    if name in _NAME_TO_LANG:
        return _NAME_TO_LANG[name]
    return _EXT_TO_LANG.get(p.suffix.lower(), "plaintext")


def _text_size(text: str | None) -> int:
    return len(text.encode("utf-8")) if text else 0


@dataclass
class ChangedFile:
    """One changed file as returned by a provider adapter.

    At least one of ``content`` / ``patch`` is set; adapters drop files
    whose fetch failed instead of returning them empty.
    """

    path: str
    content: str | None = None
    patch: str | None = None
    is_diff_only: bool = False

    @property
    def language(self) -> str:
        return detect_language(self.path)

    def weight(self, diff_only: bool) -> int:
        """Bytes this file contributes to a batch's budget."""
        if diff_only and self.patch is not None:
            return _text_size(self.patch)
        return _text_size(self.content)


@dataclass
class Batch:
    """Files submitted together in one analysis request (never empty)."""

    files: list[ChangedFile] = field(default_factory=list)
    mode: BatchMode = BatchMode.FULL

    @property
    def diff_only(self) -> bool:
        return self.mode is BatchMode.DIFF_ONLY

    @property
    def total_bytes(self) -> int:
        return sum(f.weight(self.diff_only) for f in self.files)

    @property
    def paths(self) -> list[str]:
        return [f.path for f in self.files]

    def __len__(self) -> int:
        return len(self.files)


class Vulnerability(BaseModel):
    """One finding reported by the security reviewer.

    Field names are snake_case in Python and camelCase on the wire and in
    the persisted result (``filePath``, ``lineNumber`` ...).
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        str_strip_whitespace=True,
    )

    type: str = Field(min_length=1)
    severity: Severity
    description: str = Field(min_length=1)
    file_path: str | None = None
    line_number: int | None = None
    original_code: str | None = None
    suggested_code: str | None = None
    potential_impact: str | None = None
    potential_solution: str | None = None
    potential_risk: str | None = None
    potential_mitigation: str | None = None
    potential_prevention: str | None = None
    potential_detection: str | None = None

    @field_validator("severity", mode="before")
    @classmethod
    def _normalise_severity(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("line_number", mode="before")
    @classmethod
    def _coerce_line_number(cls, value: object) -> int | None:
        # Reviewers answer "42", 42, "42-45" or "n/a"; keep the first line or nothing.
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, int):
            return value
        if isinstance(value, float):
            return int(value) if math.isfinite(value) else None
        if isinstance(value, str):
            head = value.strip().split("-", 1)[0].strip()
            return int(head) if head.isdigit() else None
        return None

    def to_record(self) -> dict:
        """Serialise for the persisted scan result."""
        return self.model_dump(by_alias=True)


def summarize(vulnerabilities: list[Vulnerability]) -> dict:
    """Severity counts derived from the accumulated findings."""
    counts = {sev: 0 for sev in SEVERITIES}
    for vuln in vulnerabilities:
        counts[vuln.severity] += 1
    return {
        "total": len(vulnerabilities),
        "lowCount": counts["low"],
        "mediumCount": counts["medium"],
        "highCount": counts["high"],
        "criticalCount": counts["critical"],
    }
