"""Shared machinery for VCS provider adapters.

An adapter answers one question: which files changed on this branch or
pull request, and what is their content (or patch)?  Subclasses only
implement the provider-specific listing and content calls; the base class
owns binary filtering, bounded-concurrency fetching and the failure policy
(listing errors are fatal, per-file errors drop the file).
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import PurePosixPath

import httpx

from diffguard.config import settings
from diffguard.errors import ProviderFetchError, ProviderListError, ScanConfigurationError
from diffguard.services.scan.models import ChangedFile, ScanMode

logger = logging.getLogger(__name__)

# Binary and media extensions are never fetched
BINARY_EXTENSIONS: frozenset[str] = frozenset({
    ".jpg", ".jpeg", ".png", ".gif", ".bmp", ".ico", ".svg", ".webp", ".tif", ".tiff",
    ".mp3", ".mp4", ".mov", ".avi", ".wav", ".ogg", ".webm",
    ".pdf", ".doc", ".docx", ".ppt", ".pptx", ".xls", ".xlsx",
    ".zip", ".tar", ".gz", ".tgz", ".bz2", ".xz", ".rar", ".7z",
    ".exe", ".dll", ".so", ".dylib", ".bin", ".o", ".a", ".lib",
    ".class", ".jar", ".war", ".ear", ".pyc", ".pyo", ".whl",
    ".woff", ".woff2", ".ttf", ".otf", ".eot",
})


def is_scannable_path(path: str) -> bool:
    """Return False for binary/media files that should not be fetched."""
    return PurePosixPath(path).suffix.lower() not in BINARY_EXTENSIONS


# ── Shared HTTP client (connection pooling) ─────────────────────────────────

_client: httpx.AsyncClient | None = None


def _get_client() -> httpx.AsyncClient:
    """Return (or create) the shared httpx client for provider API calls."""
    global _client
    if _client is None:
        _client = httpx.AsyncClient(
            timeout=settings.PROVIDER_TIMEOUT_SECONDS,
            follow_redirects=True,
        )
    return _client


async def close_client() -> None:
    """Close the shared provider HTTP client.  Called during app shutdown."""
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None


@dataclass
class FileChange:
    """One entry from a provider's change listing, before content is fetched.

    ``patch`` is set when the listing (or a diff fetched alongside it)
    already carries the file's unified diff; ``ref`` is the branch or
    commit to read full content at when it does not.
    """

    path: str
    ref: str
    patch: str | None = None


def require_token(credential: dict | None, provider: str) -> str:
    if not credential or not credential.get("access_token"):
        raise ScanConfigurationError(f"No active {provider} credential found")
    return credential["access_token"]


def parse_pr_number(ref: str) -> int:
    """PR refs are positive integers (``"42"`` or ``"#42"``)."""
    text = str(ref).strip().lstrip("#")
    if not text.isdigit() or int(text) < 1:
        raise ScanConfigurationError(f"Invalid pull request reference: {ref!r}")
    return int(text)


def split_repo_name(name: str, parts: int, example: str) -> list[str]:
    pieces = [p for p in (name or "").strip("/").split("/") if p]
    if len(pieces) != parts:
        raise ScanConfigurationError(
            f"Repository name {name!r} is not in the form {example}"
        )
    return pieces


class ProviderAdapter(ABC):
    """Translate a (repo, ref, credential) request into changed files."""

    name: str = ""

    def _client(self) -> httpx.AsyncClient:
        return _get_client()

    async def _get(self, url: str, **kwargs) -> httpx.Response:
        response = await self._client().get(url, **kwargs)
        response.raise_for_status()
        return response

    # ── provider-specific hooks ────────────────────────────────

    @abstractmethod
    async def list_changes(
        self, repo: str, ref: str, credential: dict, mode: ScanMode,
    ) -> list[FileChange]:
        """List added/modified files (removed files and folders excluded)."""

    @abstractmethod
    async def fetch_content(
        self, repo: str, path: str, ref: str, credential: dict,
    ) -> str:
        """Return the full text of *path* at *ref*."""

    # ── public entry point ─────────────────────────────────────

    async def fetch_changed_files(
        self,
        repo: str,
        ref: str,
        credential: dict,
        mode: ScanMode | str,
    ) -> list[ChangedFile]:
        """Return the scannable changed files for *ref*.

        Raises ``ProviderListError`` when the change listing itself fails and
        ``ScanConfigurationError`` for a missing token or malformed input.
        Files whose content cannot be fetched are logged and left out.
        """
        mode = ScanMode(mode)
        require_token(credential, self.name)

        try:
            changes = await self.list_changes(repo, ref, credential, mode)
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            raise ProviderListError(
                f"{self.name} rejected the change listing for {repo} ({status})",
                status=status,
            ) from exc
        except httpx.HTTPError as exc:
            raise ProviderListError(
                f"{self.name} change listing for {repo} failed: {type(exc).__name__}"
            ) from exc

        scannable = [c for c in changes if is_scannable_path(c.path)]
        if len(scannable) < len(changes):
            logger.info(
                "%s: skipped %d binary file(s) in %s",
                self.name, len(changes) - len(scannable), repo,
            )

        semaphore = asyncio.Semaphore(settings.PROVIDER_FETCH_CONCURRENCY)

        async def _bounded(change: FileChange) -> ChangedFile | None:
            async with semaphore:
                try:
                    return await self._materialize(repo, change, credential, mode)
                except ProviderFetchError as exc:
                    logger.warning("%s: dropping %s", self.name, exc)
                    return None

        results = await asyncio.gather(*(_bounded(c) for c in scannable))
        files = [f for f in results if f is not None]
        logger.info(
            "%s: %d changed file(s) ready for %s@%s (%s)",
            self.name, len(files), repo, ref, mode.value,
        )
        return files

    async def _materialize(
        self, repo: str, change: FileChange, credential: dict, mode: ScanMode,
    ) -> ChangedFile:
        if mode.diff_only and change.patch:
            return ChangedFile(path=change.path, patch=change.patch, is_diff_only=True)
        try:
            content = await self.fetch_content(repo, change.path, change.ref, credential)
        except httpx.HTTPStatusError as exc:
            raise ProviderFetchError(change.path, f"HTTP {exc.response.status_code}") from exc
        except (httpx.HTTPError, ValueError, KeyError) as exc:
            raise ProviderFetchError(change.path, str(exc) or type(exc).__name__) from exc
        return ChangedFile(path=change.path, content=content)

    def _warn_page_cap(self, what: str, repo: str) -> None:
        logger.warning(
            "%s: %s for %s exceeded %d pages; remaining entries ignored",
            self.name, what, repo, settings.PROVIDER_MAX_PAGES,
        )
