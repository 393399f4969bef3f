"""Bitbucket Cloud adapter -- diffstat listings, raw src content, PR diff split per file."""

import logging
from urllib.parse import quote

import httpx

from diffguard.config import settings
from diffguard.services.scan.models import ScanMode

from .base import FileChange, ProviderAdapter, parse_pr_number, split_repo_name

logger = logging.getLogger(__name__)

BITBUCKET_API_BASE = "https://api.bitbucket.org/2.0"
PAGE_LEN = 100

_SKIPPED_STATUSES = frozenset({"removed"})


def _auth(credential: dict) -> tuple[dict, httpx.Auth | None]:
    """App passwords need Basic auth with the username; OAuth tokens use Bearer."""
    token = credential["access_token"]
    username = credential.get("username")
    if username:
        return {"Accept": "application/json"}, httpx.BasicAuth(username, token)
    return {"Accept": "application/json", "Authorization": f"Bearer {token}"}, None


def split_unified_diff(diff_text: str) -> dict[str, str]:
    """Split a multi-file ``git diff`` into ``{new_path: section}``.

    Sections start at ``diff --git a/<old> b/<new>``; deleted files
    (``+++ /dev/null``) are left out.
    """
    patches: dict[str, str] = {}
    path: str | None = None
    lines: list[str] = []
    deleted = False

    def _flush() -> None:
        if path and not deleted and lines:
            patches[path] = "\n".join(lines)

    for line in diff_text.splitlines():
        if line.startswith("diff --git "):
            _flush()
            header = line[len("diff --git "):]
            path = header.rsplit(" b/", 1)[1] if " b/" in header else None
            lines = [line]
            deleted = False
            continue
        if path is None:
            continue
        if line.startswith("+++ "):
            target = line[4:].strip()
            if target == "/dev/null":
                deleted = True
            elif target.startswith("b/"):
                path = target[2:]
        lines.append(line)
    _flush()
    return patches


class BitbucketAdapter(ProviderAdapter):
    name = "bitbucket"

    async def _paged_values(self, url: str, repo: str, what: str, **kwargs) -> list[dict]:
        """Follow ``next`` links until exhausted or the page cap is hit."""
        values: list[dict] = []
        params = {"pagelen": PAGE_LEN}
        next_url: str | None = url
        for _ in range(settings.PROVIDER_MAX_PAGES):
            if not next_url:
                break
            response = await self._get(next_url, params=params, **kwargs)
            data = response.json()
            values.extend(data.get("values") or [])
            next_url = data.get("next")
            # ``next`` already carries the query string
            params = None
        else:
            if next_url:
                self._warn_page_cap(what, repo)
        return values

    async def list_changes(self, repo, ref, credential, mode):
        workspace, slug = split_repo_name(repo, 2, "workspace/repo")
        headers, auth = _auth(credential)
        base_url = f"{BITBUCKET_API_BASE}/repositories/{workspace}/{slug}"

        if mode is ScanMode.PULL_REQUEST:
            return await self._list_pull_request(
                base_url, repo, parse_pr_number(ref), headers, auth,
            )

        revspec = f"{quote(ref, safe='')}..{quote(settings.SCAN_BASE_BRANCH, safe='')}"
        entries = await self._paged_values(
            f"{base_url}/diffstat/{revspec}", repo, "diffstat", headers=headers, auth=auth,
        )
        return [
            FileChange(path=entry["new"]["path"], ref=ref)
            for entry in entries
            if entry.get("status") not in _SKIPPED_STATUSES and entry.get("new")
        ]

    async def _list_pull_request(
        self, base_url: str, repo: str, pr_id: int, headers: dict, auth,
    ) -> list[FileChange]:
        pull = (await self._get(
            f"{base_url}/pullrequests/{pr_id}", headers=headers, auth=auth,
        )).json()
        source_commit = ((pull.get("source") or {}).get("commit") or {}).get("hash") or ""

        entries = await self._paged_values(
            f"{base_url}/pullrequests/{pr_id}/diffstat",
            repo, f"PR #{pr_id} diffstat", headers=headers, auth=auth,
        )

        # The per-file patches come from one diff download; without it
        # every file falls back to full content.
        patches: dict[str, str] = {}
        try:
            diff = await self._get(
                f"{base_url}/pullrequests/{pr_id}/diff",
                headers={**headers, "Accept": "text/plain"},
                auth=auth,
            )
            patches = split_unified_diff(diff.text)
        except httpx.HTTPError as exc:
            logger.warning(
                "bitbucket: PR #%d diff for %s unavailable (%s); using full content",
                pr_id, repo, type(exc).__name__,
            )

        changes: list[FileChange] = []
        for entry in entries:
            if entry.get("status") in _SKIPPED_STATUSES or not entry.get("new"):
                continue
            path = entry["new"]["path"]
            changes.append(FileChange(path=path, ref=source_commit, patch=patches.get(path)))
        return changes

    async def fetch_content(self, repo, path, ref, credential):
        workspace, slug = split_repo_name(repo, 2, "workspace/repo")
        headers, auth = _auth(credential)
        headers["Accept"] = "text/plain"
        response = await self._get(
            f"{BITBUCKET_API_BASE}/repositories/{workspace}/{slug}/src/"
            f"{quote(ref, safe='')}/{quote(path)}",
            headers=headers,
            auth=auth,
        )
        return response.text
