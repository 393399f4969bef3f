"""GitHub adapter -- compare API for branches, PR files API for pull requests."""

import logging
from urllib.parse import quote

from diffguard.config import settings
from diffguard.services.scan.models import ScanMode

from .base import FileChange, ProviderAdapter, parse_pr_number, split_repo_name

logger = logging.getLogger(__name__)

GITHUB_API_BASE = "https://api.github.com"
PER_PAGE = 100
COMPARE_FILE_LIMIT = 300

# "renamed" and "changed" carry new content just like "modified"
_SCANNABLE_STATUSES = frozenset({"added", "modified", "renamed", "changed"})


def _auth_headers(access_token: str) -> dict:
    """Return standard GitHub API auth headers."""
    return {
        "Authorization": f"Bearer {access_token}",
        "Accept": "application/vnd.github+json",
        "X-GitHub-Api-Version": "2022-11-28",
    }


class GitHubAdapter(ProviderAdapter):
    name = "github"

    async def list_changes(self, repo, ref, credential, mode):
        owner, name = split_repo_name(repo, 2, "owner/repo")
        headers = _auth_headers(credential["access_token"])
        base_url = f"{GITHUB_API_BASE}/repos/{owner}/{name}"
        if mode is ScanMode.PULL_REQUEST:
            return await self._list_pull_request(base_url, repo, parse_pr_number(ref), headers)
        return await self._list_branch(base_url, repo, ref, headers)

    async def _list_branch(self, base_url: str, repo: str, branch: str, headers: dict) -> list[FileChange]:
        base = settings.SCAN_BASE_BRANCH
        url = f"{base_url}/compare/{quote(base)}...{quote(branch)}"
        # The compare API lists files on the first response only, at most 300
        files = (await self._get(url, headers=headers)).json().get("files") or []
        if len(files) >= COMPARE_FILE_LIMIT:
            logger.warning(
                "Compare %s...%s on %s lists %d files, GitHub's limit; later files are not scanned",
                base, branch, repo, len(files),
            )
        return [
            FileChange(path=f["filename"], ref=branch)
            for f in files
            if f.get("status") in _SCANNABLE_STATUSES
        ]

    async def _list_pull_request(
        self, base_url: str, repo: str, number: int, headers: dict,
    ) -> list[FileChange]:
        pull = (await self._get(f"{base_url}/pulls/{number}", headers=headers)).json()
        head_sha = (pull.get("head") or {}).get("sha") or ""

        changes: list[FileChange] = []
        for page in range(1, settings.PROVIDER_MAX_PAGES + 1):
            response = await self._get(
                f"{base_url}/pulls/{number}/files",
                headers=headers,
                params={"per_page": PER_PAGE, "page": page},
            )
            files = response.json() or []
            changes.extend(
                FileChange(path=f["filename"], ref=head_sha, patch=f.get("patch"))
                for f in files
                if f.get("status") in _SCANNABLE_STATUSES
            )
            if len(files) < PER_PAGE:
                break
        else:
            self._warn_page_cap(f"PR #{number} file listing", repo)
        return changes

    async def fetch_content(self, repo, path, ref, credential):
        owner, name = split_repo_name(repo, 2, "owner/repo")
        headers = _auth_headers(credential["access_token"])
        headers["Accept"] = "application/vnd.github.raw+json"
        params = {"ref": ref} if ref else None
        response = await self._get(
            f"{GITHUB_API_BASE}/repos/{owner}/{name}/contents/{quote(path)}",
            headers=headers,
            params=params,
        )
        return response.text
