"""Azure DevOps adapter -- commit diffs for branches, PR iteration changes for pull requests.

Azure Repos exposes no per-file patch, so every file is fetched in full;
pull-request scans read content at the PR's last merge-source commit.
"""

import logging

import httpx

from diffguard.config import settings
from diffguard.errors import ScanConfigurationError
from diffguard.services.scan.models import ScanMode

from .base import FileChange, ProviderAdapter, parse_pr_number

logger = logging.getLogger(__name__)

AZURE_API_BASE = "https://dev.azure.com"
API_VERSION = "7.1"
PAGE_SIZE = 100


def _auth(credential: dict) -> httpx.BasicAuth:
    # PATs go in the password slot with an empty user name
    return httpx.BasicAuth("", credential["access_token"])


def _repo_parts(repo: str, credential: dict) -> tuple[str, str, str]:
    """``org/project/repo``, or ``project/repo`` with the org on the credential."""
    pieces = [p for p in (repo or "").strip("/").split("/") if p]
    if len(pieces) == 2 and credential.get("organization"):
        pieces.insert(0, credential["organization"])
    if len(pieces) != 3:
        raise ScanConfigurationError(
            f"Repository name {repo!r} is not in the form org/project/repo"
        )
    return pieces[0], pieces[1], pieces[2]


def _is_scannable_change(change: dict) -> bool:
    item = change.get("item") or {}
    if item.get("isFolder") or item.get("gitObjectType") == "tree":
        return False
    change_type = str(change.get("changeType", "")).lower()
    return "delete" not in change_type and bool(item.get("path"))


class AzureDevOpsAdapter(ProviderAdapter):
    name = "azure"

    def _repo_url(self, repo: str, credential: dict) -> str:
        org, project, name = _repo_parts(repo, credential)
        return f"{AZURE_API_BASE}/{org}/{project}/_apis/git/repositories/{name}"

    async def list_changes(self, repo, ref, credential, mode):
        repo_url = self._repo_url(repo, credential)
        auth = _auth(credential)
        if mode is ScanMode.PULL_REQUEST:
            return await self._list_pull_request(repo_url, repo, parse_pr_number(ref), auth)
        return await self._list_branch(repo_url, repo, ref, auth)

    async def _list_branch(self, repo_url: str, repo: str, branch: str, auth) -> list[FileChange]:
        changes: list[FileChange] = []
        skip = 0
        for _ in range(settings.PROVIDER_MAX_PAGES):
            data = (await self._get(
                f"{repo_url}/diffs/commits",
                auth=auth,
                params={
                    "baseVersion": settings.SCAN_BASE_BRANCH,
                    "baseVersionType": "branch",
                    "targetVersion": branch,
                    "targetVersionType": "branch",
                    "$top": PAGE_SIZE,
                    "$skip": skip,
                    "api-version": API_VERSION,
                },
            )).json()
            entries = data.get("changes") or []
            changes.extend(
                FileChange(path=c["item"]["path"].lstrip("/"), ref=branch)
                for c in entries
                if _is_scannable_change(c)
            )
            if data.get("allChangesIncluded", True) or not entries:
                break
            skip += len(entries)
        else:
            self._warn_page_cap("commit diff", repo)
        return changes

    async def _list_pull_request(self, repo_url: str, repo: str, pr_id: int, auth) -> list[FileChange]:
        params = {"api-version": API_VERSION}
        pull = (await self._get(
            f"{repo_url}/pullRequests/{pr_id}", auth=auth, params=params,
        )).json()
        source_commit = (pull.get("lastMergeSourceCommit") or {}).get("commitId") or ""

        iterations = (await self._get(
            f"{repo_url}/pullRequests/{pr_id}/iterations", auth=auth, params=params,
        )).json().get("value") or []
        if not iterations:
            return []
        iteration_id = iterations[-1]["id"]

        changes: list[FileChange] = []
        skip = 0
        for _ in range(settings.PROVIDER_MAX_PAGES):
            data = (await self._get(
                f"{repo_url}/pullRequests/{pr_id}/iterations/{iteration_id}/changes",
                auth=auth,
                params={"$top": PAGE_SIZE, "$skip": skip, "api-version": API_VERSION},
            )).json()
            entries = data.get("changeEntries") or []
            changes.extend(
                FileChange(path=c["item"]["path"].lstrip("/"), ref=source_commit)
                for c in entries
                if _is_scannable_change(c)
            )
            next_skip = data.get("nextSkip") or 0
            if not next_skip or not entries:
                break
            skip = next_skip
        else:
            self._warn_page_cap(f"PR #{pr_id} change listing", repo)
        return changes

    async def fetch_content(self, repo, path, ref, credential):
        # 40-hex refs come from PR listings; anything else is a branch name
        is_commit = len(ref) == 40 and all(c in "0123456789abcdef" for c in ref.lower())
        data = (await self._get(
            f"{self._repo_url(repo, credential)}/items",
            auth=_auth(credential),
            params={
                "path": f"/{path}",
                "versionDescriptor.version": ref,
                "versionDescriptor.versionType": "commit" if is_commit else "branch",
                "includeContent": "true",
                "$format": "json",
                "api-version": API_VERSION,
            },
        )).json()
        return data["content"]
