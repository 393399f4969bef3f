"""Tests for the Azure DevOps adapter -- commit diffs, PR iterations, items API."""

import base64

import httpx
import pytest

from diffguard.errors import ProviderListError, ScanConfigurationError
from diffguard.providers.azure import AzureDevOpsAdapter
from diffguard.services.scan.models import ScanMode

REPO = "contoso/web/portal"
API = "/contoso/web/_apis/git/repositories/portal"
CRED = {"access_token": "pat123"}
SHA = "a" * 40


def _item(request: httpx.Request, files: dict[str, str]) -> httpx.Response:
    path = request.url.params["path"].lstrip("/")
    if path not in files:
        return httpx.Response(404, json={"message": "not found"})
    return httpx.Response(200, json={"path": f"/{path}", "content": files[path]})


@pytest.mark.asyncio
async def test_branch_scan_pages_until_all_changes_included(provider_http):
    skips = []
    versions = []

    def handler(request: httpx.Request) -> httpx.Response:
        expected = "Basic " + base64.b64encode(b":pat123").decode()
        assert request.headers["Authorization"] == expected
        if request.url.path == f"{API}/diffs/commits":
            skip = int(request.url.params["$skip"])
            skips.append(skip)
            assert request.url.params["baseVersion"] == "main"
            assert request.url.params["targetVersion"] == "feature/x"
            if skip == 0:
                return httpx.Response(200, json={
                    "allChangesIncluded": False,
                    "changes": [
                        {"item": {"path": "/src/app.cs", "gitObjectType": "blob"}, "changeType": "edit"},
                        {"item": {"path": "/src", "isFolder": True}, "changeType": "edit"},
                        {"item": {"path": "/old.cs"}, "changeType": "delete"},
                    ],
                })
            return httpx.Response(200, json={
                "allChangesIncluded": True,
                "changes": [{"item": {"path": "/src/new.cs"}, "changeType": "add"}],
            })
        if request.url.path == f"{API}/items":
            versions.append(request.url.params["versionDescriptor.versionType"])
            return _item(request, {"src/app.cs": "class App {}", "src/new.cs": "class New {}"})
        return httpx.Response(500)

    provider_http(handler)
    files = await AzureDevOpsAdapter().fetch_changed_files(REPO, "feature/x", CRED, ScanMode.BRANCH)

    assert skips == [0, 3]
    assert sorted(f.path for f in files) == ["src/app.cs", "src/new.cs"]
    assert set(versions) == {"branch"}


@pytest.mark.asyncio
async def test_pull_request_reads_last_iteration(provider_http):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == f"{API}/pullRequests/9":
            return httpx.Response(200, json={"lastMergeSourceCommit": {"commitId": SHA}})
        if path == f"{API}/pullRequests/9/iterations":
            return httpx.Response(200, json={"value": [{"id": 1}, {"id": 2}]})
        if path == f"{API}/pullRequests/9/iterations/2/changes":
            return httpx.Response(200, json={
                "changeEntries": [
                    {"item": {"path": "/api/handler.ts"}, "changeType": "edit"},
                    {"item": {"path": "/api/legacy.ts"}, "changeType": "delete, sourceRename"},
                ],
                "nextSkip": 0,
            })
        if path == f"{API}/items":
            seen["version"] = request.url.params["versionDescriptor.version"]
            seen["type"] = request.url.params["versionDescriptor.versionType"]
            return _item(request, {"api/handler.ts": "export {}"})
        return httpx.Response(500)

    provider_http(handler)
    files = await AzureDevOpsAdapter().fetch_changed_files(REPO, "9", CRED, ScanMode.PULL_REQUEST)

    assert [(f.path, f.content, f.is_diff_only) for f in files] == [
        ("api/handler.ts", "export {}", False),
    ]
    assert seen == {"version": SHA, "type": "commit"}


@pytest.mark.asyncio
async def test_pull_request_without_iterations_has_no_files(provider_http):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/iterations"):
            return httpx.Response(200, json={"value": []})
        return httpx.Response(200, json={"lastMergeSourceCommit": {"commitId": SHA}})

    provider_http(handler)
    files = await AzureDevOpsAdapter().fetch_changed_files(REPO, "9", CRED, ScanMode.PULL_REQUEST)
    assert files == []


@pytest.mark.asyncio
async def test_organization_can_come_from_credential(provider_http):
    paths = []

    def handler(request: httpx.Request) -> httpx.Response:
        paths.append(request.url.path)
        return httpx.Response(200, json={"allChangesIncluded": True, "changes": []})

    provider_http(handler)
    cred = {"access_token": "pat123", "organization": "contoso"}
    await AzureDevOpsAdapter().fetch_changed_files("web/portal", "dev", cred, ScanMode.BRANCH)
    assert paths == [f"{API}/diffs/commits"]


@pytest.mark.asyncio
async def test_malformed_repo_name_is_configuration_error(provider_http):
    provider_http(lambda request: httpx.Response(500))
    with pytest.raises(ScanConfigurationError):
        await AzureDevOpsAdapter().fetch_changed_files("portal", "dev", CRED, ScanMode.BRANCH)


@pytest.mark.asyncio
async def test_listing_error_is_fatal(provider_http):
    provider_http(lambda request: httpx.Response(401))
    with pytest.raises(ProviderListError) as exc_info:
        await AzureDevOpsAdapter().fetch_changed_files(REPO, "dev", CRED, ScanMode.BRANCH)
    assert exc_info.value.status == 401
