"""Tests for the GitHub adapter -- compare API, PR files API, failure policy."""

import httpx
import pytest

from diffguard.errors import ProviderListError, ScanConfigurationError
from diffguard.providers import get_adapter
from diffguard.providers.github import GitHubAdapter
from diffguard.services.scan.models import ScanMode

REPO = "octocat/hello-world"
CRED = {"access_token": "gho_test"}
API = "/repos/octocat/hello-world"


def _contents(request: httpx.Request, files: dict[str, str]) -> httpx.Response:
    path = request.url.path[len(f"{API}/contents/"):]
    if path not in files:
        return httpx.Response(404, json={"message": "Not Found"})
    return httpx.Response(200, text=files[path])


@pytest.mark.asyncio
async def test_branch_scan_skips_removed_and_binary(provider_http):
    seen_refs = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == "Bearer gho_test"
        if request.url.path == f"{API}/compare/main...feature/login":
            return httpx.Response(200, json={"files": [
                {"filename": "src/a.py", "status": "modified"},
                {"filename": "src/b.py", "status": "added"},
                {"filename": "src/c.js", "status": "modified"},
                {"filename": "src/old.py", "status": "removed"},
                {"filename": "img/logo.png", "status": "added"},
            ]})
        if request.url.path.startswith(f"{API}/contents/"):
            seen_refs.append(request.url.params["ref"])
            return _contents(request, {"src/a.py": "a", "src/b.py": "b", "src/c.js": "c"})
        return httpx.Response(500)

    provider_http(handler)
    files = await GitHubAdapter().fetch_changed_files(REPO, "feature/login", CRED, ScanMode.BRANCH)

    assert sorted(f.path for f in files) == ["src/a.py", "src/b.py", "src/c.js"]
    assert all(f.content and f.patch is None and not f.is_diff_only for f in files)
    assert set(seen_refs) == {"feature/login"}


@pytest.mark.asyncio
async def test_compare_is_one_request_and_warns_at_file_limit(provider_http, caplog):
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        if "/compare/" in request.url.path:
            requests.append(request.url)
            listed = [{"filename": "src/keep.py", "status": "modified"}]
            listed += [{"filename": f"old/{i}.py", "status": "removed"} for i in range(299)]
            return httpx.Response(200, json={"files": listed})
        return httpx.Response(200, text="kept")

    provider_http(handler)
    with caplog.at_level("WARNING", logger="diffguard.providers.github"):
        files = await GitHubAdapter().fetch_changed_files(REPO, "big", CRED, ScanMode.BRANCH)

    assert len(requests) == 1
    assert "page" not in requests[0].params
    assert [f.path for f in files] == ["src/keep.py"]
    assert "300 files" in caplog.text


@pytest.mark.asyncio
async def test_pull_request_uses_patches_and_falls_back(provider_http):
    fetched = []

    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == f"{API}/pulls/7":
            return httpx.Response(200, json={"head": {"sha": "abc123"}})
        if path == f"{API}/pulls/7/files":
            return httpx.Response(200, json=[
                {"filename": "a.py", "status": "modified", "patch": "@@ -1 +1 @@\n-a\n+b"},
                {"filename": "big.py", "status": "added"},
                {"filename": "gone.py", "status": "removed", "patch": "@@ -1 +0,0 @@\n-x"},
            ])
        if path.startswith(f"{API}/contents/"):
            fetched.append((path, request.url.params["ref"]))
            return _contents(request, {"big.py": "full text"})
        return httpx.Response(500)

    provider_http(handler)
    files = await GitHubAdapter().fetch_changed_files(REPO, "7", CRED, "pull-request")
    by_path = {f.path: f for f in files}

    assert set(by_path) == {"a.py", "big.py"}
    assert by_path["a.py"].is_diff_only
    assert by_path["a.py"].patch.endswith("+b")
    assert by_path["big.py"].content == "full text"
    assert fetched == [(f"{API}/contents/big.py", "abc123")]


@pytest.mark.asyncio
async def test_pull_request_files_are_paginated(provider_http):
    pages = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == f"{API}/pulls/3":
            return httpx.Response(200, json={"head": {"sha": "s"}})
        if request.url.path == f"{API}/pulls/3/files":
            page = int(request.url.params["page"])
            pages.append(page)
            count = 100 if page == 1 else 1
            return httpx.Response(200, json=[
                {"filename": f"p{page}_{i}.py", "status": "modified", "patch": "+x"}
                for i in range(count)
            ])
        return httpx.Response(500)

    provider_http(handler)
    files = await GitHubAdapter().fetch_changed_files(REPO, "#3", CRED, ScanMode.PULL_REQUEST)

    assert pages == [1, 2]
    assert len(files) == 101


@pytest.mark.asyncio
async def test_pagination_stops_at_safety_cap(provider_http, monkeypatch):
    monkeypatch.setattr("diffguard.config.settings.PROVIDER_MAX_PAGES", 2)
    pages = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == f"{API}/pulls/3":
            return httpx.Response(200, json={"head": {"sha": "s"}})
        page = int(request.url.params["page"])
        pages.append(page)
        return httpx.Response(200, json=[
            {"filename": f"p{page}_{i}.py", "status": "added", "patch": "+x"} for i in range(100)
        ])

    provider_http(handler)
    files = await GitHubAdapter().fetch_changed_files(REPO, "3", CRED, ScanMode.PULL_REQUEST)

    assert pages == [1, 2]
    assert len(files) == 200


@pytest.mark.asyncio
async def test_listing_failure_is_fatal(provider_http):
    provider_http(lambda request: httpx.Response(404, json={"message": "Not Found"}))

    with pytest.raises(ProviderListError) as exc_info:
        await GitHubAdapter().fetch_changed_files(REPO, "nope", CRED, ScanMode.BRANCH)
    assert exc_info.value.status == 404


@pytest.mark.asyncio
async def test_transport_failure_on_listing_is_fatal(provider_http):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    provider_http(handler)
    with pytest.raises(ProviderListError):
        await GitHubAdapter().fetch_changed_files(REPO, "x", CRED, ScanMode.BRANCH)


@pytest.mark.asyncio
async def test_single_file_failure_drops_only_that_file(provider_http):
    def handler(request: httpx.Request) -> httpx.Response:
        if "/compare/" in request.url.path:
            return httpx.Response(200, json={"files": [
                {"filename": "ok.py", "status": "modified"},
                {"filename": "broken.py", "status": "modified"},
            ]})
        if request.url.path.endswith("broken.py"):
            return httpx.Response(500)
        return httpx.Response(200, text="fine")

    provider_http(handler)
    files = await GitHubAdapter().fetch_changed_files(REPO, "dev", CRED, ScanMode.BRANCH)
    assert [f.path for f in files] == ["ok.py"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "repo,ref,cred,mode",
    [
        (REPO, "main", {}, ScanMode.BRANCH),
        (REPO, "main", None, ScanMode.BRANCH),
        ("not-a-full-name", "main", CRED, ScanMode.BRANCH),
        (REPO, "abc", CRED, ScanMode.PULL_REQUEST),
        (REPO, "0", CRED, ScanMode.PULL_REQUEST),
    ],
)
async def test_configuration_errors(provider_http, repo, ref, cred, mode):
    provider_http(lambda request: httpx.Response(500))
    with pytest.raises(ScanConfigurationError):
        await GitHubAdapter().fetch_changed_files(repo, ref, cred, mode)


def test_registry_lookup():
    assert get_adapter("github").name == "github"
    assert get_adapter("GitHub").name == "github"
    assert get_adapter("azure").name == "azure"
    with pytest.raises(ScanConfigurationError):
        get_adapter("gitlab")
