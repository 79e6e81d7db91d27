"""
Tests for model version resolution and reload requests.
"""

import json

import httpx
import pytest

from conftest import BACKEND_URL, RELEASE_API_URL
from fraud_ensemble.schemas import VersionSource
from fraud_ensemble.versions import VersionResolver

REPO = "acme/models"

RELEASES = [
    {"tag_name": "v1.3.0-rc1", "draft": False, "prerelease": True},
    {"tag_name": "v1.2.0", "draft": False, "prerelease": False},
    {"tag_name": "v1.2.1-wip", "draft": True, "prerelease": False},
    {"tag_name": "v1.1.0", "draft": False, "prerelease": False},
]


def release_assets(*names):
    return {
        "tag_name": "v1.2.0",
        "assets": [
            {"name": name, "browser_download_url": f"https://downloads.test/v1.2.0/{name}"}
            for name in names
        ],
    }


COMPLETE_RELEASE = release_assets(
    "lgbm.pkl", "xgboost.pkl", "catboost.pkl", "preprocessor.pkl", "metadata.json", "README.md"
)


class FakeServices:
    """Routes requests for the backend, the release index and asset downloads."""

    def __init__(self, backend_version=None, releases=RELEASES, release=COMPLETE_RELEASE,
                 metadata=None, reload_status=200):
        self.backend_version = backend_version
        self.releases = releases
        self.release = release
        self.metadata = metadata if metadata is not None else {"auc": 0.93, "trained_on": "ieee-cis"}
        self.reload_status = reload_status
        self.reload_requests = []

    def handle(self, request: httpx.Request) -> httpx.Response:
        host, path = request.url.host, request.url.path

        if host == "model.test":
            if path == "/model/version":
                if self.backend_version is None:
                    return httpx.Response(503)
                return httpx.Response(200, json=self.backend_version)
            if path == "/model/reload":
                self.reload_requests.append(json.loads(request.content))
                return httpx.Response(self.reload_status)

        if host == "api.github.test":
            if path == f"/repos/{REPO}/releases":
                if self.releases is None:
                    return httpx.Response(500)
                return httpx.Response(200, json=self.releases)
            if path.startswith(f"/repos/{REPO}/releases/tags/"):
                if self.release is None:
                    return httpx.Response(404)
                return httpx.Response(200, json=self.release)

        if host == "downloads.test" and path.endswith("metadata.json"):
            return httpx.Response(200, json=self.metadata)

        return httpx.Response(404)


def make_resolver(services: FakeServices):
    transport = httpx.MockTransport(services.handle)
    backend = httpx.AsyncClient(base_url=BACKEND_URL, transport=transport)
    releases = httpx.AsyncClient(base_url=RELEASE_API_URL, transport=transport)
    resolver = VersionResolver(backend, releases, repo=REPO, default_version="v1.0.0", timeout=1.0)
    return resolver, backend, releases


async def close(*clients):
    for client in clients:
        await client.aclose()


# ============================================================================
# CURRENT VERSION
# ============================================================================


class TestCurrentVersion:
    @pytest.mark.asyncio
    async def test_backend_version(self):
        services = FakeServices(backend_version={
            "version": "v1.2.0",
            "loaded_at": "2025-06-01T10:00:00",
            "models_loaded": 3,
            "model_details": {"lgbm": True, "xgboost": True, "catboost": True},
        })
        resolver, *clients = make_resolver(services)

        info = await resolver.current_version()
        await close(*clients)

        assert info.version == "v1.2.0"
        assert info.source == VersionSource.BACKEND
        assert info.known
        assert info.loaded_at == "2025-06-01T10:00:00"
        assert info.models_loaded == 3
        assert info.metadata["model_details"]["catboost"] is True

    @pytest.mark.asyncio
    async def test_falls_back_to_newest_release(self):
        resolver, *clients = make_resolver(FakeServices(backend_version=None))
        info = await resolver.current_version()
        await close(*clients)

        assert info.version == "v1.2.0"
        assert info.source == VersionSource.RELEASE_INDEX

    @pytest.mark.asyncio
    async def test_unknown_backend_version_falls_through(self):
        resolver, *clients = make_resolver(FakeServices(backend_version={"version": "unknown"}))
        info = await resolver.current_version()
        await close(*clients)

        assert info.source == VersionSource.RELEASE_INDEX

    @pytest.mark.asyncio
    async def test_falls_back_to_default(self):
        resolver, *clients = make_resolver(FakeServices(backend_version=None, releases=None))
        info = await resolver.current_version()
        await close(*clients)

        assert info.version == "v1.0.0"
        assert info.source == VersionSource.DEFAULT
        assert info.known is False

    @pytest.mark.asyncio
    async def test_empty_release_index_falls_back_to_default(self):
        resolver, *clients = make_resolver(FakeServices(backend_version=None, releases=[]))
        info = await resolver.current_version()
        await close(*clients)

        assert info.source == VersionSource.DEFAULT


# ============================================================================
# RELEASE INDEX
# ============================================================================


class TestReleaseIndex:
    @pytest.mark.asyncio
    async def test_available_versions_skip_drafts_and_prereleases(self):
        resolver, *clients = make_resolver(FakeServices())
        versions = await resolver.available_versions()
        await close(*clients)

        assert versions == ["v1.2.0", "v1.1.0"]

    @pytest.mark.asyncio
    async def test_available_versions_failure_returns_default(self):
        resolver, *clients = make_resolver(FakeServices(releases=None))
        versions = await resolver.available_versions()
        await close(*clients)

        assert versions == ["v1.0.0"]

    @pytest.mark.asyncio
    async def test_model_file_urls(self):
        resolver, *clients = make_resolver(FakeServices())
        urls = await resolver.model_file_urls("v1.2.0")
        await close(*clients)

        assert set(urls) == {"lgbm", "xgboost", "catboost", "preprocessor", "metadata"}
        assert urls["metadata"] == "https://downloads.test/v1.2.0/metadata.json"

    @pytest.mark.asyncio
    async def test_model_file_urls_failure_is_empty(self):
        resolver, *clients = make_resolver(FakeServices(release=None))
        urls = await resolver.model_file_urls("v9.9.9")
        await close(*clients)

        assert urls == {}

    @pytest.mark.asyncio
    async def test_metadata_downloaded_from_asset(self):
        resolver, *clients = make_resolver(FakeServices())
        metadata = await resolver.metadata("v1.2.0")
        await close(*clients)

        assert metadata == {"auc": 0.93, "trained_on": "ieee-cis"}

    @pytest.mark.asyncio
    async def test_metadata_missing_asset_is_empty(self):
        resolver, *clients = make_resolver(FakeServices(release=release_assets("lgbm.pkl")))
        metadata = await resolver.metadata("v1.2.0")
        await close(*clients)

        assert metadata == {}

    @pytest.mark.asyncio
    async def test_describe(self):
        resolver, *clients = make_resolver(FakeServices())
        info = await resolver.describe("v1.2.0")
        await close(*clients)

        assert info.version == "v1.2.0"
        assert info.known
        assert info.model_urls["lgbm"].endswith("lgbm.pkl")
        assert info.metadata["auc"] == 0.93

    @pytest.mark.asyncio
    async def test_describe_unpublished_version(self):
        resolver, *clients = make_resolver(FakeServices(release=None))
        info = await resolver.describe("v9.9.9")
        await close(*clients)

        assert info.known is False
        assert info.model_urls == {}


# ============================================================================
# RELOAD
# ============================================================================


class TestRequestReload:
    @pytest.mark.asyncio
    async def test_reload_posts_version_and_urls(self):
        services = FakeServices()
        resolver, *clients = make_resolver(services)
        accepted = await resolver.request_reload("v1.2.0")
        await close(*clients)

        assert accepted is True
        assert len(services.reload_requests) == 1
        body = services.reload_requests[0]
        assert body["version"] == "v1.2.0"
        assert body["model_urls"]["catboost"] == "https://downloads.test/v1.2.0/catboost.pkl"

    @pytest.mark.asyncio
    async def test_incomplete_release_is_rejected(self):
        services = FakeServices(release=release_assets("lgbm.pkl", "xgboost.pkl", "metadata.json"))
        resolver, *clients = make_resolver(services)
        accepted = await resolver.request_reload("v1.2.0")
        await close(*clients)

        assert accepted is False
        assert services.reload_requests == []

    @pytest.mark.asyncio
    async def test_backend_rejection(self):
        services = FakeServices(reload_status=500)
        resolver, *clients = make_resolver(services)
        accepted = await resolver.request_reload("v1.2.0")
        await close(*clients)

        assert accepted is False
        assert len(services.reload_requests) == 1
