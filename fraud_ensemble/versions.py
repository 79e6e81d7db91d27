"""
Guardian Ensemble Scoring - Model Versions
===========================================

Resolves which model version is serving, lists published versions from
the release index (GitHub releases of the data repository), and asks
the model service to hot-reload a version.

Every operation here is best-effort: failures are logged and replaced
by a fallback value, never raised to the caller.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from .config import RELEASE_ASSETS, REQUIRED_RELEASE_ARTIFACTS
from .schemas import ModelVersionInfo, VersionSource

logger = logging.getLogger(__name__)

# Failures that mean "this source could not answer"
LOOKUP_ERRORS = (httpx.HTTPError, ValueError, KeyError, TypeError, AttributeError)


class VersionResolver:
    def __init__(
        self,
        backend_client: httpx.AsyncClient,
        release_client: httpx.AsyncClient,
        repo: str,
        default_version: str,
        timeout: float = 10.0,
    ):
        self.backend_client = backend_client
        self.release_client = release_client
        self.repo = repo
        self.default_version = default_version
        self.timeout = timeout

    # -------------------------------------------------------------------------
    # Current version
    # -------------------------------------------------------------------------

    async def current_version(self) -> ModelVersionInfo:
        """
        Version served by the model backend.

        Falls back to the newest published release, then to the
        configured default (reported with ``known=False``).
        """
        try:
            return await self._backend_version()
        except LOOKUP_ERRORS as exc:
            logger.warning("Backend version lookup failed, trying release index: %s", exc)

        try:
            releases = await self._published_releases()
            if releases:
                return ModelVersionInfo(version=releases[0], source=VersionSource.RELEASE_INDEX)
            logger.warning("Release index for %s lists no published versions", self.repo)
        except LOOKUP_ERRORS as exc:
            logger.warning("Release index lookup failed, using default version: %s", exc)

        return ModelVersionInfo(
            version=self.default_version, source=VersionSource.DEFAULT, known=False
        )

    async def _backend_version(self) -> ModelVersionInfo:
        response = await self.backend_client.get("/model/version", timeout=self.timeout)
        response.raise_for_status()
        body = response.json()

        version = body.get("version")
        if not version or version == "unknown":
            raise ValueError(f"backend reported no version: {body!r}")

        return ModelVersionInfo(
            version=str(version),
            source=VersionSource.BACKEND,
            loaded_at=body.get("loaded_at"),
            models_loaded=body.get("models_loaded"),
            metadata={"model_details": body["model_details"]} if "model_details" in body else {},
        )

    # -------------------------------------------------------------------------
    # Release index
    # -------------------------------------------------------------------------

    async def available_versions(self) -> List[str]:
        """Published (non-draft, non-prerelease) versions, newest first."""
        try:
            versions = await self._published_releases()
        except LOOKUP_ERRORS as exc:
            logger.error("Failed to fetch available model versions: %s", exc)
            return [self.default_version]

        logger.info("Found %d available model versions: %s", len(versions), versions)
        return versions

    async def _published_releases(self) -> List[str]:
        response = await self.release_client.get(
            f"/repos/{self.repo}/releases", timeout=self.timeout
        )
        response.raise_for_status()

        return [
            release["tag_name"]
            for release in response.json()
            if not release.get("draft") and not release.get("prerelease")
        ]

    async def model_file_urls(self, version: str) -> Dict[str, str]:
        """Download URLs of the known release assets of ``version``; {} on failure."""
        try:
            response = await self.release_client.get(
                f"/repos/{self.repo}/releases/tags/{version}", timeout=self.timeout
            )
            response.raise_for_status()
            assets = response.json().get("assets", [])

            urls = {
                RELEASE_ASSETS[asset["name"]]: asset["browser_download_url"]
                for asset in assets
                if asset.get("name") in RELEASE_ASSETS
            }
        except LOOKUP_ERRORS as exc:
            logger.error("Failed to fetch model file URLs for version %s: %s", version, exc)
            return {}

        logger.info("Found %d model files for version %s: %s", len(urls), version, sorted(urls))
        return urls

    async def metadata(self, version: str, urls: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """Contents of the release's ``metadata.json``; {} when absent or unreadable."""
        if urls is None:
            urls = await self.model_file_urls(version)

        metadata_url = urls.get("metadata")
        if metadata_url is None:
            logger.warning("No metadata file found for version: %s", version)
            return {}

        try:
            response = await self.release_client.get(
                metadata_url, timeout=self.timeout, follow_redirects=True
            )
            response.raise_for_status()
            metadata = response.json()
        except LOOKUP_ERRORS as exc:
            logger.error("Failed to get metadata for version %s: %s", version, exc)
            return {}

        if not isinstance(metadata, dict):
            logger.error("Metadata for version %s is not a JSON object", version)
            return {}
        return metadata

    async def describe(self, version: str) -> ModelVersionInfo:
        urls = await self.model_file_urls(version)
        metadata = await self.metadata(version, urls) if urls else {}
        return ModelVersionInfo(
            version=version,
            source=VersionSource.RELEASE_INDEX,
            known=bool(urls),
            model_urls=urls,
            metadata=metadata,
        )

    # -------------------------------------------------------------------------
    # Reload
    # -------------------------------------------------------------------------

    async def request_reload(self, version: str) -> bool:
        """
        Ask the model service to load ``version``.

        Requires the release to carry all three model files and the
        metadata file. Returns False on any failure.
        """
        urls = await self.model_file_urls(version)
        missing = [name for name in REQUIRED_RELEASE_ARTIFACTS if name not in urls]
        if missing:
            logger.error("Release %s is missing artifacts: %s", version, ", ".join(missing))
            return False

        logger.info("Requesting model reload for version: %s", version)
        try:
            response = await self.backend_client.post(
                "/model/reload",
                json={"version": version, "model_urls": urls},
                timeout=self.timeout,
            )
        except httpx.HTTPError as exc:
            logger.error("Failed to request model reload for version %s: %s", version, exc)
            return False

        if not response.is_success:
            logger.error("Model reload request failed with status: %s", response.status_code)
            return False

        logger.info("Model reload request successful for version: %s", version)
        return True
