"""
Resolve symbolic package versions ("latest", "X.Y.x") to concrete ones.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx
from packaging.version import InvalidVersion, Version

from fhir_package_loader.domain.errors import (
    IncorrectWildcardVersionFormatError,
    LatestVersionUnavailableError,
)
from fhir_package_loader.domain.fhir_utils import MINOR_WILDCARD_PATTERN, PATCH_WILDCARD_PATTERN
from fhir_package_loader.domain.models import LoaderSettings
from fhir_package_loader.services.registry_client import RegistryClient

logger = logging.getLogger(__name__)


class VersionResolver:
    """Looks up versions in the configured registries."""

    def __init__(self, settings: LoaderSettings, client: RegistryClient):
        self.settings = settings
        self.client = client

    async def resolve(self, package_name: str, version: str) -> str:
        """
        Turn a requested version into the one to load.

        "latest" and "X.Y.x" are looked up in the registry, "X.x" is
        rejected, and anything else is returned unchanged.
        """
        if version == "latest":
            return await self.look_up_latest_version(package_name)
        if PATCH_WILDCARD_PATTERN.match(version):
            return await self.look_up_latest_patch_version(package_name, version)
        if MINOR_WILDCARD_PATTERN.match(version):
            raise IncorrectWildcardVersionFormatError(package_name, version)
        return version

    async def look_up_latest_version(self, package_name: str) -> str:
        custom_registry = self.settings.custom_registry
        try:
            info = await self._fetch_package_info(package_name)
        except (httpx.HTTPError, ValueError) as e:
            raise LatestVersionUnavailableError(package_name, custom_registry) from e

        latest = _dig(info, "dist-tags", "latest")
        if not isinstance(latest, str) or not latest:
            raise LatestVersionUnavailableError(package_name, custom_registry)
        logger.info(f"Resolved {package_name}#latest to {latest}")
        return latest

    async def look_up_latest_patch_version(self, package_name: str, version: str) -> str:
        match = PATCH_WILDCARD_PATTERN.match(version)
        if not match:
            raise IncorrectWildcardVersionFormatError(package_name, version)

        custom_registry = self.settings.custom_registry
        try:
            info = await self._fetch_package_info(package_name)
        except (httpx.HTTPError, ValueError) as e:
            raise LatestVersionUnavailableError(package_name, custom_registry, patch=True) from e

        versions = _dig(info, "versions")
        if not isinstance(versions, dict) or not versions:
            raise LatestVersionUnavailableError(package_name, custom_registry, patch=True)

        latest = max_satisfying_patch(list(versions), int(match.group(1)), int(match.group(2)))
        if latest is None:
            raise LatestVersionUnavailableError(package_name, custom_registry, patch=True)
        logger.info(f"Resolved {package_name}#{version} to {latest}")
        return latest

    async def _fetch_package_info(self, package_name: str) -> Any:
        """
        Get the registry metadata for a package.

        A custom registry is asked alone. Otherwise the primary registry is
        asked first and the secondary registry only if that fails.
        """
        custom_registry = self.settings.cleaned_custom_registry
        if custom_registry:
            return await self.client.get_json(f"{custom_registry}/{package_name}")

        try:
            return await self.client.get_json(f"{self.settings.primary_registry}/{package_name}")
        except (httpx.HTTPError, ValueError) as e:
            logger.debug(f"Primary registry lookup for {package_name} failed ({e}); trying secondary registry")
            return await self.client.get_json(
                f"{self.settings.secondary_registry}/packages/{package_name}"
            )


def max_satisfying_patch(versions: List[str], major: int, minor: int) -> Optional[str]:
    """
    Highest version in versions of the form major.minor.patch.

    Versions carrying any qualifier (pre-release, build, post or local
    segments) never satisfy a patch wildcard.
    """
    candidates: Dict[str, Version] = {}
    for raw in versions:
        try:
            parsed = Version(raw)
        except InvalidVersion:
            continue
        if len(parsed.release) != 3 or parsed.epoch != 0:
            continue
        if parsed.is_prerelease or parsed.is_postrelease or parsed.local is not None:
            continue
        if parsed.release[0] != major or parsed.release[1] != minor:
            continue
        if raw.strip().lower().startswith("v"):
            continue
        candidates[raw] = parsed
    if not candidates:
        return None
    return max(candidates, key=candidates.__getitem__)


def _dig(data: Any, *keys: str) -> Any:
    for key in keys:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data
