"""
Decide where a package has to be downloaded from.

Ordinary versions come from the package registries: the primary registry
first and then the secondary one, or only the custom registry when one is
configured. "current" builds come from the FHIR build server, which is only
asked for a new archive when the cached build is older than the newest
build listed there.
"""
from __future__ import annotations

import logging
import re
from typing import List, Optional

import httpx
from pydantic import ValidationError

from fhir_package_loader.domain.errors import CurrentPackageLoadError
from fhir_package_loader.domain.fhir_utils import current_branch, format_date, parse_build_date
from fhir_package_loader.domain.models import (
    BuildStatusEntry,
    LoadedPackage,
    LoaderSettings,
    PackageManifest,
)
from fhir_package_loader.services.registry_client import RegistryClient
from fhir_package_loader.storage.package_cache import PackageCache

logger = logging.getLogger(__name__)

QA_SUFFIX = "/qa.json"
_DEFAULT_BRANCH_PATTERN = re.compile(r"/(master|main)/qa\.json$")


class RegistryUrlStrategy:
    def __init__(self, settings: LoaderSettings, client: RegistryClient, cache: PackageCache):
        self.settings = settings
        self.client = client
        self.cache = cache

    @property
    def listing_url(self) -> str:
        return f"{self.settings.build_server}/ig/qas.json"

    def r5_core_url(self, package_name: str) -> str:
        return f"{self.settings.build_server}/{package_name}.tgz"

    # ========================================================================
    # Registry packages
    # ========================================================================

    async def registry_urls(self, package_name: str, version: str) -> List[str]:
        """Candidate download URLs for a concrete version, in the order to try them."""
        custom_registry = self.settings.cleaned_custom_registry
        if custom_registry:
            return [await self._dist_url(custom_registry, package_name, version)]
        return [
            f"{self.settings.primary_registry}/{package_name}/{version}",
            f"{self.settings.secondary_registry}/packages/{package_name}/{version}",
        ]

    async def _dist_url(self, registry: str, package_name: str, version: str) -> str:
        """
        Use the tarball location an NPM-like registry publishes for the
        version, falling back to the FHIR registry layout.
        """
        try:
            info = await self.client.get_json(f"{registry}/{package_name}")
        except (httpx.HTTPError, ValueError) as e:
            logger.debug(f"Could not read {registry}/{package_name}: {e}")
            info = None

        tarball = None
        if isinstance(info, dict):
            tarball = (((info.get("versions") or {}).get(version) or {}).get("dist") or {}).get("tarball")
        if isinstance(tarball, str) and tarball:
            return tarball
        return f"{registry}/{package_name}/{version}"

    # ========================================================================
    # Current builds
    # ========================================================================

    async def current_package_url(
        self,
        package_name: str,
        version: str,
        cached_package: Optional[LoadedPackage],
    ) -> Optional[str]:
        """
        URL of the newest build of a current (or current$branch) package, or
        None when the cached package already is that build.
        """
        full_package_name = f"{package_name}#{version}"
        listing = await self._current_listing(full_package_name)

        branch = current_branch(version)
        matching = [
            entry
            for entry in listing
            if entry.package_id == package_name and entry.repo and _on_branch(entry.repo, branch)
        ]
        if not matching:
            raise CurrentPackageLoadError(full_package_name, self.listing_url)

        newest = max(matching, key=lambda entry: parse_build_date(entry.date))
        ig_url = f"{self.settings.build_server}/ig/{newest.repo[:-len(QA_SUFFIX)]}"
        package_url = f"{ig_url}/package.tgz"

        try:
            manifest = PackageManifest.model_validate(
                await self.client.get_json(f"{ig_url}/package.manifest.json")
            )
        except (httpx.HTTPError, ValueError) as e:
            if cached_package is None:
                return package_url
            logger.warning(
                f"Could not read the build date of {full_package_name} ({e}); using the cached package"
            )
            return None

        cached_date = (cached_package.package_json or {}).get("date") if cached_package else None
        if cached_package is None or manifest.date != cached_date:
            if cached_package is not None:
                logger.debug(
                    f"Cached package date for {full_package_name} ({format_date(cached_date)}) "
                    f"does not match last build date on {self.settings.build_server} "
                    f"({format_date(manifest.date)})"
                )
                logger.info(
                    f"Cached package {full_package_name} is out of date and will be replaced "
                    f"by the more recent version found on {self.settings.build_server}."
                )
            return package_url

        logger.debug(
            f"Cached package date for {full_package_name} ({format_date(cached_date)}) "
            f"matches last build date on {self.settings.build_server} "
            f"({format_date(manifest.date)}), so the cached package will be used"
        )
        return None

    async def _current_listing(self, full_package_name: str) -> List[BuildStatusEntry]:
        """
        The build server's listing, fetched at most once per refresh interval.
        """
        if not self.cache.is_current_refresh_needed():
            logger.debug(f"Reusing build listing fetched at {self.cache.last_current_refresh}")
            return self.cache.current_listing

        try:
            data = await self.client.get_json(self.listing_url)
        except (httpx.HTTPError, ValueError) as e:
            raise CurrentPackageLoadError(full_package_name, self.listing_url) from e
        if not isinstance(data, list):
            raise CurrentPackageLoadError(full_package_name, self.listing_url)

        entries = []
        for row in data:
            try:
                entries.append(BuildStatusEntry.model_validate(row))
            except ValidationError:
                continue
        if not entries:
            raise CurrentPackageLoadError(full_package_name, self.listing_url)
        self.cache.mark_current_refreshed(entries)
        return entries


def _on_branch(repo: str, branch: Optional[str]) -> bool:
    if branch is None:
        return _DEFAULT_BRANCH_PATTERN.search(repo) is not None
    return repo.endswith(f"/{branch}{QA_SUFFIX}")
