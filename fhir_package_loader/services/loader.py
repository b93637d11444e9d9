"""
Loading FHIR packages into DefinitionStores.

This service ties the pieces together:
- Resolving symbolic versions against the registries
- Reading packages from the local FHIR cache
- Downloading missing or outdated packages
- Merging the loaded definitions into (trees of) DefinitionStores
"""
from __future__ import annotations

import asyncio
import logging
import tarfile
from pathlib import Path
from typing import Awaitable, Callable, Iterable, List, Optional, Union

import httpx

from fhir_package_loader.domain.definitions import DefinitionStore, merge
from fhir_package_loader.domain.errors import PackageLoadError
from fhir_package_loader.domain.fhir_utils import is_current_version, is_r5_core_current
from fhir_package_loader.domain.models import LoadedPackage, LoaderSettings, PackageRequest
from fhir_package_loader.services.importer.package_downloader import (
    EmptyArchiveError,
    download_package,
)
from fhir_package_loader.services.registry_client import RegistryClient
from fhir_package_loader.services.registry_strategy import RegistryUrlStrategy
from fhir_package_loader.services.version_resolver import VersionResolver
from fhir_package_loader.storage import disk_cache
from fhir_package_loader.storage.package_cache import PackageCache

logger = logging.getLogger(__name__)

MergeFunction = Callable[[str, str, DefinitionStore, Optional[Path]], Awaitable[DefinitionStore]]

CERTIFICATE_HELP = (
    "\n\nSometimes this error occurs in corporate or educational environments that use proxies "
    "and/or SSL inspection.\nTroubleshooting tips:\n"
    "  1. If a non-proxied network is available, consider connecting to that network instead.\n"
    "  2. Add the proxy's root certificate to the certificate store Python uses, "
    "e.g. by pointing SSL_CERT_FILE at a bundle that contains it (RECOMMENDED).\n"
    "  3. Disable certificate validation with LoaderSettings(verify_ssl=False) (NOT RECOMMENDED).\n"
)


class PackageLoader:
    """
    Loads FHIR packages from the local cache or the configured registries.

    Each loader owns a PackageCache, so packages read from disk are parsed
    once per loader. A transport can be passed to route all HTTP traffic
    through something other than the network.
    """

    def __init__(
        self,
        settings: Optional[LoaderSettings] = None,
        cache: Optional[PackageCache] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        merge_function: Optional[MergeFunction] = None,
    ):
        self.settings = settings or LoaderSettings()
        self.cache = cache or PackageCache(self.settings.current_refresh_interval)
        self.client = RegistryClient(
            timeout=self.settings.http_timeout,
            verify=self.settings.verify_ssl,
            transport=transport,
        )
        self.resolver = VersionResolver(self.settings, self.client)
        self.strategy = RegistryUrlStrategy(self.settings, self.client, self.cache)
        self.merge_function: MergeFunction = merge_function or self.merge_dependency

    # ========================================================================
    # Version Lookups
    # ========================================================================

    async def look_up_latest_version(self, package_name: str) -> str:
        return await self.resolver.look_up_latest_version(package_name)

    async def look_up_latest_patch_version(self, package_name: str, version: str) -> str:
        return await self.resolver.look_up_latest_patch_version(package_name, version)

    # ========================================================================
    # Loading
    # ========================================================================

    def load_from_path(self, cache_path: Union[str, Path], target_package: str) -> Optional[LoadedPackage]:
        """Read target_package from cache_path, or None if it is not there."""
        return disk_cache.load_from_path(Path(cache_path), target_package, self.cache)

    async def merge_dependency(
        self,
        package_name: str,
        version: str,
        store: DefinitionStore,
        cache_path: Optional[Path] = None,
    ) -> DefinitionStore:
        """
        Load a package and merge its definitions into store.

        The package is read from the local cache when possible and downloaded
        otherwise. "current" packages are re-downloaded when the build server
        has a newer build than the cached one.

        Raises PackageLoadError when the package can be found neither locally
        nor online.
        """
        cache_path = Path(cache_path) if cache_path is not None else self.settings.cache_path
        version = await self.resolver.resolve(package_name, version)
        full_package_name = f"{package_name}#{version}"

        logger.info(f"Checking {cache_path} for {full_package_name}...")
        loaded = self._load_local(cache_path, full_package_name)
        if loaded is not None:
            logger.info(f"Found {full_package_name} in {cache_path}.")
        else:
            logger.info(f"Did not find {full_package_name} in {cache_path}.")

        if version == "dev" and loaded is None:
            logger.info(
                f"Falling back to {package_name}#current since {full_package_name} is not locally "
                f"cached. To avoid this, add {full_package_name} to your local FHIR cache by "
                f"building it locally with the HL7 FHIR IG Publisher."
            )
            version = "current"
            full_package_name = f"{package_name}#{version}"
            loaded = self._load_local(cache_path, full_package_name)

        urls = await self._download_urls(package_name, version, loaded, cache_path)
        if urls:
            loaded = await self._download(urls, cache_path, full_package_name, loaded)

        if loaded is None:
            raise PackageLoadError(full_package_name, self.settings.custom_registry)

        merge(loaded, store)
        logger.info(f"Loaded package {full_package_name}")
        return store

    async def load_dependency(
        self,
        package_name: str,
        version: str,
        store: DefinitionStore,
        cache_path: Optional[Path] = None,
    ) -> DefinitionStore:
        """
        Load a package into its own store and attach it to store.

        When store has no children yet, a new store holding both store and
        the new package is returned instead.
        """
        new_store = DefinitionStore()
        await self.merge_function(package_name, version, new_store, cache_path)
        if not store.child_stores:
            wrapper = DefinitionStore()
            wrapper.child_stores.extend([store, new_store])
            return wrapper
        store.child_stores.append(new_store)
        return store

    async def load_dependencies(
        self,
        requests: Iterable[Union[str, PackageRequest]],
        cache_path: Optional[Path] = None,
    ) -> DefinitionStore:
        """
        Load several packages concurrently.

        Failures are logged and recorded on the failing package's store
        rather than raised. A single request returns its store directly;
        several are gathered under a new store in request order.
        """
        parsed = [r if isinstance(r, PackageRequest) else PackageRequest.parse(r) for r in requests]
        stores: List[DefinitionStore] = await asyncio.gather(
            *(self._load_one(request, cache_path) for request in parsed)
        )
        if len(stores) == 1:
            return stores[0]
        main_store = DefinitionStore()
        main_store.child_stores.extend(stores)
        return main_store

    async def _load_one(self, request: PackageRequest, cache_path: Optional[Path]) -> DefinitionStore:
        store = DefinitionStore()
        try:
            await self.merge_function(request.name, request.version, store, cache_path)
        except Exception as e:
            message = f"Failed to load {request.cache_key}: {e}"
            if _mentions_certificate(e):
                message += CERTIFICATE_HELP
            logger.error(message)
            store.unsuccessful_package_load = True
            store.package = request.cache_key
        return store

    # ========================================================================
    # Helpers
    # ========================================================================

    def _load_local(self, cache_path: Path, full_package_name: str) -> Optional[LoadedPackage]:
        try:
            return disk_cache.load_from_path(cache_path, full_package_name, self.cache)
        except (OSError, ValueError) as e:
            raise PackageLoadError(full_package_name, self.settings.custom_registry) from e

    async def _download_urls(
        self,
        package_name: str,
        version: str,
        loaded: Optional[LoadedPackage],
        cache_path: Path,
    ) -> List[str]:
        """Where to download the package from; empty when the cached copy is good."""
        full_package_name = f"{package_name}#{version}"
        if is_r5_core_current(package_name, version):
            if loaded is not None:
                logger.info(
                    f"Downloading {full_package_name} since the loader cannot determine if the "
                    f"version in {cache_path} is the most recent build."
                )
            return [self.strategy.r5_core_url(package_name)]
        if is_current_version(version):
            url = await self.strategy.current_package_url(package_name, version, loaded)
            return [url] if url else []
        if loaded is None:
            return await self.strategy.registry_urls(package_name, version)
        return []

    async def _download(
        self,
        urls: List[str],
        cache_path: Path,
        full_package_name: str,
        loaded: Optional[LoadedPackage],
    ) -> Optional[LoadedPackage]:
        try:
            await download_package(self.client, urls, cache_path, full_package_name)
        except EmptyArchiveError:
            logger.info(f"Unable to download most current version of {full_package_name}")
            return loaded
        except (httpx.HTTPError, tarfile.TarError, EOFError, OSError, ValueError) as e:
            raise PackageLoadError(full_package_name, self.settings.custom_registry) from e

        self.cache.discard(full_package_name)
        return self._load_local(cache_path, full_package_name)


def _mentions_certificate(error: Optional[BaseException]) -> bool:
    """True if error or anything it was raised from talks about a certificate."""
    seen = set()
    while error is not None and id(error) not in seen:
        seen.add(id(error))
        if "certificate" in str(error):
            return True
        error = error.__cause__ or error.__context__
    return False
