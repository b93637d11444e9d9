"""
Load FHIR packages from the local FHIR cache or the FHIR package registries.

The functions below use a shared PackageLoader configured from the
environment (FPL_REGISTRY selects a custom registry). Build a
fhir_package_loader.services.loader.PackageLoader directly for other
settings or an isolated cache.
"""
from __future__ import annotations

from pathlib import Path
from typing import Iterable, Optional, Union

from fhir_package_loader.core.dependencies import get_package_loader
from fhir_package_loader.domain.definitions import DefinitionStore
from fhir_package_loader.domain.errors import (
    CurrentPackageLoadError,
    FHIRPackageLoaderError,
    IncorrectWildcardVersionFormatError,
    LatestVersionUnavailableError,
    PackageLoadError,
)
from fhir_package_loader.domain.models import (
    DefinitionMetadata,
    LoadedPackage,
    LoaderSettings,
    PackageRequest,
    TypeCategory,
)
from fhir_package_loader.services.loader import PackageLoader
from fhir_package_loader.storage.package_cache import PackageCache

__all__ = [
    "CurrentPackageLoadError",
    "DefinitionMetadata",
    "DefinitionStore",
    "FHIRPackageLoaderError",
    "IncorrectWildcardVersionFormatError",
    "LatestVersionUnavailableError",
    "LoadedPackage",
    "LoaderSettings",
    "PackageCache",
    "PackageLoadError",
    "PackageLoader",
    "PackageRequest",
    "TypeCategory",
    "load_dependencies",
    "load_dependency",
    "load_from_path",
    "look_up_latest_patch_version",
    "look_up_latest_version",
    "merge_dependency",
]


async def load_dependencies(
    requests: Iterable[Union[str, PackageRequest]],
    cache_path: Optional[Path] = None,
) -> DefinitionStore:
    return await get_package_loader().load_dependencies(requests, cache_path)


async def load_dependency(
    package_name: str,
    version: str,
    store: DefinitionStore,
    cache_path: Optional[Path] = None,
) -> DefinitionStore:
    return await get_package_loader().load_dependency(package_name, version, store, cache_path)


async def merge_dependency(
    package_name: str,
    version: str,
    store: DefinitionStore,
    cache_path: Optional[Path] = None,
) -> DefinitionStore:
    return await get_package_loader().merge_dependency(package_name, version, store, cache_path)


async def look_up_latest_version(package_name: str) -> str:
    return await get_package_loader().look_up_latest_version(package_name)


async def look_up_latest_patch_version(package_name: str, version: str) -> str:
    return await get_package_loader().look_up_latest_patch_version(package_name, version)


def load_from_path(cache_path: Union[str, Path], target_package: str) -> Optional[LoadedPackage]:
    return get_package_loader().load_from_path(cache_path, target_package)
