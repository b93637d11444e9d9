"""
Errors raised while resolving, downloading and loading FHIR packages.
"""
from __future__ import annotations

from typing import Optional


class FHIRPackageLoaderError(Exception):
    """Base class for all loader errors."""


class PackageLoadError(FHIRPackageLoaderError):
    """The package could not be loaded from the cache or any configured source."""

    def __init__(self, full_package_name: str, custom_registry: Optional[str] = None):
        self.full_package_name = full_package_name
        self.custom_registry = custom_registry
        if custom_registry:
            source = f"the custom FHIR package registry {custom_registry}"
        else:
            source = "the FHIR package registry"
        super().__init__(
            f"The package {full_package_name} could not be loaded locally or from {source}."
        )


class CurrentPackageLoadError(FHIRPackageLoaderError):
    """A current (or current$branch) package has no entry on the build server."""

    def __init__(self, full_package_name: str, listing_url: str = "https://build.fhir.org/ig/qas.json"):
        self.full_package_name = full_package_name
        self.listing_url = listing_url
        super().__init__(
            f"The package {full_package_name} is not available on {listing_url}, "
            "so no current version can be loaded"
        )


class IncorrectWildcardVersionFormatError(FHIRPackageLoaderError):
    """Only the patch version may be a wildcard (X.Y.x)."""

    def __init__(self, package_name: str, version: str):
        self.package_name = package_name
        self.version = version
        super().__init__(
            f"Incorrect version format for package {package_name}: {version}. "
            "Wildcard should only be used to specify patch versions."
        )


class LatestVersionUnavailableError(FHIRPackageLoaderError):
    """The latest (or latest patch) version of a package could not be determined."""

    def __init__(
        self,
        package_name: str,
        custom_registry: Optional[str] = None,
        patch: bool = False,
    ):
        self.package_name = package_name
        self.custom_registry = custom_registry
        self.patch = patch
        which = "Latest patch version" if patch else "Latest version"
        if custom_registry:
            source = f"the custom FHIR package registry {custom_registry}"
        else:
            source = "the FHIR package registry"
        super().__init__(f"{which} of package {package_name} could not be determined from {source}")
