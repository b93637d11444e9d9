"""
Pydantic models for the FHIR package loader.

This module defines the data models used throughout the loader, including:
- Loader settings (registries, build server, cache location)
- Package requests and packages read from the local cache
- Records returned by the package registry and the build server
- The type categories definitions are indexed under

All models use Pydantic for validation and serialization.
"""

from __future__ import annotations

from datetime import timedelta
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


DEFAULT_CACHE_PATH = Path.home() / ".fhir" / "packages"


# ---------------------------------------------------------------------------
# Loader Configuration
# ---------------------------------------------------------------------------


class LoaderSettings(BaseModel):
    """
    Configuration for resolving and downloading FHIR packages.

    The primary and secondary registries are tried in order for version
    lookups and downloads. A custom registry, when set, replaces both of
    them but never the build server used for "current" packages.
    """

    primary_registry: str = Field(
        default="https://packages.fhir.org",
        description="Main FHIR package registry.",
    )
    secondary_registry: str = Field(
        default="https://packages2.fhir.org",
        description="Fallback registry, queried under its /packages path.",
    )
    build_server: str = Field(
        default="https://build.fhir.org",
        description="Continuous build server hosting 'current' packages.",
    )
    custom_registry: Optional[str] = Field(
        default=None,
        description="Registry that replaces the primary/secondary chain when set.",
    )
    cache_path: Path = Field(
        default=DEFAULT_CACHE_PATH,
        description="Default local FHIR package cache.",
    )
    http_timeout: float = Field(
        default=60.0,
        description="Timeout in seconds applied to every HTTP request.",
    )
    verify_ssl: bool = Field(
        default=True,
        description="Verify TLS certificates of registries and the build server.",
    )
    current_refresh_interval: timedelta = Field(
        default=timedelta(hours=24),
        description="Minimum time between two queries of the build server's listing.",
    )

    @property
    def cleaned_custom_registry(self) -> Optional[str]:
        """The custom registry without a trailing slash, or None."""
        if not self.custom_registry:
            return None
        return self.custom_registry.rstrip("/")


# ---------------------------------------------------------------------------
# Package Models
# ---------------------------------------------------------------------------


class PackageRequest(BaseModel):
    """A requested package: an id plus a (possibly symbolic) version."""

    name: str
    version: str

    @classmethod
    def parse(cls, value: str) -> "PackageRequest":
        """Parse 'name#version'. The version may itself contain '#'."""
        name, _, version = value.partition("#")
        return cls(name=name, version=version)

    @property
    def cache_key(self) -> str:
        return f"{self.name}#{self.version}"


class LoadedPackage(BaseModel):
    """
    A package read from the local cache.

    ``package`` is the cache key the package was requested under
    (``name#version``); ``definitions`` holds every JSON record found in the
    package folder, ``package_json`` the package's own package.json.
    """

    model_config = ConfigDict(frozen=True)

    package: str
    definitions: List[Any] = Field(default_factory=list)
    package_json: Optional[Dict[str, Any]] = None


class BuildStatusEntry(BaseModel):
    """One row of the build server's qas.json listing."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    package_id: Optional[str] = Field(default=None, alias="package-id")
    version: Optional[str] = None
    date: Optional[str] = None
    repo: Optional[str] = None


class PackageManifest(BaseModel):
    """The build server's package.manifest.json for a single build."""

    model_config = ConfigDict(extra="ignore")

    date: Optional[str] = None


# ---------------------------------------------------------------------------
# Definition Models
# ---------------------------------------------------------------------------


class TypeCategory(str, Enum):
    """The categories a definition can be indexed under."""

    RESOURCE = "Resource"
    LOGICAL = "Logical"
    TYPE = "Type"
    PROFILE = "Profile"
    EXTENSION = "Extension"
    VALUE_SET = "ValueSet"
    CODE_SYSTEM = "CodeSystem"
    IMPLEMENTATION_GUIDE = "ImplementationGuide"
    INSTANCE = "Instance"


# Search order used when a lookup does not name any categories.
# Implementation guides are only found when asked for explicitly.
DEFAULT_SEARCH_ORDER = (
    TypeCategory.RESOURCE,
    TypeCategory.LOGICAL,
    TypeCategory.TYPE,
    TypeCategory.PROFILE,
    TypeCategory.EXTENSION,
    TypeCategory.VALUE_SET,
    TypeCategory.CODE_SYSTEM,
    TypeCategory.INSTANCE,
)


class DefinitionMetadata(BaseModel):
    """Summary of a definition, as returned by fish_for_metadata."""

    id: Optional[str] = None
    name: Optional[str] = None
    sd_type: Optional[str] = None
    url: Optional[str] = None
    parent: Optional[str] = None
    abstract: Optional[bool] = None
    version: Optional[str] = None
    resource_type: Optional[str] = None
