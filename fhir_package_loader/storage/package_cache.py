"""
In-memory cache of packages read from disk.

Packages are memoized by the exact cache key they were requested under
(``name#version``) for the life of the cache object. The cache also remembers
when the build server's listing of current builds was last fetched, and
what it contained, so that the listing is queried at most once per refresh
interval.

The cache is shared by concurrently running loads without locking: loads of
distinct packages write distinct keys, and two loads racing on the refresh
timestamp can at worst fetch the listing twice.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from fhir_package_loader.domain.models import BuildStatusEntry, LoadedPackage


class PackageCache:
    """Memoizes LoadedPackages and the build server listing."""

    def __init__(self, current_refresh_interval: timedelta = timedelta(hours=24)):
        self.current_refresh_interval = current_refresh_interval
        self.last_current_refresh: Optional[datetime] = None
        self.current_listing: List[BuildStatusEntry] = []
        self._packages: Dict[str, LoadedPackage] = {}

    def contains(self, key: str) -> bool:
        return key in self._packages

    def get(self, key: str) -> Optional[LoadedPackage]:
        return self._packages.get(key)

    def put(self, key: str, package: LoadedPackage) -> None:
        self._packages[key] = package

    def discard(self, key: str) -> None:
        """Forget a package, e.g. after a newer build replaced it on disk."""
        self._packages.pop(key, None)

    def is_current_refresh_needed(self, now: Optional[datetime] = None) -> bool:
        if self.last_current_refresh is None:
            return True
        now = now or datetime.now(timezone.utc)
        return now - self.last_current_refresh >= self.current_refresh_interval

    def mark_current_refreshed(
        self,
        listing: List[BuildStatusEntry],
        now: Optional[datetime] = None,
    ) -> None:
        self.current_listing = listing
        self.last_current_refresh = now or datetime.now(timezone.utc)
