"""
In-memory index of FHIR definitions.

A DefinitionStore holds the definitions of one package (or nothing, when it
only aggregates other stores) and owns an ordered list of child stores.
Lookups search the store itself first and then its descendants breadth
first, so a package that was requested directly always wins over one that
is only reachable further down the tree.
"""
from __future__ import annotations

import logging
from collections import deque
from copy import deepcopy
from typing import Any, Dict, Iterator, List, NamedTuple, Optional, Sequence

from fhir_package_loader.domain.fhir_utils import classify_definition, split_versioned_key
from fhir_package_loader.domain.models import (
    DEFAULT_SEARCH_ORDER,
    DefinitionMetadata,
    LoadedPackage,
    TypeCategory,
)

logger = logging.getLogger(__name__)


class IndexEntry(NamedTuple):
    definition: Dict[str, Any]
    version: Optional[str]
    category: TypeCategory


class DefinitionStore:
    def __init__(self, package: str = ""):
        self.package = package
        self.child_stores: List[DefinitionStore] = []
        self.unsuccessful_package_load = False
        self.package_jsons: Dict[str, Dict[str, Any]] = {}

        self._entries: List[IndexEntry] = []
        self._by_id: Dict[str, List[IndexEntry]] = {}
        self._by_name: Dict[str, List[IndexEntry]] = {}
        self._by_url: Dict[str, List[IndexEntry]] = {}

    def __repr__(self) -> str:
        return (
            f"DefinitionStore(package={self.package!r}, definitions={len(self._entries)}, "
            f"children={len(self.child_stores)}, failed={self.unsuccessful_package_load})"
        )

    # ========================================================================
    # Population
    # ========================================================================

    def add(self, definition: Any) -> Optional[TypeCategory]:
        """
        Classify and index a definition under its id, name and url.

        Returns the category, or None when the record is not a definition.
        """
        category = classify_definition(definition)
        if category is None:
            return None

        version = definition.get("version")
        entry = IndexEntry(
            definition=definition,
            version=version if isinstance(version, str) else None,
            category=category,
        )
        self._entries.append(entry)
        for index, field in ((self._by_id, "id"), (self._by_name, "name"), (self._by_url, "url")):
            key = definition.get(field)
            if isinstance(key, str) and key:
                index.setdefault(key, []).append(entry)
        return category

    def add_package_json(self, package: str, package_json: Optional[Dict[str, Any]]) -> None:
        if package_json is not None:
            self.package_jsons[package] = package_json

    def get_package_json(self, package: str) -> Optional[Dict[str, Any]]:
        """Find the package.json recorded for a package anywhere in the tree."""
        for store in self._walk():
            if package in store.package_jsons:
                return deepcopy(store.package_jsons[package])
        return None

    def all_package_jsons(self) -> List[Dict[str, Any]]:
        seen = set()
        results = []
        for store in self._walk():
            for package, package_json in store.package_jsons.items():
                if package not in seen:
                    seen.add(package)
                    results.append(deepcopy(package_json))
        return results

    # ========================================================================
    # Lookup
    # ========================================================================

    def fish_for_fhir(self, item: str, *types: TypeCategory) -> Optional[Dict[str, Any]]:
        """
        Find a definition by id, name or url, optionally suffixed with
        '|version'.

        Categories are searched in the order given (all but implementation
        guides when none are given). Within a category the id index is
        checked before the name index, and the name index before the url
        index. This store is searched before its children, and siblings
        before grandchildren.
        """
        entry = self._find(item, types)
        if entry is None:
            return None
        return deepcopy(entry.definition)

    def fish_for_metadata(self, item: str, *types: TypeCategory) -> Optional[DefinitionMetadata]:
        entry = self._find(item, types)
        if entry is None:
            return None
        d = entry.definition
        return DefinitionMetadata(
            id=d.get("id"),
            name=d.get("name"),
            sd_type=d.get("type"),
            url=d.get("url"),
            parent=d.get("baseDefinition"),
            abstract=d.get("abstract"),
            version=entry.version,
            resource_type=d.get("resourceType"),
        )

    def _find(self, item: str, types: Sequence[TypeCategory]) -> Optional[IndexEntry]:
        categories = types or DEFAULT_SEARCH_ORDER
        for key, version in split_versioned_key(item):
            for store in self._walk():
                entry = store._find_own(key, version, categories)
                if entry is not None:
                    return entry
        return None

    def _find_own(
        self,
        key: str,
        version: Optional[str],
        categories: Sequence[TypeCategory],
    ) -> Optional[IndexEntry]:
        for category in categories:
            for index in (self._by_id, self._by_name, self._by_url):
                # Later additions shadow earlier ones under the same key.
                for entry in reversed(index.get(key, ())):
                    if entry.category is not category:
                        continue
                    if version is not None and entry.version != version:
                        continue
                    return entry
        return None

    def _walk(self) -> Iterator["DefinitionStore"]:
        """Yield this store and every descendant, breadth first."""
        queue = deque([self])
        while queue:
            store = queue.popleft()
            yield store
            queue.extend(store.child_stores)

    # ========================================================================
    # Aggregate views
    # ========================================================================

    def _all(self, category: TypeCategory, package: Optional[str] = None) -> List[Dict[str, Any]]:
        seen = set()
        results = []
        for store in self._walk():
            if package is not None and store.package != package:
                continue
            for entry in store._entries:
                if entry.category is not category:
                    continue
                identity = _identity(entry, store.package)
                if identity in seen:
                    continue
                seen.add(identity)
                results.append(deepcopy(entry.definition))
        return results

    def all_resources(self, package: Optional[str] = None) -> List[Dict[str, Any]]:
        return self._all(TypeCategory.RESOURCE, package)

    def all_logicals(self, package: Optional[str] = None) -> List[Dict[str, Any]]:
        return self._all(TypeCategory.LOGICAL, package)

    def all_types(self, package: Optional[str] = None) -> List[Dict[str, Any]]:
        return self._all(TypeCategory.TYPE, package)

    def all_profiles(self, package: Optional[str] = None) -> List[Dict[str, Any]]:
        return self._all(TypeCategory.PROFILE, package)

    def all_extensions(self, package: Optional[str] = None) -> List[Dict[str, Any]]:
        return self._all(TypeCategory.EXTENSION, package)

    def all_value_sets(self, package: Optional[str] = None) -> List[Dict[str, Any]]:
        return self._all(TypeCategory.VALUE_SET, package)

    def all_code_systems(self, package: Optional[str] = None) -> List[Dict[str, Any]]:
        return self._all(TypeCategory.CODE_SYSTEM, package)

    def all_implementation_guides(self, package: Optional[str] = None) -> List[Dict[str, Any]]:
        return self._all(TypeCategory.IMPLEMENTATION_GUIDE, package)

    def all_instances(self, package: Optional[str] = None) -> List[Dict[str, Any]]:
        return self._all(TypeCategory.INSTANCE, package)

    def all_packages(self, package: Optional[str] = None) -> List[str]:
        """Labels of the successfully loaded packages in the tree."""
        return self._labels(package, failed=False)

    def all_unsuccessful_package_loads(self, package: Optional[str] = None) -> List[str]:
        """Labels of the packages in the tree that failed to load."""
        return self._labels(package, failed=True)

    def _labels(self, package: Optional[str], failed: bool) -> List[str]:
        labels: List[str] = []
        for store in self._walk():
            if not store.package or store.unsuccessful_package_load != failed:
                continue
            if package is not None and store.package != package:
                continue
            if store.package not in labels:
                labels.append(store.package)
        return labels

    def size(self, package: Optional[str] = None) -> int:
        """Number of unique definitions in the tree."""
        seen = set()
        for store in self._walk():
            if package is not None and store.package != package:
                continue
            for entry in store._entries:
                seen.add((entry.category, _identity(entry, store.package)))
        return len(seen)


def _identity(entry: IndexEntry, package: str) -> tuple:
    d = entry.definition
    return (d.get("resourceType"), d.get("id") or d.get("url"), entry.version, package)


def merge(loaded_package: LoadedPackage, store: DefinitionStore) -> DefinitionStore:
    """Add a loaded package's definitions and package.json to a store."""
    store.package = loaded_package.package
    for definition in loaded_package.definitions:
        store.add(definition)
    store.add_package_json(loaded_package.package, loaded_package.package_json)
    logger.debug(f"Indexed {len(store._entries)} definitions from {loaded_package.package}")
    return store
