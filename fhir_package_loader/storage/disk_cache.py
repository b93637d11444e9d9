"""
Reading and writing the on-disk FHIR package cache.

Cached packages live in ``{cache_path}/{name}#{version}/package/*.json``,
with the package's own metadata in ``package/package.json``. Directory names
are matched case-insensitively.
"""
from __future__ import annotations

import json
import logging
import shutil
from pathlib import Path
from typing import Optional

from fhir_package_loader.domain.models import LoadedPackage
from fhir_package_loader.storage.package_cache import PackageCache

logger = logging.getLogger(__name__)

PACKAGE_FOLDER = "package"
PACKAGE_JSON = "package.json"


def find_cached_package_dir(cache_path: Path, target_package: str) -> Optional[Path]:
    """Return the cache directory for target_package, ignoring case."""
    cache_path = Path(cache_path)
    if not cache_path.is_dir():
        return None
    wanted = target_package.lower()
    for entry in cache_path.iterdir():
        if entry.is_dir() and entry.name.lower() == wanted:
            return entry
    return None


def load_from_path(
    cache_path: Path,
    target_package: str,
    cache: PackageCache,
) -> Optional[LoadedPackage]:
    """
    Load a package from the local cache.

    Returns the memoized package when target_package was loaded before, and
    None when the package is not in the cache (it has to be downloaded).
    """
    if cache.contains(target_package):
        return cache.get(target_package)

    package_dir = find_cached_package_dir(cache_path, target_package)
    if package_dir is None:
        return None

    content_dir = package_dir / PACKAGE_FOLDER
    if not content_dir.is_dir():
        logger.warning(f"Cached package {package_dir} has no '{PACKAGE_FOLDER}' folder; ignoring it")
        return None

    definitions = []
    package_json = None
    for file in sorted(content_dir.iterdir()):
        if not file.is_file() or not file.name.endswith(".json"):
            continue
        definition = json.loads(file.read_text(encoding="utf-8-sig"))
        definitions.append(definition)
        if file.name == PACKAGE_JSON and isinstance(definition, dict):
            package_json = definition

    loaded = LoadedPackage(
        package=target_package,
        definitions=definitions,
        package_json=package_json,
    )
    cache.put(target_package, loaded)
    return loaded


def clean_cached_package(package_dir: Path) -> None:
    """
    Nest the contents of an extracted package under its "package" folder.

    A correctly formed package keeps everything in "package/". Some published
    packages put their files at the root instead; those are moved into a new
    "package" folder. Packages that already have the folder are left alone.
    """
    package_dir = Path(package_dir)
    target = package_dir / PACKAGE_FOLDER
    if target.exists():
        return

    entries = list(package_dir.iterdir())
    target.mkdir()
    for entry in entries:
        entry.rename(target / entry.name)


def install_package(source_dir: Path, cache_path: Path, target_package: str) -> Path:
    """
    Replace the cache entry for target_package with source_dir.

    Any existing directory for the package is removed first, then source_dir
    is moved into its place.
    """
    cache_path = Path(cache_path)
    cache_path.mkdir(parents=True, exist_ok=True)

    target_dir = cache_path / target_package
    existing = find_cached_package_dir(cache_path, target_package)
    if existing is not None:
        shutil.rmtree(existing)
    if target_dir.exists():
        shutil.rmtree(target_dir)

    shutil.move(str(source_dir), str(target_dir))
    logger.debug(f"Installed {target_package} into {target_dir}")
    return target_dir
