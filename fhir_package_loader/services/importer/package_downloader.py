"""
Download and extract FHIR package archives into the local cache.
"""
from __future__ import annotations

import asyncio
import logging
import os
import shutil
import tarfile
import tempfile
from pathlib import Path
from typing import Sequence

import httpx

from fhir_package_loader.services.registry_client import RegistryClient
from fhir_package_loader.storage.disk_cache import clean_cached_package, install_package

logger = logging.getLogger(__name__)


class EmptyArchiveError(Exception):
    """The server answered with an empty body instead of a package archive."""


async def download_package(
    client: RegistryClient,
    urls: Sequence[str],
    cache_path: Path,
    target_package: str,
) -> Path:
    """
    Download target_package from the first url that answers and install it.

    Each url is tried in turn; the error of the last one is raised when all
    of them fail. An empty response raises EmptyArchiveError immediately so
    that an already cached copy can be kept.

    Returns the directory the package was installed into.
    """
    last_error: Exception = ValueError(f"No download location known for {target_package}")
    for url in urls:
        logger.info(f"Downloading {target_package}... {url}")
        try:
            installed = await _download_and_install(client, url, Path(cache_path), target_package)
        except (httpx.HTTPError, tarfile.TarError, EOFError, OSError) as e:
            last_error = e
            logger.warning(f"Download of {target_package} from {url} failed: {e}")
            continue
        logger.info(f"Downloaded {target_package}")
        return installed

    raise last_error


async def _download_and_install(
    client: RegistryClient,
    url: str,
    cache_path: Path,
    target_package: str,
) -> Path:
    fd, archive_name = tempfile.mkstemp(suffix=".tgz")
    archive_path = Path(archive_name)
    try:
        # aiofiles reopens the file by name
        os.close(fd)
        written = await client.download(url, archive_path)
        if written == 0:
            raise EmptyArchiveError(f"{url} returned no content for {target_package}")
        return await asyncio.to_thread(_extract_and_install, archive_path, cache_path, target_package)
    finally:
        archive_path.unlink(missing_ok=True)


def _extract_and_install(archive_path: Path, cache_path: Path, target_package: str) -> Path:
    extract_dir = Path(tempfile.mkdtemp(prefix="fhir-package-"))
    try:
        with tarfile.open(archive_path, "r:*") as archive:
            archive.extractall(extract_dir, filter="data")
        clean_cached_package(extract_dir)
        return install_package(extract_dir, cache_path, target_package)
    finally:
        # install_package moves the directory away on success
        if extract_dir.exists():
            shutil.rmtree(extract_dir, ignore_errors=True)
