from __future__ import annotations

import io
import json
import shutil
import tarfile
from pathlib import Path
from typing import Any, Callable, Dict, List

import httpx
import pytest

from fhir_package_loader.domain.definitions import DefinitionStore, merge
from fhir_package_loader.domain.models import LoaderSettings
from fhir_package_loader.services.loader import PackageLoader
from fhir_package_loader.storage.disk_cache import load_from_path
from fhir_package_loader.storage.package_cache import PackageCache

FIXTURES = Path(__file__).parent / "fixtures"

Handler = Callable[[httpx.Request], httpx.Response]


class FakeRegistry:
    """
    Serves canned responses by URL through an httpx.MockTransport and
    records every requested URL. Unknown URLs answer 404.
    """

    def __init__(self):
        self.routes: Dict[str, Handler] = {}
        self.requested: List[str] = []

    def add_json(self, url: str, data: Any, status_code: int = 200) -> None:
        self.routes[url] = lambda request: httpx.Response(status_code, json=data)

    def add_bytes(self, url: str, content: bytes, status_code: int = 200) -> None:
        self.routes[url] = lambda request: httpx.Response(status_code, content=content)

    def add_error(self, url: str, message: str) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError(message, request=request)

        self.routes[url] = handler

    def count(self, url: str) -> int:
        return self.requested.count(url)

    def handle(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requested.append(url)
        route = self.routes.get(url)
        if route is None:
            return httpx.Response(404, json={"error": f"{url} not found"})
        return route(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)


def build_package_tarball(files: Dict[str, Dict[str, Any]], root: str = "package") -> bytes:
    """gzip tar holding one JSON file per entry of files, under root."""
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as archive:
        for name, content in files.items():
            data = json.dumps(content).encode("utf-8")
            info = tarfile.TarInfo(f"{root}/{name}" if root else name)
            info.size = len(data)
            archive.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


def simple_package_files(name: str, version: str, **package_json: Any) -> Dict[str, Dict[str, Any]]:
    return {
        "package.json": {"name": name, "version": version, **package_json},
        "StructureDefinition-DownloadedPatient.json": {
            "resourceType": "StructureDefinition",
            "id": "DownloadedPatient",
            "url": f"http://example.org/fhir/{name}/StructureDefinition/DownloadedPatient",
            "version": version,
            "name": "DownloadedPatient",
            "kind": "resource",
            "type": "Patient",
            "derivation": "constraint",
        },
    }


@pytest.fixture()
def registry() -> FakeRegistry:
    return FakeRegistry()


@pytest.fixture()
def cache_dir(tmp_path) -> Path:
    """A writable copy of the fixture FHIR cache."""
    target = tmp_path / "packages"
    shutil.copytree(FIXTURES / "cache", target)
    return target


@pytest.fixture()
def settings(cache_dir) -> LoaderSettings:
    return LoaderSettings(cache_path=cache_dir)


@pytest.fixture()
def loader(settings, registry) -> PackageLoader:
    return PackageLoader(settings, transport=registry.transport)


@pytest.fixture()
def r4_store() -> DefinitionStore:
    loaded = load_from_path(FIXTURES, "r4-definitions", PackageCache())
    return merge(loaded, DefinitionStore())


@pytest.fixture()
def make_tarball() -> Callable[..., bytes]:
    return build_package_tarball


@pytest.fixture()
def package_files() -> Callable[..., Dict[str, Dict[str, Any]]]:
    return simple_package_files
