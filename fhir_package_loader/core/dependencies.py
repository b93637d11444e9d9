from pathlib import Path
from typing import Optional
import os

from fhir_package_loader.domain.models import LoaderSettings
from fhir_package_loader.services.loader import PackageLoader

REGISTRY_ENV_VAR = "FPL_REGISTRY"

_settings: Optional[LoaderSettings] = None
_package_loader: Optional[PackageLoader] = None

def get_custom_registry() -> Optional[str]:
    registry = os.environ.get(REGISTRY_ENV_VAR)
    return registry or None

def get_settings() -> LoaderSettings:
    global _settings
    if _settings is None:
        _settings = LoaderSettings(custom_registry=get_custom_registry())
    return _settings

def get_package_loader() -> PackageLoader:
    global _package_loader
    if _package_loader is None:
        _package_loader = PackageLoader(get_settings())
    return _package_loader

def get_default_cache_path() -> Path:
    return get_settings().cache_path

def reset() -> None:
    """Forget the default settings and loader, e.g. after FPL_REGISTRY changed."""
    global _settings, _package_loader
    _settings = None
    _package_loader = None
