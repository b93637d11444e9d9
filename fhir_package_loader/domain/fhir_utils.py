import re
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Iterator, Mapping, Optional, Tuple

from fhir_package_loader.domain.models import TypeCategory

VERSION_SEPARATOR = "|"

PATCH_WILDCARD_PATTERN = re.compile(r"^(\d+)\.(\d+)\.x$")
MINOR_WILDCARD_PATTERN = re.compile(r"^\d+\.x$")
CURRENT_PATTERN = re.compile(r"^current(\$.+)?$")

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


def classify_definition(definition: Any) -> Optional[TypeCategory]:
    """
    Return the category a raw JSON record is indexed under.

    Records that are not JSON objects, or have no resourceType, are not
    definitions (package.json, .index.json, ...) and yield None.
    """
    if not isinstance(definition, Mapping):
        return None
    resource_type = definition.get("resourceType")
    if not isinstance(resource_type, str) or not resource_type:
        return None

    if resource_type == "StructureDefinition":
        kind = definition.get("kind")
        derivation = definition.get("derivation")
        if derivation == "constraint" and definition.get("type") == "Extension":
            return TypeCategory.EXTENSION
        if kind in ("primitive-type", "complex-type"):
            return TypeCategory.TYPE
        if kind == "logical":
            if derivation == "constraint":
                return TypeCategory.PROFILE
            return TypeCategory.LOGICAL
        if kind == "resource":
            if derivation == "constraint":
                return TypeCategory.PROFILE
            return TypeCategory.RESOURCE
        return TypeCategory.INSTANCE
    if resource_type == "ValueSet":
        return TypeCategory.VALUE_SET
    if resource_type == "CodeSystem":
        return TypeCategory.CODE_SYSTEM
    if resource_type == "ImplementationGuide":
        return TypeCategory.IMPLEMENTATION_GUIDE
    return TypeCategory.INSTANCE


def split_versioned_key(item: str) -> Iterator[Tuple[str, Optional[str]]]:
    """
    Yield the (key, version) readings of a lookup string.

    The last separator is the preferred split point, then each earlier one,
    so "a|b|c" yields ("a|b", "c") and then ("a", "b|c"). A string without a
    separator yields a single unversioned reading.
    """
    end = len(item)
    found = False
    while True:
        idx = item.rfind(VERSION_SEPARATOR, 0, end)
        if idx == -1:
            break
        found = True
        yield item[:idx], item[idx + 1:]
        end = idx
    if not found:
        yield item, None


def is_current_version(version: str) -> bool:
    return CURRENT_PATTERN.match(version) is not None


def is_r5_core_current(package_name: str, version: str) -> bool:
    """The R5 core is always re-downloaded for 'current'."""
    return package_name.startswith("hl7.fhir.r5.") and version == "current"


def current_branch(version: str) -> Optional[str]:
    """Branch named after '$' in 'current$branch', or None for plain 'current'."""
    if "$" not in version:
        return None
    return version[version.index("$") + 1:]


def parse_build_date(value: Optional[str]) -> datetime:
    """
    Parse a build server date such as 'Sat, 18 May, 2019 01:48:14 +0000'.

    Missing or unparseable dates sort before every real date.
    """
    if not value:
        return _OLDEST
    try:
        parsed = parsedate_to_datetime(value.replace(",", " "))
    except (TypeError, ValueError, IndexError):
        return _OLDEST
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_date(date: Optional[str]) -> str:
    """Turn a YYYYMMDDHHmmss manifest date into YYYY-MM-DDTHH:mm:ss."""
    if not date:
        return ""
    return re.sub(
        r"(\d{4})(\d{2})(\d{2})(\d{2})(\d{2})(\d{2})",
        r"\1-\2-\3T\4:\5:\6",
        date,
    )
