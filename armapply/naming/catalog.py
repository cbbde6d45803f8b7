"""
Naming catalog: resource type -> list of kinds with abbreviations and naming rules.

The catalog is an explicit value. Build it once with ``Catalog.load()`` and pass
it to whatever needs to generate names.
"""
import logging
import os
import re
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

import yaml

from armapply.errors import NamingError
from armapply.models.naming import ResourceKind

logger = logging.getLogger(__name__)

DEFAULT_CATALOG_PATH = os.path.join(
    os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "data", "names.yaml"
)


def _validate_kind(resource_type: str, kind: ResourceKind) -> None:
    rules = kind.naming_rules
    if rules.min_length < 0 or rules.max_length < 0:
        raise NamingError(f"{resource_type}: negative length in naming rules")
    if rules.max_length and rules.min_length > rules.max_length:
        raise NamingError(
            f"{resource_type}: minLength {rules.min_length} exceeds maxLength {rules.max_length}"
        )
    if rules.regex:
        try:
            re.compile(rules.regex)
        except re.error as exc:
            raise NamingError(f"{resource_type}: invalid regex '{rules.regex}': {exc}") from exc
    if bool(kind.custom_kind.property_path) != bool(kind.custom_kind.value):
        raise NamingError(f"{resource_type}: customKind needs both propertyPath and value")


class Catalog:
    """Read-only lookup table; safe to share between threads."""

    def __init__(self, types: Mapping[str, List[ResourceKind]]):
        self._types: Dict[str, Tuple[ResourceKind, ...]] = {
            t: tuple(kinds) for t, kinds in types.items()
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Catalog":
        if not isinstance(data, dict):
            raise NamingError("naming catalog must be a mapping")
        raw_types = data.get("resourceTypes") or {}
        if not isinstance(raw_types, dict):
            raise NamingError("naming catalog 'resourceTypes' must be a mapping")

        types: Dict[str, List[ResourceKind]] = {}
        for resource_type, entries in raw_types.items():
            if not isinstance(entries, list):
                raise NamingError(f"{resource_type}: expected a list of kinds")
            kinds = []
            for entry in entries:
                if not isinstance(entry, dict):
                    raise NamingError(f"{resource_type}: kind entries must be mappings")
                try:
                    kind = ResourceKind.from_dict(entry)
                except (AttributeError, TypeError, ValueError) as exc:
                    raise NamingError(f"{resource_type}: invalid naming rules: {exc}") from exc
                _validate_kind(resource_type, kind)
                kinds.append(kind)
            types[resource_type] = kinds
        return cls(types)

    @classmethod
    def load(cls, path: Optional[str] = None) -> "Catalog":
        path = path or DEFAULT_CATALOG_PATH
        try:
            with open(path, encoding="utf-8") as fh:
                data = yaml.safe_load(fh)
        except OSError as exc:
            raise NamingError(f"reading naming catalog {path}: {exc}") from exc
        except yaml.YAMLError as exc:
            raise NamingError(f"parsing naming catalog {path}: {exc}") from exc

        catalog = cls.from_dict(data or {})
        logger.debug("loaded naming catalog %s: %d resource types", path, len(catalog))
        return catalog

    def kinds(self, resource_type: str) -> Tuple[ResourceKind, ...]:
        try:
            return self._types[resource_type]
        except KeyError:
            raise NamingError(
                f"{resource_type}: naming translation for resource type not found"
            ) from None

    def __contains__(self, resource_type: object) -> bool:
        return resource_type in self._types

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._types))

    def __len__(self) -> int:
        return len(self._types)
