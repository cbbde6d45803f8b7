"""
Deterministic resource names: ``<alias or abbreviation><sep><13-char token>``.
"""
import re
from typing import List

from armapply.errors import NamingError
from armapply.models.naming import ResourceKind
from armapply.models.resource import ResourceSpec
from armapply.naming.catalog import Catalog
from armapply.naming.hasher import base32_token, murmurhash64
from armapply.parsers.paths import PathNotFoundError, get_node


def unique_string(*parts: str) -> str:
    """Same result as ARM's uniqueString(): 13 lowercase base32 chars."""
    if not parts:
        raise NamingError("unique_string requires at least one input")
    joined = "-".join(parts)
    return base32_token(murmurhash64(joined.encode("utf-8"), 0))


def _kind_value(resource: ResourceSpec, path: str):
    try:
        value = get_node(resource.spec, path)
    except PathNotFoundError:
        return None
    except ValueError as exc:
        raise NamingError(f"{resource.type}: invalid property path '{path}': {exc}") from exc
    if isinstance(value, (dict, list)):
        raise NamingError(f"{resource.type}: spec.{path} is not a scalar value")
    return None if value is None else str(value)


def match_kind(catalog: Catalog, resource: ResourceSpec) -> ResourceKind:
    kinds = catalog.kinds(resource.type)

    if len(kinds) == 1 and kinds[0].is_default:
        return kinds[0]

    fallback = None
    for kind in kinds:
        if kind.is_default:
            if fallback is None:
                fallback = kind
            continue

        if kind.custom_kind.property_path:
            # case-insensitive, partial match
            value = _kind_value(resource, kind.custom_kind.property_path)
            if value is not None and kind.custom_kind.value.lower() in value.lower():
                return kind
        elif _kind_value(resource, "kind") == kind.kind:
            return kind

    if fallback is None:
        raise NamingError(f"{resource.type}: no naming kind matches this resource")
    return fallback


def separator_for(kind: ResourceKind) -> str:
    if "-" in kind.naming_rules.restricted_chars.global_:
        return ""
    return "-"


def name(token: str, resource: ResourceSpec, catalog: Catalog) -> str:
    """Return the resource's explicit name, or derive one from its alias/abbreviation."""
    if resource.name:
        return resource.name

    kind = match_kind(catalog, resource)
    prefix = resource.alias or kind.abbreviation
    return prefix + separator_for(kind) + token


def validate_name(value: str, kind: ResourceKind) -> List[str]:
    """List every naming rule ``value`` breaks; empty when the name is acceptable."""
    rules = kind.naming_rules
    chars = rules.restricted_chars
    problems: List[str] = []

    if rules.min_length and len(value) < rules.min_length:
        problems.append(f"'{value}' is shorter than {rules.min_length} characters")
    if rules.max_length and len(value) > rules.max_length:
        problems.append(f"'{value}' is longer than {rules.max_length} characters")
    if rules.regex and not re.search(rules.regex, value):
        problems.append(rules.messages.on_failure or f"'{value}' does not match {rules.regex}")

    bad = sorted({c for c in value if c in chars.global_})
    if bad:
        problems.append(f"'{value}' contains restricted characters: {''.join(bad)}")
    if value and value[0] in chars.prefix:
        problems.append(f"'{value}' cannot start with '{value[0]}'")
    if value and value[-1] in chars.suffix:
        problems.append(f"'{value}' cannot end with '{value[-1]}'")
    for c in chars.consecutive:
        if c * 2 in value:
            problems.append(f"'{value}' cannot contain consecutive '{c}'")

    return problems
