"""
Parent resolution and dependency ordering for a batch of resources.
"""
import logging
from typing import Dict, List

from armapply.errors import ParentResolutionError
from armapply.models.resource import ResourceSpec, is_child_resource

logger = logging.getLogger(__name__)


def _is_direct_parent_type(child_type: str, parent_type: str) -> bool:
    prefix = parent_type + "/"
    if not child_type.startswith(prefix):
        return False
    rest = child_type[len(prefix):]
    return bool(rest) and "/" not in rest


def resolve_parents(resources: List[ResourceSpec]) -> None:
    """
    Fill ``parent`` for every child resource that does not declare one.

    The parent is the sibling whose type is exactly one segment shorter.
    Siblings are scanned in document order; zero or several candidates fail.
    """
    for i, resource in enumerate(resources):
        if not is_child_resource(resource.type) or resource.parent:
            continue

        logger.debug("dynamic-resolve: resolving parent for %s", resource.display_name)
        candidates = [
            p for j, p in enumerate(resources)
            if j != i and _is_direct_parent_type(resource.type, p.type)
        ]
        if not candidates:
            raise ParentResolutionError(
                f"failed to resolve parent for {resource.display_name} ({resource.type})"
            )
        if len(candidates) > 1:
            names = ", ".join(p.qualified_name for p in candidates)
            raise ParentResolutionError(
                f"ambiguous parent for {resource.display_name} ({resource.type}): {names}"
            )

        parent = candidates[0]
        if not parent.name:
            raise ParentResolutionError(
                f"parent {parent.type} of {resource.display_name} has no name"
            )
        resource.parent = parent.qualified_name
        logger.debug("dynamic-resolve: found parent: %s", resource.parent)


def index_by_qualified_name(resources: List[ResourceSpec]) -> Dict[str, ResourceSpec]:
    index: Dict[str, ResourceSpec] = {}
    for r in resources:
        if r.name:
            index.setdefault(r.qualified_name, r)
    return index


def dependency_order(resources: List[ResourceSpec]) -> List[ResourceSpec]:
    """
    Topologically sort by in-batch parent edges, keeping document order
    among resources that do not depend on each other.
    """
    index = index_by_qualified_name(resources)
    position = {id(r): i for i, r in enumerate(resources)}
    ordered: List[ResourceSpec] = []
    state: Dict[int, str] = {}

    def visit(r: ResourceSpec, chain: List[str]) -> None:
        key = id(r)
        if state.get(key) == "done":
            return
        if state.get(key) == "visiting":
            raise ParentResolutionError("parent cycle: " + " -> ".join(chain + [r.qualified_name]))
        state[key] = "visiting"
        parent = index.get(r.parent) if r.parent else None
        if parent is r:
            raise ParentResolutionError(f"{r.qualified_name} is its own parent")
        if parent is not None:
            visit(parent, chain + [r.qualified_name])
        state[key] = "done"
        ordered.append(r)

    for r in sorted(resources, key=lambda x: position[id(x)]):
        visit(r, [])
    return ordered
