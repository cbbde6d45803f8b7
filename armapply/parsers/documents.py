"""
Resource document loader: YAML multi-document streams -> ResourceSpec lists.
"""
import logging
import os
from typing import Any, Dict, List, Optional

import yaml

from armapply.errors import DocumentError
from armapply.models.resource import Deployment, ResourceSpec

logger = logging.getLogger(__name__)

GROUP_FILE = "group.yaml"
SUBSCRIPTION_FILE = "subscription.yaml"
_RESOURCE_EXTENSIONS = (".yaml", ".yml")


class _DocumentLoader(yaml.SafeLoader):
    """SafeLoader that keeps timestamps as written, so spec bodies stay JSON-encodable."""


_DocumentLoader.add_constructor("tag:yaml.org,2002:timestamp", yaml.SafeLoader.construct_yaml_str)


def _as_str(doc: Dict[str, Any], key: str) -> str:
    value = doc.get(key)
    if value is None:
        return ""
    return str(value)


def _to_resource(doc: Any, filepath: str, index: int) -> ResourceSpec:
    where = f"{filepath} (document {index})"
    if not isinstance(doc, dict):
        raise DocumentError(f"{where}: expected a mapping, got {type(doc).__name__}")

    resource_type = _as_str(doc, "type")
    if not resource_type:
        raise DocumentError(f"{where}: missing required field 'type'")
    api_version = _as_str(doc, "apiVersion")
    if not api_version:
        raise DocumentError(f"{where}: missing required field 'apiVersion'")

    spec = doc.get("spec")
    if spec is None:
        spec = {}
    if not isinstance(spec, dict):
        raise DocumentError(f"{where}: 'spec' must be a mapping")

    return ResourceSpec(
        type=resource_type,
        api_version=api_version,
        spec=spec,
        name=_as_str(doc, "name"),
        alias=_as_str(doc, "alias"),
        parent=_as_str(doc, "parent"),
        source_file=filepath,
    )


def read_resources_file(filepath: str) -> List[ResourceSpec]:
    """Decode every document in ``filepath``, keeping stream order."""
    try:
        with open(filepath, encoding="utf-8") as fh:
            docs = list(yaml.load_all(fh, Loader=_DocumentLoader))
    except yaml.YAMLError as exc:
        raise DocumentError(f"failed to parse {filepath}: {exc}") from exc

    resources: List[ResourceSpec] = []
    for i, doc in enumerate(docs):
        if doc is None:
            continue
        resources.append(_to_resource(doc, filepath, i))
    logger.debug("read %d resource(s) from %s", len(resources), filepath)
    return resources


def _read_single(filepath: str, what: str) -> Optional[ResourceSpec]:
    if not os.path.isfile(filepath):
        return None
    docs = read_resources_file(filepath)
    if not docs:
        raise DocumentError(f"expected to find {what} definition in {filepath}")
    if len(docs) > 1:
        raise DocumentError(f"expected a single {what} definition in {filepath}")
    return docs[0]


def _resource_files(directory: str) -> List[str]:
    files = []
    for fname in sorted(os.listdir(directory)):
        if fname in (GROUP_FILE, SUBSCRIPTION_FILE):
            continue
        fpath = os.path.join(directory, fname)
        if os.path.isfile(fpath) and fname.lower().endswith(_RESOURCE_EXTENSIONS):
            files.append(fpath)
        else:
            logger.debug("skipping %s", fpath)
    return files


def load_deployment(path: str, subscription_id: str = "", resource_group: str = "") -> Deployment:
    """
    Load a single resource file or a deployment directory.

    A directory may hold either ``group.yaml`` or ``subscription.yaml`` to fix
    the deployment scope, plus any number of resource files.
    """
    if not os.path.exists(path):
        raise DocumentError(f"{path} does not exist")

    if os.path.isfile(path):
        if not resource_group:
            raise DocumentError("resourceGroup is required when path is a file")
        if not subscription_id:
            raise DocumentError("subscriptionId is required")
        return Deployment(
            subscription_id=subscription_id,
            resource_group=resource_group,
            resources=read_resources_file(path),
            source=path,
        )

    sub_def = _read_single(os.path.join(path, SUBSCRIPTION_FILE), "subscription")
    group_def = _read_single(os.path.join(path, GROUP_FILE), "group")
    if sub_def is not None and group_def is not None:
        raise DocumentError(
            f"expected to find either {SUBSCRIPTION_FILE} or {GROUP_FILE} in {path}, not both"
        )

    if sub_def is not None:
        if not subscription_id:
            subscription_id = sub_def.name
        elif sub_def.name and subscription_id != sub_def.name:
            raise DocumentError(
                f"subscription {subscription_id} does not match {SUBSCRIPTION_FILE}: {sub_def.name}"
            )

    if group_def is not None:
        if not group_def.name:
            raise DocumentError(f"group definition in {GROUP_FILE} must set 'name'")
        if not resource_group:
            resource_group = group_def.name
        elif resource_group != group_def.name:
            raise DocumentError(
                f"group {resource_group} does not match {GROUP_FILE}: {group_def.name}"
            )

    if not subscription_id:
        raise DocumentError("subscriptionId is required")

    resources: List[ResourceSpec] = []
    for fpath in _resource_files(path):
        resources.extend(read_resources_file(fpath))

    return Deployment(
        subscription_id=subscription_id,
        resource_group=resource_group,
        group=group_def,
        resources=resources,
        source=path,
    )
