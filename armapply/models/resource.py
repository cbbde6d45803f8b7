from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

RESOURCE_GROUP_TYPE = "Microsoft.Resources/resourceGroups"


def is_child_resource(resource_type: str) -> bool:
    """True when the type has more than one segment after the provider namespace."""
    first = resource_type.find("/")
    if first == -1 or first + 1 == len(resource_type):
        return False
    return "/" in resource_type[first + 1:]


@dataclass
class ResourceSpec:
    type: str                    # e.g. "Microsoft.Storage/storageAccounts"
    api_version: str
    spec: Dict[str, Any] = field(default_factory=dict)
    name: str = ""
    alias: str = ""
    parent: str = ""             # "<type>/<name>", empty until resolved
    source_file: str = ""

    @property
    def qualified_name(self) -> str:
        return f"{self.type}/{self.name}"

    @property
    def is_child(self) -> bool:
        return is_child_resource(self.type)

    @property
    def display_name(self) -> str:
        return self.name or self.alias or self.type


class ApplyState(str, Enum):
    UNAPPLIED    = "Unapplied"
    REQUESTED    = "Requested"
    SYNC_APPLIED = "SyncApplied"
    POLLING      = "Polling"
    APPLIED      = "Applied"
    FAILED       = "Failed"


@dataclass
class ApplyResult:
    resource: ResourceSpec
    url: str = ""
    state: ApplyState = ApplyState.UNAPPLIED
    status_code: Optional[int] = None
    duration: float = 0.0
    body: Any = None

    def to_dict(self) -> dict:
        return {
            "name": self.resource.name,
            "type": self.resource.type,
            "url": self.url,
            "state": self.state.value,
            "status_code": self.status_code,
            "duration": round(self.duration, 3),
        }


@dataclass
class PlannedRequest:
    resource: ResourceSpec
    url: str
    method: str = "PUT"
    warnings: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "method": self.method,
            "url": self.url,
            "name": self.resource.name,
            "alias": self.resource.alias or None,
            "type": self.resource.type,
            "api_version": self.resource.api_version,
            "parent": self.resource.parent or None,
            "source_file": self.resource.source_file,
            "body": self.resource.spec,
            "warnings": self.warnings,
        }


@dataclass
class Deployment:
    """A loaded input: the scope it targets and the resources to apply, in order."""
    subscription_id: str
    resource_group: str = ""
    group: Optional[ResourceSpec] = None
    resources: list = field(default_factory=list)
    source: str = ""
