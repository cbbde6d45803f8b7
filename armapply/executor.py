"""
Apply a batch of resource documents against the ARM control plane.
"""
import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Dict, List, Optional

import requests
from rich.console import Console

from armapply.client import ArmClient
from armapply.config import Settings
from armapply.errors import (
    ApplyError,
    ArmApplyError,
    CancelledError,
    DocumentError,
    ParentResolutionError,
    ResponseError,
)
from armapply.models.resource import (
    RESOURCE_GROUP_TYPE,
    ApplyResult,
    ApplyState,
    Deployment,
    PlannedRequest,
    ResourceSpec,
)
from armapply.naming import generator
from armapply.naming.catalog import Catalog
from armapply.poller import Poller, response_json
from armapply.resolver import dependency_order, index_by_qualified_name, resolve_parents

logger = logging.getLogger(__name__)

_RULE = "-" * 80


def _format_duration(seconds: float) -> str:
    return f"{round(seconds, 1):.1f}s"


# ------------------------------------------------------------------ URLs

def scope_url(endpoint: str, subscription_id: str, group: str = "") -> str:
    url = f"{endpoint}/subscriptions/{subscription_id}"
    if group:
        url = f"{url}/resourceGroups/{group}"
    return url


def provider_path(resource: ResourceSpec, known: Optional[Dict[str, ResourceSpec]] = None) -> str:
    """
    Path below the scope URL, e.g. ``providers/Microsoft.Foo/bars/x/bazs/y``.

    A parent found in ``known`` contributes its own full path, so nested
    children keep every ancestor name.
    """
    if resource.type == RESOURCE_GROUP_TYPE:
        return f"resourcegroups/{resource.name}"
    if not resource.parent:
        return f"providers/{resource.type}/{resource.name}"

    last_slash = resource.type.rfind("/")
    child_segment = resource.type[last_slash:]
    parent = (known or {}).get(resource.parent)
    if parent is not None and parent is not resource:
        return f"{provider_path(parent, known)}{child_segment}/{resource.name}"

    if len(resource.parent) <= last_slash or resource.parent[:last_slash] != resource.type[:last_slash]:
        raise ParentResolutionError(
            f"parent resource {resource.parent} is not a valid parent for resource {resource.name}"
        )
    base = resource.type[:last_slash]
    parent_segment = resource.parent[last_slash:]
    return f"providers/{base}{parent_segment}{child_segment}/{resource.name}"


def resource_url(
    endpoint: str,
    subscription_id: str,
    group: str,
    resource: ResourceSpec,
    known: Optional[Dict[str, ResourceSpec]] = None,
) -> str:
    base = scope_url(endpoint, subscription_id, group)
    return f"{base}/{provider_path(resource, known)}?api-version={resource.api_version}"


# ------------------------------------------------------------------ preparation

def _check_name_alias(resource: ResourceSpec) -> None:
    if not resource.name and not resource.alias:
        raise DocumentError(
            f"resource {resource.type} in {resource.source_file or '<input>'} "
            "must specify either name or alias"
        )
    if resource.name and resource.alias:
        raise DocumentError(f"resource {resource.name} cannot specify both name and alias")


def assign_name(
    resource: ResourceSpec, subscription_id: str, group: str, catalog: Catalog
) -> List[str]:
    """Fill ``resource.name`` from its alias; return naming-rule warnings."""
    _check_name_alias(resource)
    if resource.name:
        return []

    token = generator.unique_string(subscription_id, group, resource.alias)
    resource.name = generator.name(token, resource, catalog)

    if resource.type not in catalog:
        return []
    kind = generator.match_kind(catalog, resource)
    problems = generator.validate_name(resource.name, kind)
    for p in problems:
        logger.warning("%s: %s", resource.name, p)
    return problems


def prepare(deployment: Deployment, catalog: Catalog) -> Dict[str, List[str]]:
    """
    Name every resource, then resolve parents, before anything is sent.
    Returns naming warnings keyed by resource name.
    """
    warnings: Dict[str, List[str]] = {}
    group = deployment.resource_group
    for resource in deployment.resources:
        try:
            problems = assign_name(resource, deployment.subscription_id, group, catalog)
        except ArmApplyError as exc:
            raise ApplyError(resource.display_name, exc) from exc
        if problems:
            warnings[resource.name] = problems
    resolve_parents(deployment.resources)
    return warnings


def plan(deployment: Deployment, catalog: Catalog, settings: Optional[Settings] = None) -> List[PlannedRequest]:
    """The requests ``apply`` would send, in order, without any network calls."""
    settings = settings or Settings()
    warnings = prepare(deployment, catalog)
    planned: List[PlannedRequest] = []

    if deployment.group is not None:
        _check_name_alias(deployment.group)
        url = resource_url(settings.endpoint, deployment.subscription_id, "", deployment.group)
        planned.append(PlannedRequest(resource=deployment.group, url=url))

    known = index_by_qualified_name(deployment.resources)
    for resource in dependency_order(deployment.resources):
        url = resource_url(
            settings.endpoint, deployment.subscription_id, deployment.resource_group, resource, known
        )
        planned.append(PlannedRequest(resource=resource, url=url, warnings=warnings.get(resource.name, [])))
    return planned


# ------------------------------------------------------------------ execution

class Executor:
    """
    Drives each resource Unapplied -> Requested -> SyncApplied|Polling -> Applied|Failed.
    """

    def __init__(
        self,
        client: ArmClient,
        catalog: Catalog,
        settings: Optional[Settings] = None,
        console: Optional[Console] = None,
        cancel: Optional[threading.Event] = None,
    ):
        self.client = client
        self.catalog = catalog
        self.settings = settings or client.settings
        self.console = console or Console(highlight=False)
        self.cancel = cancel or threading.Event()

    def apply_resource(
        self,
        resource: ResourceSpec,
        subscription_id: str,
        group: str,
        known: Optional[Dict[str, ResourceSpec]] = None,
    ) -> ApplyResult:
        try:
            url = resource_url(self.settings.endpoint, subscription_id, group, resource, known)
        except ParentResolutionError as exc:
            raise ApplyError(resource.name, exc) from exc
        result = ApplyResult(resource=resource, url=url)

        if self.cancel.is_set():
            result.state = ApplyState.FAILED
            exc = CancelledError(f"cancelled before applying {resource.name}")
            raise ApplyError(resource.name, exc, result=result) from exc

        self.console.print(f"  applying {resource.name}...")
        start = time.monotonic()
        result.state = ApplyState.REQUESTED
        try:
            resp = self.client.put(url, resource.spec)
            result.status_code = resp.status_code

            if resp.status_code == 200:
                result.state = ApplyState.SYNC_APPLIED
                result.body = response_json(resp)
            elif resp.status_code == 201:
                result.state = ApplyState.POLLING
                poller = Poller(
                    self.client, resp, url,
                    interval=self.settings.poll_interval, cancel=self.cancel,
                )
                result.body = poller.poll_until_done()
            else:
                raise ResponseError(resp.status_code, resp.text, "PUT", url)
        except (ArmApplyError, requests.RequestException, TypeError, ValueError) as exc:
            result.state = ApplyState.FAILED
            result.duration = time.monotonic() - start
            raise ApplyError(resource.name, exc, result=result) from exc

        result.state = ApplyState.APPLIED
        result.duration = time.monotonic() - start
        self.console.print(f"  applied {resource.name} in {_format_duration(result.duration)}")
        logger.debug(_RULE)
        logger.debug("Result of applying resource: %s", url)
        logger.debug(_RULE)
        logger.debug("%s", result.body)
        logger.debug(_RULE)
        return result

    def _apply_sequential(self, resources, subscription_id, group, known) -> List[ApplyResult]:
        return [self.apply_resource(r, subscription_id, group, known) for r in resources]

    def _apply_concurrent(self, resources, subscription_id, group, known) -> List[ApplyResult]:
        """Walk the parent DAG with a bounded pool; a child starts once its parent is applied."""
        ordered = dependency_order(resources)
        waiting_on: Dict[int, Optional[ResourceSpec]] = {}
        for r in ordered:
            parent = known.get(r.parent) if r.parent else None
            waiting_on[id(r)] = parent if parent is not r else None

        pending = list(ordered)
        applied: set = set()
        results: Dict[int, ApplyResult] = {}
        error: Optional[BaseException] = None

        with ThreadPoolExecutor(max_workers=self.settings.max_workers) as pool:
            running: Dict[Future, ResourceSpec] = {}
            while pending or running:
                if error is None:
                    ready = [
                        r for r in pending
                        if waiting_on[id(r)] is None or id(waiting_on[id(r)]) in applied
                    ]
                    for r in ready:
                        pending.remove(r)
                        fut = pool.submit(self.apply_resource, r, subscription_id, group, known)
                        running[fut] = r
                if not running:
                    break

                done, _ = wait(list(running), return_when=FIRST_COMPLETED)
                for fut in done:
                    r = running.pop(fut)
                    try:
                        results[id(r)] = fut.result()
                        applied.add(id(r))
                    except ApplyError as exc:
                        if error is None:
                            error = exc
                            # stop new work; requests already sent keep going
                            pending.clear()

        if error is not None:
            raise error
        return [results[id(r)] for r in ordered]

    def apply(self, deployment: Deployment) -> List[ApplyResult]:
        """
        Apply the group (if any) and then every resource. The first failure
        stops the run; resources applied before it stay applied.
        """
        prepare(deployment, self.catalog)

        results: List[ApplyResult] = []
        if deployment.group is not None:
            group = deployment.group
            try:
                _check_name_alias(group)
            except DocumentError as exc:
                raise ApplyError(group.display_name, exc) from exc
            results.append(self.apply_resource(group, deployment.subscription_id, "", None))

        known = index_by_qualified_name(deployment.resources)
        exec_start = time.monotonic()
        if self.settings.max_workers > 1:
            results.extend(self._apply_concurrent(
                deployment.resources, deployment.subscription_id, deployment.resource_group, known
            ))
        else:
            ordered = dependency_order(deployment.resources)
            results.extend(self._apply_sequential(
                ordered, deployment.subscription_id, deployment.resource_group, known
            ))
        self.console.print(f"applied all in {_format_duration(time.monotonic() - exec_start)}")
        return results


def apply(
    deployment: Deployment,
    credential,
    catalog: Optional[Catalog] = None,
    settings: Optional[Settings] = None,
    console: Optional[Console] = None,
    cancel: Optional[threading.Event] = None,
    session: Optional[requests.Session] = None,
) -> List[ApplyResult]:
    settings = settings or Settings()
    catalog = catalog or Catalog.load(settings.catalog_path)
    client = ArmClient(credential, settings=settings, session=session)
    return Executor(client, catalog, settings=settings, console=console, cancel=cancel).apply(deployment)
