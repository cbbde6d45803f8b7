"""
Long-running operation poller for ARM PUT requests that answer 201 Created.

Three ways of tracking the operation are tried in order, mirroring ARM:
  1. Azure-AsyncOperation header -> status document {"status": ...}
  2. Location header             -> 202 while running, 200/201/204 when done
  3. neither                     -> GET the resource until
                                    properties.provisioningState is terminal
"""
import logging
import threading
from typing import Any, Optional

import requests

from armapply.client import ArmClient
from armapply.errors import CancelledError, PollingError, ResponseError

logger = logging.getLogger(__name__)

TERMINAL_SUCCESS = "succeeded"
TERMINAL_FAILURE = {"failed", "canceled", "cancelled"}


def response_json(resp: requests.Response) -> Any:
    """Decoded JSON body, or None when the body is empty or not JSON."""
    if not resp.content:
        return None
    try:
        return resp.json()
    except ValueError:
        return None


def _provisioning_state(body: Any) -> str:
    if isinstance(body, dict):
        props = body.get("properties")
        if isinstance(props, dict) and props.get("provisioningState"):
            return str(props["provisioningState"])
    # no provisioningState means the resource has no LRO semantics
    return "Succeeded"


class Poller:
    def __init__(
        self,
        client: ArmClient,
        response: requests.Response,
        resource_url: str,
        interval: float = 1.0,
        cancel: Optional[threading.Event] = None,
    ):
        self.client = client
        self.resource_url = resource_url
        self.interval = interval
        self.cancel = cancel or threading.Event()

        headers = response.headers
        self.async_url = headers.get("Azure-AsyncOperation")
        self.location_url = headers.get("Location")
        if self.async_url:
            self.strategy = "async-operation"
        elif self.location_url:
            self.strategy = "location"
        else:
            self.strategy = "body"

        self.status = "InProgress"
        self.result: Any = response_json(response)
        if self.strategy == "body":
            self.status = _provisioning_state(self.result)
        logger.debug("poller: strategy=%s url=%s", self.strategy, resource_url)

    def done(self) -> bool:
        s = self.status.lower()
        return s == TERMINAL_SUCCESS or s in TERMINAL_FAILURE

    def _wait(self) -> None:
        # Event.wait returns early on cancellation
        if self.cancel.wait(self.interval):
            raise CancelledError(f"cancelled while polling {self.resource_url}")

    def poll(self) -> None:
        """Perform one status check and update ``status``."""
        if self.strategy == "async-operation":
            resp = self.client.get(self.async_url)
            if resp.status_code not in (200, 201, 202):
                raise ResponseError(resp.status_code, resp.text, "GET", self.async_url)
            body = response_json(resp) or {}
            self.status = str(body.get("status") or "InProgress")
            if self.status.lower() in TERMINAL_FAILURE:
                self.result = body
        elif self.strategy == "location":
            resp = self.client.get(self.location_url)
            if resp.status_code == 202:
                self.status = "InProgress"
            elif resp.status_code in (200, 201, 204):
                self.status = "Succeeded"
                self.result = response_json(resp)
            else:
                raise ResponseError(resp.status_code, resp.text, "GET", self.location_url)
        else:
            resp = self.client.get(self.resource_url)
            if resp.status_code not in (200, 201):
                raise ResponseError(resp.status_code, resp.text, "GET", self.resource_url)
            self.result = response_json(resp)
            self.status = _provisioning_state(self.result)
        logger.debug("poller: %s status=%s", self.resource_url, self.status)

    def _final_result(self) -> Any:
        if self.strategy == "async-operation":
            resp = self.client.get(self.resource_url)
            if resp.status_code not in (200, 201):
                raise ResponseError(resp.status_code, resp.text, "GET", self.resource_url)
            return response_json(resp)
        return self.result

    def poll_until_done(self) -> Any:
        """Poll at a fixed interval until a terminal state; return the final resource body."""
        while not self.done():
            self._wait()
            self.poll()

        if self.status.lower() in TERMINAL_FAILURE:
            raise PollingError(
                f"operation for {self.resource_url} ended with status {self.status}",
                status=self.status,
                body=self.result,
            )
        return self._final_result()
