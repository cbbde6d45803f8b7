"""
Exception hierarchy for armapply.
"""
import json
from typing import Any, Optional


class ArmApplyError(Exception):
    """Base class for all armapply failures."""


class DocumentError(ArmApplyError):
    """Malformed input YAML or a document missing a required field."""


class ParentResolutionError(ArmApplyError):
    """A child resource has no (or more than one) resolvable parent."""


class NamingError(ArmApplyError):
    """No catalog entry for a resource type, or an invalid rule definition."""


class PollingError(ArmApplyError):
    """A long-running operation ended in a failed terminal state."""

    def __init__(self, message: str, status: str = "", body: Any = None):
        super().__init__(message)
        self.status = status
        self.body = body


class CancelledError(PollingError):
    """The caller cancelled before a request was sent or while polling."""

    def __init__(self, message: str = "operation cancelled"):
        super().__init__(message, status="Canceled")


class CredentialError(ArmApplyError):
    """No bearer token could be acquired."""


class ResponseError(ArmApplyError):
    """The control-plane API answered with an unexpected status code."""

    def __init__(self, status_code: int, body: str, method: str = "", url: str = ""):
        self.status_code = status_code
        self.body = body
        self.method = method
        self.url = url
        self.error_code, self.error_message = _parse_error_envelope(body)
        super().__init__(self._format())

    def _format(self) -> str:
        lines = []
        if self.method or self.url:
            lines.append(f"{self.method} {self.url}".strip())
        lines.append(f"RESPONSE {self.status_code}")
        if self.error_code:
            lines.append(f"ERROR CODE: {self.error_code}")
        if self.error_message:
            lines.append(f"MESSAGE: {self.error_message}")
        elif self.body:
            lines.append(self.body)
        return "\n".join(lines)


class ApplyError(ArmApplyError):
    """Wraps any failure with the identity of the resource being processed."""

    def __init__(self, resource_name: str, cause: BaseException, result=None):
        self.resource_name = resource_name
        self.cause = cause
        self.result = result
        super().__init__(f"failed applying resource {resource_name}: {cause}")


def _parse_error_envelope(body: str):
    """Pull code/message out of an ARM error body: {"error": {"code", "message"}}."""
    if not body:
        return None, None
    try:
        data = json.loads(body)
    except ValueError:
        return None, None
    if not isinstance(data, dict):
        return None, None
    err: Optional[dict] = data.get("error") if isinstance(data.get("error"), dict) else data
    code = err.get("code") if isinstance(err.get("code"), str) else None
    message = err.get("message") if isinstance(err.get("message"), str) else None
    return code, message
