"""
Token credentials. Anything with ``get_token(*scopes)`` returning an object with
``token`` and ``expires_on`` works, including azure-identity credentials.
"""
import json
import logging
import shutil
import subprocess
import time
from datetime import datetime
from typing import NamedTuple

from armapply.errors import CredentialError

logger = logging.getLogger(__name__)


class AccessToken(NamedTuple):
    token: str
    expires_on: int


class StaticTokenCredential:
    """A pre-acquired bearer token, e.g. from ARMAPPLY_ACCESS_TOKEN."""

    def __init__(self, token: str, expires_on: int = 0):
        self._token = AccessToken(token, expires_on or int(time.time()) + 3600)

    def get_token(self, *scopes: str) -> AccessToken:
        return self._token


def _resource_from_scope(scope: str) -> str:
    return scope[: -len("/.default")] if scope.endswith("/.default") else scope


def _parse_expiry(data: dict) -> int:
    if data.get("expires_on"):
        return int(data["expires_on"])
    raw = data.get("expiresOn")
    if raw:
        try:
            return int(datetime.strptime(raw, "%Y-%m-%d %H:%M:%S.%f").timestamp())
        except ValueError:
            pass
    return int(time.time()) + 300


class AzureCliCredential:
    """Acquire tokens from a logged-in ``az`` CLI."""

    def __init__(self, timeout: int = 60):
        self.timeout = timeout

    def get_token(self, *scopes: str) -> AccessToken:
        if len(scopes) != 1:
            raise CredentialError("this credential requires exactly one scope per token request")
        az = shutil.which("az")
        if not az:
            raise CredentialError("Azure CLI not found on PATH; run 'az login' or set ARMAPPLY_ACCESS_TOKEN")

        cmd = [az, "account", "get-access-token", "--output", "json",
               "--resource", _resource_from_scope(scopes[0])]
        logger.debug("Running: az %s", " ".join(cmd[1:4]))
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
        except subprocess.TimeoutExpired as exc:
            raise CredentialError("timed out waiting for Azure CLI") from exc
        if result.returncode != 0:
            raise CredentialError(f"Azure CLI failed: {result.stderr.strip()[:200]}")

        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError as exc:
            raise CredentialError("Azure CLI returned invalid JSON") from exc
        return AccessToken(data["accessToken"], _parse_expiry(data))
