"""
Thin HTTP client for the Azure Resource Manager API.
"""
import json
import logging
import time
from typing import Any, Optional

import requests

from armapply import __version__
from armapply.config import Settings
from armapply.errors import CredentialError

logger = logging.getLogger(__name__)

_TOKEN_REFRESH_MARGIN = 300


class ArmClient:
    """
    Sends authenticated requests with a shared ``requests.Session``.

    The bearer token is cached until shortly before it expires.
    """

    def __init__(self, credential, settings: Optional[Settings] = None,
                 session: Optional[requests.Session] = None):
        self.credential = credential
        self.settings = settings or Settings()
        self.session = session or requests.Session()
        self.session.headers.setdefault("User-Agent", f"armapply/{__version__}")
        self._token = None

    @property
    def endpoint(self) -> str:
        return self.settings.endpoint

    def _bearer(self) -> str:
        if self._token is None or self._token.expires_on - _TOKEN_REFRESH_MARGIN <= time.time():
            try:
                self._token = self.credential.get_token(self.settings.token_scope)
            except CredentialError:
                raise
            except Exception as exc:
                raise CredentialError(f"acquiring token: {exc}") from exc
        return self._token.token

    def request(self, method: str, url: str, body: Any = None) -> requests.Response:
        headers = {"Authorization": f"Bearer {self._bearer()}", "Accept": "application/json"}
        data = None
        if body is not None:
            data = json.dumps(body, default=str)
            headers["Content-Type"] = "application/json"
            logger.debug("%s %s\n%s", method, url, data)
        else:
            logger.debug("%s %s", method, url)

        resp = self.session.request(
            method, url, data=data, headers=headers, timeout=self.settings.request_timeout
        )
        logger.debug("%s %s -> %s", method, url, resp.status_code)
        return resp

    def put(self, url: str, body: Any) -> requests.Response:
        return self.request("PUT", url, body)

    def get(self, url: str) -> requests.Response:
        return self.request("GET", url)
