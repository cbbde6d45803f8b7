"""Application configuration and defaults."""

import os
from dataclasses import dataclass, field
from typing import Optional

DEFAULT_ENDPOINT = "https://management.azure.com"
DEFAULT_POLL_INTERVAL = 1.0


def _default_endpoint() -> str:
    return os.environ.get("ARMAPPLY_ENDPOINT", "").rstrip("/") or DEFAULT_ENDPOINT


def _default_poll_interval() -> float:
    raw = os.environ.get("ARMAPPLY_POLL_INTERVAL", "")
    if not raw:
        return DEFAULT_POLL_INTERVAL
    try:
        return max(float(raw), 0.0)
    except ValueError:
        return DEFAULT_POLL_INTERVAL


def _default_catalog_path() -> Optional[str]:
    return os.environ.get("ARMAPPLY_CATALOG") or None


@dataclass
class Settings:
    endpoint: str = field(default_factory=_default_endpoint)
    poll_interval: float = field(default_factory=_default_poll_interval)
    catalog_path: Optional[str] = field(default_factory=_default_catalog_path)
    request_timeout: float = 60.0
    max_workers: int = 1

    @property
    def token_scope(self) -> str:
        return self.endpoint + "/.default"
