"""
JSON plan report generator.
"""
import json
from datetime import datetime, timezone
from typing import List

from armapply import __version__
from armapply.models.resource import PlannedRequest


def build_report(planned: List[PlannedRequest], source_path: str, scope_label: str = "") -> str:
    report = {
        "meta": {
            "generated": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
            "source": source_path,
            "scope": scope_label,
            "tool": "armapply",
            "version": __version__,
        },
        "summary": {
            "requests": len(planned),
            "naming_warnings": sum(1 for p in planned if p.warnings),
        },
        "requests": [p.to_dict() for p in planned],
    }
    return json.dumps(report, indent=2, default=str)
