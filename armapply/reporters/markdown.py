"""
Markdown + Mermaid plan report generator.
"""
import json
import re
from collections import defaultdict
from datetime import datetime, timezone
from typing import Dict, List

from jinja2 import Environment

from armapply import __version__
from armapply.models.resource import PlannedRequest

_SCOPE_NODE = "scope"


def _sanitize_node_id(name: str) -> str:
    return re.sub(r"[^a-zA-Z0-9_]", "_", name)


def _namespace(resource_type: str) -> str:
    return resource_type.split("/", 1)[0]


def _build_mermaid(planned: List[PlannedRequest], scope_label: str) -> str:
    lines = ["flowchart TD", f'    {_SCOPE_NODE}[("{scope_label}")]']

    by_namespace: Dict[str, List[PlannedRequest]] = defaultdict(list)
    for p in planned:
        by_namespace[_namespace(p.resource.type)].append(p)

    for ns in sorted(by_namespace):
        lines.append(f"    subgraph {_sanitize_node_id(ns)}[{ns}]")
        for p in by_namespace[ns]:
            node_id = _sanitize_node_id(p.resource.qualified_name)
            label = f"{p.resource.name}<br/>{p.resource.type.split('/', 1)[-1]}"
            lines.append(f'        {node_id}["{label}"]')
        lines.append("    end")

    names = {p.resource.qualified_name for p in planned}
    for p in planned:
        node_id = _sanitize_node_id(p.resource.qualified_name)
        if p.resource.parent and p.resource.parent in names:
            lines.append(f"    {_sanitize_node_id(p.resource.parent)} --> {node_id}")
        else:
            lines.append(f"    {_SCOPE_NODE} --> {node_id}")

    for p in planned:
        if p.warnings:
            lines.append(f"    style {_sanitize_node_id(p.resource.qualified_name)} fill:#ffcc00,color:#000")

    return "\n".join(lines)


_TEMPLATE = """\
# Apply Plan

**Generated:** {{ generated }}
**Source:** {{ source }}
**Tool:** armapply v{{ version }}

---

## Summary

**{{ planned|length }} request(s)** will be sent, one at a time, in the order below.
{% if warning_count %}
{{ warning_count }} generated name(s) break a naming rule; see **Naming warnings**.
{% endif %}

| # | Name | Type | API version | Parent | Source |
|---|------|------|-------------|--------|--------|
{% for p in planned %}| {{ loop.index }} | `{{ p.resource.name }}` | `{{ p.resource.type }}` | {{ p.resource.api_version }} | {{ p.resource.parent or "-" }} | {{ p.resource.source_file or "-" }} |
{% endfor %}

---

## Requests
{% for p in planned %}
### {{ loop.index }}. {{ p.resource.name }}

`{{ p.method }} {{ p.url }}`
{% if p.resource.alias %}
**Alias:** `{{ p.resource.alias }}`
{% endif %}
```json
{{ bodies[loop.index0] }}
```
{% endfor %}
{% if warning_count %}
---

## Naming warnings
{% for p in planned if p.warnings %}
- `{{ p.resource.name }}`:{% for w in p.warnings %}
  - {{ w }}{% endfor %}
{% endfor %}
{% endif %}
---

## Resource Graph

```mermaid
{{ mermaid }}
```
"""


def build_report(planned: List[PlannedRequest], source_path: str, scope_label: str = "scope") -> str:
    env = Environment(autoescape=False)
    template = env.from_string(_TEMPLATE)

    return template.render(
        generated=datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC"),
        source=source_path,
        version=__version__,
        planned=planned,
        bodies=[json.dumps(p.resource.spec, indent=2, default=str) for p in planned],
        warning_count=sum(1 for p in planned if p.warnings),
        mermaid=_build_mermaid(planned, scope_label),
    )
