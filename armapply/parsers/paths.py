import re
from typing import Any, List, Union

_INDEX_RE = re.compile(r"^(.*)\[([^\[\]]*)\]$")


class PathNotFoundError(KeyError):
    """Raised when a property path does not resolve inside a document."""

    def __str__(self) -> str:
        return f"path not found: {self.args[0]}"


def _expand(path: str) -> List[Union[str, int]]:
    """
    Split "a.b[1].c" into ["a", "b", 1, "c"].
    Only a single trailing index per dotted segment is recognised.
    """
    parts: List[Union[str, int]] = []
    for segment in path.split("."):
        m = _INDEX_RE.match(segment)
        if not m:
            parts.append(segment)
            continue
        key, raw_index = m.groups()
        try:
            index = int(raw_index)
        except ValueError:
            raise ValueError(f"invalid array index: {raw_index} in [{raw_index}]") from None
        parts.append(key)
        parts.append(index)
    return parts


def get_node(root: Any, path: str) -> Any:
    """Look up a value in nested mappings/sequences using a dot-separated path."""
    current = root
    for part in _expand(path):
        if isinstance(part, int):
            if isinstance(current, list) and 0 <= part < len(current):
                current = current[part]
                continue
            raise PathNotFoundError(path)
        if isinstance(current, dict) and part in current:
            current = current[part]
            continue
        raise PathNotFoundError(path)
    return current
