"""Dotted path lookups into webhook payloads and source documents.

Paths look like ``repository.owner.login`` or ``commits[0].id``. A lookup
that hits a missing key, an out-of-range index or a value of the wrong
shape returns ``None``; only a malformed path raises.
"""

from __future__ import annotations

import re
from functools import lru_cache
from typing import Any, Mapping, Sequence, Tuple, Union

_TOKEN = re.compile(r"([^.\[\]]+)|\[(-?\d+)\]")

PathPart = Union[str, int]


@lru_cache(maxsize=256)
def parse_path(path: str) -> Tuple[PathPart, ...]:
    """Split ``path`` into keys and list indices.

    Raises:
        ValueError: If the path is empty or not made of keys, dots and
            ``[n]`` indices
    """
    if not path or not path.strip():
        raise ValueError("Payload path must not be empty")

    parts = []
    position = 0
    while position < len(path):
        if path[position] == "." and parts and position + 1 < len(path):
            position += 1
            continue
        match = _TOKEN.match(path, position)
        if match is None:
            raise ValueError(f"Malformed payload path {path!r} at offset {position}")
        key, index = match.groups()
        parts.append(int(index) if index is not None else key)
        position = match.end()
    return tuple(parts)


def extract_path(document: Any, path: str, default: Any = None) -> Any:
    """Return the value at ``path`` inside ``document`` or ``default``."""
    current = document
    for part in parse_path(path):
        if isinstance(part, int):
            if not isinstance(current, Sequence) or isinstance(current, (str, bytes)):
                return default
            try:
                current = current[part]
            except IndexError:
                return default
        else:
            if isinstance(current, Mapping):
                if part not in current:
                    return default
                current = current[part]
            elif hasattr(current, part) and not part.startswith("_"):
                current = getattr(current, part)
            else:
                return default
    return current


__all__ = ["extract_path", "parse_path"]
