"""Glob matching with ``**`` support for relative, ``/``-separated paths."""

from __future__ import annotations

import fnmatch
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

# Number of parts when splitting a pattern on '**'
_SINGLE_STAR_PARTS = 2  # e.g. **/*.xml  -> ['', '/*.xml']
_DOUBLE_STAR_PARTS = 3  # e.g. **/foo/** -> ['', '/foo/', '']


def _match_one_doublestar(path: str, parts: list[str]) -> bool:
    """Match a path against a pattern split into exactly two parts on ``**``.

    Handles patterns like ``**/*.xml``, ``coverage/**`` and
    ``coverage/**/lcov.info``.
    """
    prefix = parts[0].rstrip("/")
    suffix = parts[1].lstrip("/")

    # **/*.xml -> prefix='', suffix='*.xml'
    if not prefix and suffix:
        segments = path.split("/")
        return any(fnmatch.fnmatch("/".join(segments[i:]), suffix) for i in range(len(segments)))

    # coverage/** -> prefix='coverage', suffix=''
    if prefix and not suffix:
        return path.startswith(prefix + "/") or path == prefix

    # coverage/**/lcov.info -> prefix='coverage', suffix='lcov.info'
    if prefix and suffix:
        if not path.startswith(prefix + "/"):
            return False
        rest_segments = path[len(prefix) + 1 :].split("/")
        return any(
            fnmatch.fnmatch("/".join(rest_segments[i:]), suffix) for i in range(len(rest_segments))
        )

    return False


def match_glob(path: str, pattern: str) -> bool:
    """Match a single relative path against a glob pattern with ``**`` support.

    - ``**/*.xml`` matches ``cobertura.xml`` and ``ut/cobertura.xml``
    - ``**/node_modules/**`` matches ``node_modules/a.js`` and
      ``pkg/node_modules/b/c.js``
    """
    if "**" not in pattern:
        return fnmatch.fnmatch(path, pattern)

    parts = pattern.split("**")

    if len(parts) == _SINGLE_STAR_PARTS:
        return _match_one_doublestar(path, parts)

    # Two ** like **/foo/** -> check middle component
    if len(parts) == _DOUBLE_STAR_PARTS:
        middle = parts[1].strip("/")
        if middle:
            return any(fnmatch.fnmatch(seg, middle) for seg in path.split("/"))

    return fnmatch.fnmatch(path, pattern)


def matches_any(path: str, patterns: Iterable[str]) -> bool:
    """Return True if *path* matches at least one of *patterns*."""
    return any(match_glob(path, pattern) for pattern in patterns)
