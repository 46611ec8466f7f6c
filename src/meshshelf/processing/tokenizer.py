"""Split model filenames into suggested tags."""

from __future__ import annotations

import re

NOISE_WORDS = frozenset(
    {
        "stl",
        "obj",
        "file",
        "model",
        "final",
        "copy",
        "new",
        "old",
        "fixed",
        "repaired",
        "export",
        "exported",
        "print",
        "ready",
    }
)

_SEPARATORS = re.compile(r"[_\-\s.()]+")
_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z])(?=[A-Z])")
_VERSION = re.compile(r"^v?\d+$", re.IGNORECASE)
_EXTENSION = re.compile(r"\.stl$", re.IGNORECASE)


def tokenize_filename(filename: str) -> list[str]:
    """
    Split a filename into lower-case, de-duplicated tag suggestions.

    Splits on separators and camelCase boundaries, then drops short
    tokens, version numbers and noise words.

    Examples:
        >>> tokenize_filename("ForestTree_v2_final.stl")
        ['forest', 'tree']
    """
    base = _EXTENSION.sub("", filename)
    raw = [
        token.lower().strip()
        for part in _SEPARATORS.split(base)
        for token in _CAMEL_BOUNDARY.split(part)
    ]

    seen: set[str] = set()
    tokens: list[str] = []
    for token in raw:
        if len(token) < 2 or _VERSION.match(token) or token in NOISE_WORDS or token in seen:
            continue
        seen.add(token)
        tokens.append(token)
    return tokens


def display_name(filename: str) -> str:
    """Human-friendly model name: extension dropped, separators as spaces."""
    return re.sub(r"[_-]", " ", _EXTENSION.sub("", filename))
