"""
Tolerant decoding of loosely-typed backend JSON.

Home-server APIs move fields around between versions (``data.songs`` vs a
top-level ``songs``, ``song_tag.artist`` vs ``song_tag.album_artist``).
Instead of chains of ``.get()`` calls, callers describe the shapes they know
about and take the first one that is present:

    SONG_SHAPES = (("data.songs", ("data", "songs")),
                   ("songs",      ("songs",)))

    result = decode_list(payload, SONG_SHAPES, song_from_dict)
    if result.ok:
        songs = result.value

A ``Decoded`` is either ``ok`` with the value and the name of the shape that
matched, or not ok (no shape recognised).  Decoding never raises.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Sequence

logger = logging.getLogger(__name__)

_MISSING = object()


@dataclass(frozen=True)
class Decoded:
    ok: bool
    value: Any = None
    shape: str | None = None


NOT_RECOGNISED = Decoded(ok=False)


def dig(payload, path: Iterable[str], default=None):
    """Walk nested dicts along *path*; return *default* if any step is absent."""
    node = payload
    for key in path:
        if not isinstance(node, dict) or key not in node:
            return default
        node = node[key]
    return default if node is None else node


def decode_first(payload, shapes: Sequence[tuple[str, tuple]]) -> Decoded:
    """Return the value at the first path in *shapes* that exists."""
    for name, path in shapes:
        value = dig(payload, path, _MISSING)
        if value is not _MISSING:
            return Decoded(ok=True, value=value, shape=name)
    return NOT_RECOGNISED


def decode_list(payload, shapes: Sequence[tuple[str, tuple]],
                item: Callable[[dict], Any] | None = None) -> Decoded:
    """Find a list via *shapes* and convert each element with *item*.

    Elements that are not dicts, or that *item* rejects (raises KeyError,
    TypeError or ValueError, or returns None), are skipped and logged.
    """
    found = decode_first(payload, shapes)
    if not found.ok:
        return found
    raw = found.value
    if isinstance(raw, dict):
        # Single-element responses sometimes come back unwrapped
        raw = [raw]
    if not isinstance(raw, list):
        logger.debug("Shape %s matched but is %s, not a list", found.shape, type(raw).__name__)
        return NOT_RECOGNISED
    if item is None:
        return Decoded(ok=True, value=raw, shape=found.shape)

    values = []
    skipped = 0
    for element in raw:
        if not isinstance(element, dict):
            skipped += 1
            continue
        try:
            value = item(element)
        except (KeyError, TypeError, ValueError) as e:
            logger.debug("Skipping malformed %s element: %s", found.shape, e)
            value = None
        if value is None:
            skipped += 1
            continue
        values.append(value)
    if skipped:
        logger.warning("Skipped %d malformed element(s) in %s", skipped, found.shape)
    return Decoded(ok=True, value=values, shape=found.shape)


def first_str(mapping: dict, *keys: str) -> str | None:
    """First non-empty string among *keys* of *mapping*."""
    for key in keys:
        value = mapping.get(key) if isinstance(mapping, dict) else None
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def as_int(value) -> int | None:
    """Parse ints that arrive as numbers, numeric strings, or "3/12"."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        head = value.split("/", 1)[0].strip()
        try:
            return int(head)
        except ValueError:
            return None
    return None


def as_float(value) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0
