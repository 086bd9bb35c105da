"""Compact renderings of API payloads for DEBUG logs.

Invoice drafts carry one ``weightBreakdown`` string per product and
invoice listings can hold hundreds of rows. Logging them verbatim
buries the request line, so long strings and lists are shortened.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

_MAX_DEPTH = 8


def summarize_for_log(value: Any, *, max_string: int = 120, max_items: int = 10, _depth: int = 0) -> Any:
    """Return a shortened copy of *value* for debug logs.

    Strings over *max_string* characters are cut, lists keep their first
    *max_items* entries plus a count of the rest, and bytes (raw scale
    frames) are reduced to their length.
    """
    if _depth >= _MAX_DEPTH:
        return "..."

    if value is None or isinstance(value, (bool, int, float)):
        return value

    if isinstance(value, str):
        if len(value) > max_string:
            return f"{value[:max_string]}... ({len(value)} chars)"
        return value

    if isinstance(value, (bytes, bytearray)):
        return f"<{len(value)} bytes>"

    if isinstance(value, Mapping):
        return {
            str(k): summarize_for_log(v, max_string=max_string, max_items=max_items, _depth=_depth + 1)
            for k, v in value.items()
        }

    if isinstance(value, Sequence):
        shown = [
            summarize_for_log(v, max_string=max_string, max_items=max_items, _depth=_depth + 1)
            for v in value[:max_items]
        ]
        if len(value) > max_items:
            shown.append(f"... {len(value) - max_items} more")
        return shown

    return repr(value)
