"""
Response-shape helpers for provider library endpoints.

Providers (and different endpoints of the same provider) disagree on how a
page of results is wrapped:

    [ {...}, {...} ]                      bare array
    {"items": [...], "next": "..."}       Spotify paging object
    {"data":  [...], "next": "/v1/..."}   Apple Music resource collection

Everything here is pure so it can be shared by every connector and the
normalizer.
"""

from __future__ import annotations

from typing import Any, List, Optional
from urllib.parse import urljoin

_WRAPPER_KEYS = ("items", "data")


def unwrap_items(value: Any) -> List[Any]:
    """Return the entry list from a bare array or an ``items``/``data`` wrapper."""
    if value is None:
        return []
    if isinstance(value, list):
        return value
    if isinstance(value, dict):
        for key in _WRAPPER_KEYS:
            inner = value.get(key)
            if isinstance(inner, list):
                return inner
    return []


def next_page_url(body: Any, base_url: str) -> Optional[str]:
    """
    Absolute URL of the next page, or None when the listing is exhausted.

    Spotify returns an absolute ``next``; Apple Music returns a path that is
    resolved against ``base_url``.
    """
    if not isinstance(body, dict):
        return None
    nxt = body.get("next")
    if not nxt or not isinstance(nxt, str):
        return None
    return urljoin(base_url, nxt)
