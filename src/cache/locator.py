# src/cache/locator.py — v1
"""Source locator normalization for the secondary (fallback) cache lookup.

Download URLs handed out by the LMS carry expiring query tokens and
verifier parameters, so the same document shows up under many URLs. Two
locators are considered the same document when:
  1. their normalized forms are equal, or
  2. both carry the same ``/files/<id>`` segment, or
  3. one normalized form contains the other (only when the two do not
     carry conflicting file ids).
"""

from __future__ import annotations

import re
from urllib.parse import unquote

_FILE_ID_RE = re.compile(r"/files/(\d+)")


def normalize_locator(locator: str) -> str:
    """Strip query string, fragment and trailing slashes, then percent-decode."""
    base = locator.split("?", 1)[0].split("#", 1)[0].rstrip("/")
    try:
        return unquote(base, errors="strict")
    except UnicodeDecodeError:
        return base


def extract_file_id(locator: str) -> str | None:
    """Return the numeric ``/files/<id>`` component, if any."""
    match = _FILE_ID_RE.search(locator)
    return match.group(1) if match else None


def locators_match(cached: str, wanted: str) -> bool:
    """Whether a cached locator refers to the same document as ``wanted``."""
    if not cached or not wanted:
        return False

    norm_cached = normalize_locator(cached)
    norm_wanted = normalize_locator(wanted)
    if not norm_cached or not norm_wanted:
        return False
    if norm_cached == norm_wanted:
        return True

    cached_id = extract_file_id(cached)
    wanted_id = extract_file_id(wanted)
    if cached_id and wanted_id:
        # ".../files/1" must not match ".../files/12" by containment.
        return cached_id == wanted_id

    return norm_cached in norm_wanted or norm_wanted in norm_cached
