"""Lead profile projection and request input sanitation.

Turns a lead row into the deterministic "Label: value" text that gets
embedded, and cleans the identifiers and limits callers send in.
"""
from __future__ import annotations

import re
from typing import Any

from config.profile_fields import PROFILE_FIELDS, UNSET_SENTINEL
from leadmatch.schemas import LeadRecord

LEAD_ID_MAX_LENGTH = 100

_LEAD_ID_DISALLOWED = re.compile(r"[^\w-]", re.ASCII)
_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


def _clean_value(value: Any) -> str:
    """Return the value as stripped text, or "" when absent or unset."""
    if value is None or isinstance(value, bool):
        return ""
    text = str(value).strip()
    if text == UNSET_SENTINEL:
        return ""
    return text


def build_profile_text(record: LeadRecord) -> str:
    """Build the embedding input for a lead.

    One "Label: value" line per semantic field, in the order of
    PROFILE_FIELDS. Fields that are missing, blank or set to the unset
    sentinel are skipped.

    Args:
        record: Lead to project

    Returns:
        Profile text, possibly empty
    """
    lines = []
    for spec in PROFILE_FIELDS:
        value = _clean_value(record.get(spec["field"]))
        if value:
            lines.append(f"{spec['label']}: {value}")
    return "\n".join(lines)


def has_meaningful_data(record: LeadRecord) -> bool:
    """Check whether any semantic field was filled in at all.

    The unset sentinel counts as filled in here; it is dropped later by
    build_profile_text, which yields the "no text" outcome instead.
    """
    for spec in PROFILE_FIELDS:
        value = record.get(spec["field"])
        if value is None or isinstance(value, bool):
            continue
        if str(value).strip():
            return True
    return False


def sanitize_lead_id(raw: Any) -> str | None:
    """Trim a lead id and strip characters outside [A-Za-z0-9_-].

    Returns:
        The sanitized id, or None if it is not a string or ends up outside
        1..LEAD_ID_MAX_LENGTH characters
    """
    if not isinstance(raw, str) or not raw:
        return None

    sanitized = _LEAD_ID_DISALLOWED.sub("", raw.strip())
    if not 1 <= len(sanitized) <= LEAD_ID_MAX_LENGTH:
        return None
    return sanitized


def parse_limit(raw: Any, *, default: int = 10, maximum: int = 10) -> int:
    """Parse the optional result-count limit and clamp it to [1, maximum].

    Strings are read up to the first non-digit ("7abc" -> 7); anything that
    does not start with an integer falls back to ``default``.
    """
    if isinstance(raw, bool) or raw is None:
        return default
    if isinstance(raw, int):
        n = raw
    elif isinstance(raw, str):
        m = _LEADING_INT.match(raw)
        if not m:
            return default
        n = int(m.group(1))
    else:
        return default
    return min(max(n, 1), maximum)
