"""Talent profile snapshots stored on bookings.

A booking's ``talentProfile`` is the system of record for exports, so the
snapshot written to the store must hold an explicit ``None`` for every
tracked attribute instead of leaving keys out. The consolidated
``physical`` object gathers attributes that profiles keep under
``appearance``, ``sizes`` and ``details``.
"""

from __future__ import annotations

import copy
from typing import Any

from castline.types import PHYSICAL_ATTRIBUTES, PHYSICAL_FLAGS, PHYSICAL_SOURCES

BASIC_INFO_FIELDS = ("firstName", "lastName", "email", "phone")


def _default(name: str) -> Any:
    return False if name in PHYSICAL_FLAGS else None


def build_physical(profile: dict[str, Any]) -> dict[str, Any]:
    physical: dict[str, Any] = {}
    for section, names in PHYSICAL_SOURCES.items():
        source = profile.get(section) or {}
        for name in names:
            # Empty strings and zero values count as unset, as in the profile forms.
            physical[name] = source.get(name) or _default(name)
    return physical


def complete_physical(physical: dict[str, Any]) -> dict[str, Any]:
    completed = dict(physical)
    for name in PHYSICAL_ATTRIBUTES:
        if completed.get(name) is None:
            completed[name] = _default(name)
    return completed


def sanitize_talent_profile(profile: dict[str, Any] | None) -> dict[str, Any] | None:
    if not profile:
        return None

    sanitized = copy.deepcopy(profile)
    if sanitized.get("physical"):
        sanitized["physical"] = complete_physical(sanitized["physical"])
    else:
        sanitized["physical"] = build_physical(sanitized)

    if not sanitized.get("basicInfo"):
        sanitized["basicInfo"] = {name: None for name in BASIC_INFO_FIELDS}
    return sanitized


def talent_name(profile: dict[str, Any] | None) -> str:
    basic = (profile or {}).get("basicInfo") or {}
    return " ".join(part for part in (basic.get("firstName"), basic.get("lastName")) if part)
