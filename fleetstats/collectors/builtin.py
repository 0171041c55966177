from __future__ import annotations

import locale
import os
import platform
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Mapping
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .base import StatsOptions

STATS_VERSION = "python 2026-10-19"

# Rough sunrise/sunset hours in Amsterdam, January..December.
_AMSTERDAM_SUN_HOURS: tuple[tuple[int, int], ...] = (
    (8, 17),
    (7, 18),
    (7, 19),
    (6, 20),
    (5, 21),
    (5, 22),
    (5, 21),
    (6, 20),
    (7, 19),
    (7, 18),
    (8, 17),
    (8, 16),
)
_DAYTIME_ZONE = "Europe/Amsterdam"


def day_night(now: datetime, timezone_name: str | None) -> str:
    """Return "day", "night" or "twilight" with a wide (2 hour) margin.

    Only meaningful for devices in the Amsterdam timezone; anything else is
    "unknown".
    """

    if timezone_name != _DAYTIME_ZONE:
        return "unknown"
    try:
        local = now.astimezone(ZoneInfo(_DAYTIME_ZONE))
    except ZoneInfoNotFoundError:
        return "unknown"

    rise, set_ = _AMSTERDAM_SUN_HOURS[local.month - 1]
    hour = local.hour
    if abs(hour - rise) < 2 or abs(hour - set_) < 2:
        return "twilight"
    if rise < hour < set_:
        return "day"
    return "night"


def _locale_tag(raw: str) -> str:
    return raw.split(".")[0].split("@")[0].replace("_", "-")


def preferred_languages(env: Mapping[str, str] | None = None) -> list[str]:
    """Language tags in preference order, e.g. ``["nl-NL", "en-US"]``."""

    env = os.environ if env is None else env
    tags: list[str] = []
    for name in ("LC_ALL", "LC_MESSAGES", "LANG", "LANGUAGE"):
        for part in (env.get(name) or "").split(":"):
            part = part.strip()
            if not part or part in {"C", "POSIX"}:
                continue
            tag = _locale_tag(part)
            if tag not in tags:
                tags.append(tag)
    if not tags:
        lang, _ = locale.getlocale()
        if lang:
            tags.append(_locale_tag(lang))
    return tags


def region_code(env: Mapping[str, str] | None = None) -> str | None:
    """Region of the formatting locale (``LC_ALL``, ``LC_CTYPE``, ``LANG``)."""

    env = os.environ if env is None else env
    raw = next((env[n].strip() for n in ("LC_ALL", "LC_CTYPE", "LANG") if (env.get(n) or "").strip()), "")
    if not raw or raw in {"C", "POSIX"}:
        raw = locale.getlocale()[0] or ""
    parts = _locale_tag(raw).split("-")
    return parts[1].upper() if len(parts) > 1 and parts[1] else None


@dataclass
class MetadataCollector:
    """Stats format version, collection time and host app identity."""

    bundle_identifier: str | None = None
    stats_version: str = STATS_VERSION
    now_fn: Callable[[], float] = time.time
    category: StatsOptions = StatsOptions.NONE
    keys: frozenset[str] = field(
        default_factory=lambda: frozenset({"Stats_version", "Stats_timestamp", "App_bundle_identifier"})
    )

    def read(self) -> Mapping[str, Any]:
        return {
            "Stats_version": self.stats_version,
            "Stats_timestamp": f"{self.now_fn()}",
            "App_bundle_identifier": self.bundle_identifier,
        }


@dataclass
class SystemCollector:
    """Portable OS / machine / locale probe."""

    env: Mapping[str, str] | None = None
    category: StatsOptions = StatsOptions.SYSTEM
    keys: frozenset[str] = field(
        default_factory=lambda: frozenset(
            {
                "System_model_id",
                "System_OS_name",
                "System_OS_major_version",
                "System_Preferred_language",
                "System_Dutch_region",
            }
        )
    )

    def read(self) -> Mapping[str, Any]:
        languages = preferred_languages(self.env)
        language = languages[0] if languages else ""
        release = platform.release()
        return {
            "System_model_id": platform.machine() or "unknown",
            "System_OS_name": platform.system() or "unknown",
            "System_OS_major_version": release.split(".")[0] if release else "unknown",
            "System_Preferred_language": language,
            "System_Dutch_region": any(tag.upper().endswith("-NL") for tag in languages)
            or region_code(self.env) == "NL",
        }


@dataclass
class PreferencesCollector:
    timezone_name: str | None = None
    now_fn: Callable[[], datetime] = datetime.now
    category: StatsOptions = StatsOptions.PREFERENCES
    keys: frozenset[str] = field(default_factory=lambda: frozenset({"Preference_daytime"}))

    def read(self) -> Mapping[str, Any]:
        tz = self.timezone_name if self.timezone_name is not None else os.getenv("TZ")
        now = self.now_fn()
        if now.tzinfo is None:
            now = now.astimezone()
        return {"Preference_daytime": day_night(now, tz)}


def default_collectors(*, bundle_identifier: str | None = None) -> list[Any]:
    return [
        MetadataCollector(bundle_identifier=bundle_identifier),
        SystemCollector(),
        PreferencesCollector(),
    ]
