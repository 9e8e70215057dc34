"""Weekday labels for the dashboard, passed around as explicit locale context."""

import os
from datetime import date
from typing import Optional, Sequence

# Monday-first, matching ``date.weekday()``.
WEEKDAY_ABBREVIATIONS: dict[str, tuple[str, ...]] = {
    "it": ("Lun", "Mar", "Mer", "Gio", "Ven", "Sab", "Dom"),
    "en": ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"),
    "de": ("Mo", "Di", "Mi", "Do", "Fr", "Sa", "So"),
    "fr": ("Lun", "Mar", "Mer", "Jeu", "Ven", "Sam", "Dim"),
    "es": ("Lun", "Mar", "Mié", "Jue", "Vie", "Sáb", "Dom"),
}

FALLBACK_LOCALE = "it"


def resolve_locale(locale: Optional[str] = None) -> str:
    """Return a supported locale code, falling back to ``DEFAULT_LOCALE``."""

    for candidate in (locale, os.getenv("DEFAULT_LOCALE"), FALLBACK_LOCALE):
        if not candidate:
            continue
        # Accept "it-IT", "en_GB" and friends.
        key = str(candidate).strip().lower().replace("_", "-").split("-", 1)[0]
        if key in WEEKDAY_ABBREVIATIONS:
            return key
    return FALLBACK_LOCALE


def weekday_labels(locale: Optional[str] = None) -> Sequence[str]:
    return WEEKDAY_ABBREVIATIONS[resolve_locale(locale)]


def weekday_label(day: date, locale: Optional[str] = None) -> str:
    return weekday_labels(locale)[day.weekday()]
