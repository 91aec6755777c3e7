"""Utility helpers for the ShowSync service."""

from __future__ import annotations

import re
from datetime import datetime, timezone

from .models import CanonicalMetadata

INVALID_FILENAME_RE = re.compile(r'[/\\?%*:|"<>]')
WHITESPACE_RE = re.compile(r"\s+")


def utcnow() -> datetime:
    """Return the current UTC time as a naive datetime, as stored by SQLite."""

    return datetime.now(timezone.utc).replace(tzinfo=None)


def normalize_search_text(value: str) -> str:
    """Return the cache key form of a free-text title search."""

    return WHITESPACE_RE.sub(" ", value or "").strip().casefold()


def render_note_name(template: str, metadata: CanonicalMetadata) -> str:
    """Fill a note name template and strip characters invalid in file names."""

    def _text(value: object) -> str:
        return "" if value is None else str(value)

    replacements = {
        "${title}": metadata.title,
        "${year}": _text(metadata.year),
        "${firstAirYear}": _text(metadata.first_air_year),
        "${lastAirYear}": _text(metadata.last_air_year),
        "${tmdb_id}": metadata.identity.external_id,
    }
    rendered = template
    for token, value in replacements.items():
        rendered = rendered.replace(token, value)
    return INVALID_FILENAME_RE.sub("-", rendered).strip()


def format_reset_estimate(seconds: int | float) -> str:
    """Describe a reset delay using its coarsest non-zero unit."""

    total = max(int(seconds), 0)
    hours, remainder = divmod(total, 3_600)
    minutes, secs = divmod(remainder, 60)
    for amount, unit in ((hours, "hour"), (minutes, "minute"), (secs, "second")):
        if amount:
            return f"{amount} {unit}{'' if amount == 1 else 's'}"
    return "0 seconds"


def format_expiry_date(timestamp: int) -> str:
    """Render a unix timestamp as a calendar date."""

    return datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime("%Y-%m-%d")


def format_sync_timestamp(moment: datetime | None = None) -> str:
    """Return the local timestamp written to ``Last Synced``."""

    moment = moment or datetime.now()
    return moment.strftime("%Y-%m-%d %H:%M:%S")
