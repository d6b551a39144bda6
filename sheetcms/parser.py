"""Tolerant parsing of exported sheet tabs into domain records."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, TypeVar

from .models import EPOCH, ChurchProfile, Event, NewsItem

logger = logging.getLogger(__name__)

T = TypeVar("T")

HTML_MARKERS = ("<!doctype", "<html")
TRUTHY_VALUES = ("true", "1", "yes")
LIST_SEPARATOR = ";"


def looks_like_html(text: Optional[str]) -> bool:
    """Return True when an export request came back as a web page."""
    if not text:
        return False
    return text.lstrip().lower().startswith(HTML_MARKERS)


def split_csv_line(line: str) -> List[str]:
    """Split one line on commas that are not enclosed in double quotes.

    Quote characters only toggle the quoted state and are dropped from
    the output; doubled quotes are not treated as escapes.
    """
    fields: List[str] = []
    current: List[str] = []
    in_quotes = False

    for char in line:
        if char == '"':
            in_quotes = not in_quotes
        elif char == "," and not in_quotes:
            fields.append("".join(current))
            current = []
        else:
            current.append(char)
    fields.append("".join(current))
    return fields


def parse_flag(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in TRUTHY_VALUES


def parse_list(value: Optional[str]) -> List[str]:
    """Split a semicolon separated cell into trimmed, non-empty entries."""
    if not value or not value.strip():
        return []
    return [part.strip() for part in value.split(LIST_SEPARATOR) if part.strip()]


def _parse_timestamp(raw: str) -> Optional[datetime]:
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00").replace("z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return None
    return parsed.astimezone(timezone.utc)


def _parse_day(raw: str) -> Optional[datetime]:
    try:
        return datetime.strptime(raw, "%Y-%m-%d").replace(tzinfo=timezone.utc)
    except ValueError:
        return None


def parse_instant(value: Optional[str]) -> datetime:
    """Parse a sheet date cell into an aware UTC datetime.

    Accepts ``2024-10-20T10:00:00Z``, ``2024-10-20`` and ``2024/10/20``.
    Anything else yields :data:`EPOCH` instead of raising.
    """
    raw = (value or "").strip()
    if not raw:
        return EPOCH

    parsed = (
        _parse_timestamp(raw)
        or _parse_day(raw)
        or _parse_day(raw.replace("/", "-"))
    )
    if parsed is None:
        logger.warning("Could not parse date: %s", raw)
        return EPOCH
    return parsed


def _table_rows(text: str, kind: str) -> List[Dict[str, str]]:
    lines = [line for line in text.splitlines() if line.strip()]
    if not lines:
        return []

    headers = [cell.strip().lower() for cell in split_csv_line(lines[0])]
    rows: List[Dict[str, str]] = []
    for line_number, line in enumerate(lines[1:], start=2):
        values = split_csv_line(line)
        if len(values) != len(headers):
            logger.warning(
                "Skipping malformed %s row %d (%d fields, expected %d): %s",
                kind,
                line_number,
                len(values),
                len(headers),
                line,
            )
            continue
        rows.append(dict(zip(headers, values)))
    return rows


def _event_from_row(data: Dict[str, str]) -> Optional[Event]:
    event_id = data.get("id", "")
    if not event_id.strip():
        return None
    return Event(
        id=event_id,
        title=data.get("title", ""),
        date=parse_instant(data.get("date")),
        category=data.get("category", ""),
        location=data.get("location", ""),
        description=data.get("description", ""),
        topic=data.get("topic", ""),
        bible_verse=data.get("bibleverse", ""),
        pic_council_member=data.get("piccouncilmember", ""),
        on_duty_council_members=parse_list(data.get("ondutycouncilmembers")),
        is_featured=parse_flag(data.get("isfeatured")),
    )


def _news_item_from_row(data: Dict[str, str]) -> Optional[NewsItem]:
    item_id = data.get("id", "")
    if not item_id.strip():
        return None
    return NewsItem(
        id=item_id,
        headline=data.get("headline", ""),
        publish_date=parse_instant(data.get("publishdate")),
        author=data.get("author", ""),
        body=data.get("body", ""),
        category=data.get("category", ""),
        scripture_reference=data.get("scripturereference", ""),
        is_urgent=parse_flag(data.get("isurgent")),
        photo_url=data.get("photourl", ""),
        related_event_id=data.get("relatedeventid", ""),
    )


def _profile_from_row(data: Dict[str, str]) -> ChurchProfile:
    return ChurchProfile(
        name=data.get("name", ""),
        logo_url=data.get("logourl", ""),
        welcome_message=data.get("welcomemessage", ""),
        address=data.get("address", ""),
        phone=data.get("phone", ""),
        website=data.get("website", ""),
        email=data.get("email", ""),
        mission=data.get("mission", ""),
        service_times=data.get("servicetimes", ""),
        social_facebook=data.get("socialfacebook", ""),
    )


def _parse_records(
    text: Optional[str], kind: str, build: Callable[[Dict[str, str]], Optional[T]]
) -> List[T]:
    if not text or looks_like_html(text):
        return []

    records: List[T] = []
    for row in _table_rows(text, kind):
        record = build(row)
        if record is None:
            logger.debug("Dropping %s row without id", kind)
            continue
        records.append(record)

    logger.debug("Parsed %d %s rows", len(records), kind)
    return records


def parse_events(text: Optional[str]) -> List[Event]:
    """Parse the events tab export."""
    return _parse_records(text, "event", _event_from_row)


def parse_news_items(text: Optional[str]) -> List[NewsItem]:
    """Parse the news tab export."""
    return _parse_records(text, "news", _news_item_from_row)


def parse_church_profile(text: Optional[str]) -> Optional[ChurchProfile]:
    """Parse the first data row of the profile tab export."""
    if not text or looks_like_html(text):
        return None

    lines = [line for line in text.splitlines() if line.strip()]
    if len(lines) < 2:
        return None

    rows = _table_rows("\n".join(lines[:2]), "profile")
    if not rows:
        return None
    return _profile_from_row(rows[0])
