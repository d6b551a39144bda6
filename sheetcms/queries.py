"""Filters, searches and orderings over published events and news.

Every function is pure: it takes the current list and returns a new
one. The ``watch_*`` helpers re-run a query on every emission of a
repository's state so views stay current without caching results.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Collection, Dict, List, Optional

from .flow import StateFlow, combine, watch
from .models import ChurchProfile, Event, NewsItem


def _as_utc(value: datetime) -> datetime:
    # Naive values are taken to be UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _matches_any(category: str, categories: Collection[str]) -> bool:
    wanted = category.lower()
    return any(wanted == candidate.lower() for candidate in categories)


def filter_by_category(events: List[Event], category: Optional[str]) -> List[Event]:
    if not category or not category.strip():
        return list(events or [])
    return [event for event in events or [] if _matches_any(event.category, [category])]


def filter_by_categories(
    events: List[Event], categories: Optional[Collection[str]]
) -> List[Event]:
    if not categories:
        return list(events or [])
    return [event for event in events or [] if _matches_any(event.category, categories)]


def filter_news_by_categories(
    items: List[NewsItem], categories: Optional[Collection[str]]
) -> List[NewsItem]:
    if not categories:
        return list(items or [])
    return [item for item in items or [] if _matches_any(item.category, categories)]


def filter_both(
    events: List[Event], items: List[NewsItem], category: Optional[str]
) -> tuple:
    """Filter events and news by one category; blank keeps everything."""
    if not category or not category.strip():
        return list(events or []), list(items or [])
    return (
        filter_by_categories(events, [category]),
        filter_news_by_categories(items, [category]),
    )


def all_categories(events: List[Event]) -> List[str]:
    return sorted({event.category for event in events or [] if event.category.strip()})


def _event_matches(event: Event, needle: str) -> bool:
    fields = (
        event.title,
        event.description,
        event.topic,
        event.location,
        event.category,
        event.bible_verse,
    )
    return any(needle in value.lower() for value in fields)


def search_events(events: List[Event], query: Optional[str]) -> List[Event]:
    if not query or not query.strip():
        return list(events or [])
    needle = query.strip().lower()
    return [event for event in events or [] if _event_matches(event, needle)]


def search_with_filters(
    events: List[Event],
    query: Optional[str],
    categories: Optional[Collection[str]] = None,
    featured_only: bool = False,
) -> List[Event]:
    results = search_events(events, query)
    results = filter_by_categories(results, categories)
    if featured_only:
        results = [event for event in results if event.is_featured]
    return results


def upcoming_events(
    events: List[Event], now: Optional[datetime] = None
) -> List[Event]:
    now = _as_utc(now or datetime.now(timezone.utc))
    return sorted(
        (event for event in events or [] if _as_utc(event.date) > now),
        key=lambda e: _as_utc(e.date),
    )


def latest_news(
    items: List[NewsItem], limit: Optional[int] = None, urgent_first: bool = False
) -> List[NewsItem]:
    if urgent_first:
        ordered = sorted(
            items or [],
            key=lambda item: (item.is_urgent, _as_utc(item.publish_date)),
            reverse=True,
        )
    else:
        ordered = sorted(
            items or [], key=lambda item: _as_utc(item.publish_date), reverse=True
        )
    if limit is not None and limit > 0:
        return ordered[:limit]
    return ordered


def urgent_news(items: List[NewsItem]) -> List[NewsItem]:
    return latest_news([item for item in items or [] if item.is_urgent])


def news_in_range(
    items: List[NewsItem], start: datetime, end: datetime
) -> List[NewsItem]:
    start, end = _as_utc(start), _as_utc(end)
    return latest_news(
        [item for item in items or [] if start <= _as_utc(item.publish_date) <= end]
    )


def news_from_last_days(
    items: List[NewsItem], days: int, now: Optional[datetime] = None
) -> List[NewsItem]:
    cutoff = _as_utc(now or datetime.now(timezone.utc)) - timedelta(days=days)
    return latest_news(
        [item for item in items or [] if _as_utc(item.publish_date) >= cutoff]
    )


def news_in_range_with_category(
    items: List[NewsItem], start: datetime, end: datetime, category: str
) -> List[NewsItem]:
    return filter_news_by_categories(news_in_range(items, start, end), [category])


def category_counts(events: List[Event], items: List[NewsItem]) -> Dict[str, int]:
    """Count events and news per category, ignoring blank categories."""
    counts: Dict[str, int] = {}
    for category in [event.category for event in events or []] + [
        item.category for item in items or []
    ]:
        if category.strip():
            counts[category] = counts.get(category, 0) + 1
    return counts


# Reactive forms


def watch_upcoming(events: StateFlow[List[Event]]) -> AsyncIterator[List[Event]]:
    return watch(events, upcoming_events)


def watch_search(
    events: StateFlow[List[Event]], query: Optional[str]
) -> AsyncIterator[List[Event]]:
    return watch(events, lambda current: search_events(current, query))


def watch_categories(
    events: StateFlow[List[Event]], categories: Collection[str]
) -> AsyncIterator[List[Event]]:
    return watch(events, lambda current: filter_by_categories(current, categories))


def watch_latest_news(
    items: StateFlow[List[NewsItem]],
    limit: Optional[int] = None,
    urgent_first: bool = False,
) -> AsyncIterator[List[NewsItem]]:
    return watch(items, lambda current: latest_news(current, limit, urgent_first))


def watch_news_in_range(
    items: StateFlow[List[NewsItem]], start: datetime, end: datetime
) -> AsyncIterator[List[NewsItem]]:
    return watch(items, lambda current: news_in_range(current, start, end))


def watch_category_counts(
    events: StateFlow[List[Event]], items: StateFlow[List[NewsItem]]
) -> AsyncIterator[Dict[str, int]]:
    return combine([events, items], category_counts)


# Presentation helpers


def event_description(event: Event) -> str:
    parts = []
    if event.description.strip():
        parts.append(event.description)
    if event.topic.strip():
        parts.append(f"Topic: {event.topic}")
    if event.bible_verse.strip():
        parts.append(f"Scripture: {event.bible_verse}")
    if event.pic_council_member.strip():
        parts.append(f"Person In Charge: {event.pic_council_member}")
    if event.on_duty_council_members:
        members = ", ".join(event.on_duty_council_members)
        parts.append(f"On-Duty Council Members: {members}")
    return "\n\n".join(parts) if parts else "No description available"


def event_summary(event: Event, max_length: int = 100) -> str:
    text = event.description if event.description.strip() else event.topic
    if len(text) > max_length:
        return text[: max_length - 3] + "..."
    return text


def location_label(event: Event) -> str:
    return event.location if event.location.strip() else "Location not specified"


def _plus_encoded(value: str) -> str:
    return value.replace(" ", "+")


def maps_url(event: Event) -> Optional[str]:
    if not event.location.strip():
        return None
    return f"https://www.google.com/maps/search/?api=1&query={_plus_encoded(event.location)}"


def apple_maps_url(event: Event) -> Optional[str]:
    if not event.location.strip():
        return None
    return f"https://maps.apple.com/?q={_plus_encoded(event.location)}"


def directions_url(event: Event, origin: Optional[str] = None) -> Optional[str]:
    if not event.location.strip():
        return None
    destination = _plus_encoded(event.location)
    if origin:
        return (
            "https://www.google.com/maps/dir/?api=1"
            f"&origin={_plus_encoded(origin)}&destination={destination}"
        )
    return f"https://www.google.com/maps/dir/?api=1&destination={destination}"


_PROFILE_FIELDS = (
    "name",
    "logo_url",
    "welcome_message",
    "address",
    "phone",
    "website",
    "email",
    "mission",
    "service_times",
    "social_facebook",
)


def profile_is_complete(profile: Optional[ChurchProfile]) -> bool:
    if profile is None:
        return False
    return all(
        value.strip() for value in (profile.name, profile.address, profile.phone)
    )


def profile_completeness(profile: Optional[ChurchProfile]) -> int:
    """Percentage of profile fields that are filled in."""
    if profile is None:
        return 0
    filled = sum(1 for name in _PROFILE_FIELDS if getattr(profile, name).strip())
    return filled * 100 // len(_PROFILE_FIELDS)
