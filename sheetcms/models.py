"""Shared data models for sheetcms."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, List, Optional

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass
class Event:
    """A scheduled church activity as published in the events tab."""

    id: str
    title: str = ""
    date: datetime = EPOCH
    category: str = ""
    location: str = ""
    description: str = ""
    topic: str = ""
    bible_verse: str = ""
    pic_council_member: str = ""
    on_duty_council_members: List[str] = field(default_factory=list)
    is_featured: bool = False


@dataclass
class NewsItem:
    """An announcement from the news tab."""

    id: str
    headline: str = ""
    publish_date: datetime = EPOCH
    author: str = ""
    body: str = ""
    category: str = ""
    scripture_reference: str = ""
    is_urgent: bool = False
    photo_url: str = ""
    related_event_id: str = ""


@dataclass
class ChurchProfile:
    """Singleton church contact and welcome details."""

    name: str = ""
    logo_url: str = ""
    welcome_message: str = ""
    address: str = ""
    phone: str = ""
    website: str = ""
    email: str = ""
    mission: str = ""
    service_times: str = ""
    social_facebook: str = ""


@dataclass(frozen=True)
class Result:
    """Outcome of a repository or settings operation.

    A success may carry a ``message`` when it was served from stale data.
    """

    ok: bool
    value: Any = None
    message: Optional[str] = None

    @classmethod
    def success(cls, value: Any = None, message: Optional[str] = None) -> "Result":
        return cls(ok=True, value=value, message=message)

    @classmethod
    def failure(cls, message: str) -> "Result":
        return cls(ok=False, message=message)

    @property
    def is_soft(self) -> bool:
        return self.ok and self.message is not None
