"""Google Sheets export client and sheet URL helpers."""

from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional, TypeVar

import requests

from .config import EVENTS_TAB, NEWS_TAB, PROFILE_TAB, SheetsConfig
from .models import ChurchProfile, Event, NewsItem
from .parser import (
    looks_like_html,
    parse_church_profile,
    parse_events,
    parse_news_items,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

SHEET_ID_PATTERN = re.compile(r"/spreadsheets/d/([a-zA-Z0-9-_]+)")
SHEETS_URL_MARKER = "docs.google.com/spreadsheets"


class SheetFetchError(RuntimeError):
    """Raised when a tab export cannot be retrieved as CSV."""


def extract_document_id(url: str) -> Optional[str]:
    match = SHEET_ID_PATTERN.search(url or "")
    return match.group(1) if match else None


def validate_sheet_url(url: Optional[str]) -> Optional[str]:
    """Return a human readable reason when ``url`` is unusable, else None."""
    if not url or not url.strip():
        return "URL cannot be empty"
    if SHEETS_URL_MARKER not in url:
        return (
            "Invalid Google Sheets URL. URL must contain "
            f"'{SHEETS_URL_MARKER}'"
        )
    if extract_document_id(url) is None:
        return "Invalid Google Sheets URL format. Cannot extract sheet ID"
    return None


class SheetsClient:
    """Fetch and parse the events, news and profile tabs of a document."""

    def __init__(
        self,
        config: Optional[SheetsConfig] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.config = config or SheetsConfig()
        self.session = session or requests.Session()
        # Sessions are not thread-safe; refreshes fetch from worker threads.
        self._session_lock = threading.Lock()

    def __enter__(self) -> "SheetsClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self.session.close()

    def build_export_url(self, url: str, tab: str) -> str:
        """Return the CSV export URL for ``tab``, or ``url`` when it has no id."""
        document_id = extract_document_id(url)
        if document_id is None:
            return url
        gid = self.config.tab_gids.get(tab, 0)
        return (
            f"https://{self.config.host}/spreadsheets/d/{document_id}"
            f"/export?format=csv&gid={gid}"
        )

    def fetch_tab(self, url: str, tab: str) -> str:
        """Download the raw CSV text of one tab.

        Raises :class:`SheetFetchError` on transport errors, non-2xx
        responses and HTML pages served in place of the export.
        """
        export_url = self.build_export_url(url, tab)
        logger.info("Fetching %s tab from %s", tab, export_url)
        try:
            with self._session_lock:
                response = self.session.get(
                    export_url,
                    timeout=(self.config.connect_timeout, self.config.read_timeout),
                )
            response.raise_for_status()
        except requests.RequestException as exc:
            raise SheetFetchError(f"Failed to fetch {tab} tab: {exc}") from exc

        text = response.content.decode("utf-8-sig", errors="replace")
        if looks_like_html(text):
            raise SheetFetchError(
                f"{tab} tab returned an HTML page instead of CSV. "
                "Check that the sheet is published to the web."
            )
        return text

    def _fetch(
        self,
        url: str,
        tab: str,
        parse: Callable[[str], T],
        empty: T,
        strict: bool,
    ) -> T:
        try:
            text = self.fetch_tab(url, tab)
        except SheetFetchError as exc:
            if strict:
                raise
            logger.warning("Error fetching %s: %s", tab, exc)
            return empty
        return parse(text)

    def fetch_events(self, url: str, strict: bool = False) -> List[Event]:
        events = self._fetch(url, EVENTS_TAB, parse_events, [], strict)
        logger.info("Collected %d events", len(events))
        return events

    def fetch_news_items(self, url: str, strict: bool = False) -> List[NewsItem]:
        items = self._fetch(url, NEWS_TAB, parse_news_items, [], strict)
        logger.info("Collected %d news items", len(items))
        return items

    def fetch_church_profile(
        self, url: str, strict: bool = False
    ) -> Optional[ChurchProfile]:
        profile = self._fetch(url, PROFILE_TAB, parse_church_profile, None, strict)
        if profile is None:
            logger.info("No church profile found")
        return profile


@dataclass
class ConnectionReport:
    """Outcome of probing all tabs of a configured document."""

    successful: bool
    message: str
    events_count: int = 0
    news_count: int = 0
    has_profile: bool = False


def check_connection(client: SheetsClient, url: Optional[str]) -> ConnectionReport:
    """Fetch every tab once and summarise what was found."""
    if not url or not url.strip():
        return ConnectionReport(False, "No Google Sheets URL configured")

    try:
        events = client.fetch_events(url, strict=True)
        news = client.fetch_news_items(url, strict=True)
        profile = client.fetch_church_profile(url, strict=True)
    except SheetFetchError as exc:
        return ConnectionReport(False, f"Connection failed: {exc}")

    if not events and not news and profile is None:
        return ConnectionReport(
            False,
            "Connection successful but no data found. Please check:\n"
            "- Sheet is published to the web\n"
            "- Tab names match expected format\n"
            "- Data is properly formatted with headers",
        )

    lines = ["Connection successful!"]
    if events:
        lines.append(f"- Found {len(events)} events")
    if news:
        lines.append(f"- Found {len(news)} news items")
    if profile is not None:
        lines.append("- Found church profile")
    return ConnectionReport(
        True,
        "\n".join(lines),
        events_count=len(events),
        news_count=len(news),
        has_profile=profile is not None,
    )


def check_tab(client: SheetsClient, url: str, tab: str) -> bool:
    """Return True when ``tab`` yields at least one record."""
    if tab == EVENTS_TAB:
        return bool(client.fetch_events(url))
    if tab == NEWS_TAB:
        return bool(client.fetch_news_items(url))
    if tab == PROFILE_TAB:
        return client.fetch_church_profile(url) is not None
    raise ValueError(f"Unknown tab: {tab}")
