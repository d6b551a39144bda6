import concurrent.futures
import threading
import time
from types import SimpleNamespace

import pytest
import requests

from sheetcms.config import EVENTS_TAB, NEWS_TAB, PROFILE_TAB, SheetsConfig
from sheetcms.sheets import (
    SheetFetchError,
    SheetsClient,
    check_connection,
    check_tab,
    extract_document_id,
    validate_sheet_url,
)

SHEET_URL = "https://docs.google.com/spreadsheets/d/ABC123/edit#gid=0"

EVENTS_CSV = (
    "Id,Title,Date,Category,Location,Description,Topic,BibleVerse,"
    "PicCouncilMember,OnDutyCouncilMembers,IsFeatured\n"
    "evt-1,Youth Night,2024-10-20,Youth,Hall,,,,,,true\n"
    "evt-2,Prayer,2024-10-21,Prayer,Chapel,,,,,,false\n"
)
NEWS_CSV = (
    "Id,Headline,PublishDate,Author,Body,Category,ScriptureReference,"
    "IsUrgent,PhotoUrl,RelatedEventId\n"
    "n-1,Roof appeal,2024-10-01,Lee,Body,Outreach,,yes,,\n"
)
PROFILE_CSV = (
    "Name,LogoUrl,WelcomeMessage,Address,Phone,Website,Email,Mission,"
    "ServiceTimes,SocialFacebook\n"
    "Grace Church,,,1 Main St,555-0100,,,,,\n"
)
HTML_PAGE = "<!DOCTYPE html><html><body>Sign in</body></html>"


def _response(text, status_code=200):
    def raise_for_status():
        if status_code >= 400:
            raise requests.HTTPError(f"{status_code} Error")

    return SimpleNamespace(
        status_code=status_code,
        content=text.encode("utf-8"),
        raise_for_status=raise_for_status,
    )


class FakeSession:
    """Serves canned bodies keyed by the gid of the export URL."""

    def __init__(self, bodies=None, error=None):
        self.bodies = bodies or {}
        self.error = error
        self.calls = []
        self.closed = False

    def get(self, url, timeout=None):
        self.calls.append((url, timeout))
        if self.error is not None:
            raise self.error
        gid = url.rsplit("gid=", 1)[-1]
        body = self.bodies.get(gid)
        if body is None:
            return _response("", status_code=404)
        return _response(body)

    def close(self):
        self.closed = True


def _client(bodies=None, error=None):
    config = SheetsConfig(tab_gids={EVENTS_TAB: 1, NEWS_TAB: 2, PROFILE_TAB: 3})
    return SheetsClient(config, session=FakeSession(bodies, error))


def test_extract_document_id():
    assert extract_document_id("https://docs.google.com/spreadsheets/d/ABC123/edit") == "ABC123"
    assert extract_document_id("https://docs.google.com/spreadsheets/d/a-b_C9/") == "a-b_C9"
    assert extract_document_id("https://example.com/foo") is None


def test_validate_sheet_url_messages():
    assert validate_sheet_url("https://docs.google.com/spreadsheets/d/ABC123/edit") is None
    assert validate_sheet_url("") == "URL cannot be empty"
    assert validate_sheet_url("   ") == "URL cannot be empty"
    assert validate_sheet_url("https://example.com/foo").startswith(
        "Invalid Google Sheets URL."
    )
    assert validate_sheet_url("https://docs.google.com/spreadsheets/u/0/") == (
        "Invalid Google Sheets URL format. Cannot extract sheet ID"
    )


def test_build_export_url_uses_tab_gid():
    client = _client()

    assert client.build_export_url(SHEET_URL, NEWS_TAB) == (
        "https://docs.google.com/spreadsheets/d/ABC123/export?format=csv&gid=2"
    )


def test_build_export_url_defaults_every_tab_to_first_sheet():
    client = SheetsClient(session=FakeSession())

    urls = {client.build_export_url(SHEET_URL, tab) for tab in (EVENTS_TAB, NEWS_TAB, PROFILE_TAB)}

    assert urls == {"https://docs.google.com/spreadsheets/d/ABC123/export?format=csv&gid=0"}


def test_build_export_url_without_id_returns_input():
    client = _client()

    assert client.build_export_url("https://example.com/data.csv", EVENTS_TAB) == (
        "https://example.com/data.csv"
    )


def test_fetch_tab_passes_timeouts_and_strips_bom():
    client = SheetsClient(
        SheetsConfig(connect_timeout=5, read_timeout=7),
        session=FakeSession({"0": "\ufeffId,Title\n"}),
    )

    text = client.fetch_tab(SHEET_URL, EVENTS_TAB)

    assert text == "Id,Title\n"
    assert client.session.calls[0][1] == (5, 7)


def test_fetch_events_parses_export():
    client = _client({"1": EVENTS_CSV})

    events = client.fetch_events(SHEET_URL)

    assert [event.id for event in events] == ["evt-1", "evt-2"]
    assert events[0].is_featured is True


def test_fetch_returns_empty_on_transport_error():
    client = _client(error=requests.ConnectionError("offline"))

    assert client.fetch_events(SHEET_URL) == []
    assert client.fetch_news_items(SHEET_URL) == []
    assert client.fetch_church_profile(SHEET_URL) is None


def test_fetch_strict_raises_on_transport_error():
    client = _client(error=requests.Timeout("slow"))

    with pytest.raises(SheetFetchError, match="Events"):
        client.fetch_events(SHEET_URL, strict=True)


def test_fetch_strict_raises_on_http_error_status():
    client = _client({})

    with pytest.raises(SheetFetchError):
        client.fetch_news_items(SHEET_URL, strict=True)


def test_fetch_html_page():
    client = _client({"1": HTML_PAGE})

    assert client.fetch_events(SHEET_URL) == []
    with pytest.raises(SheetFetchError, match="HTML"):
        client.fetch_events(SHEET_URL, strict=True)


def test_client_context_manager_closes_session():
    session = FakeSession()

    with SheetsClient(session=session):
        pass

    assert session.closed


def test_check_connection_reports_counts():
    client = _client({"1": EVENTS_CSV, "2": NEWS_CSV, "3": PROFILE_CSV})

    report = check_connection(client, SHEET_URL)

    assert report.successful
    assert report.events_count == 2
    assert report.news_count == 1
    assert report.has_profile
    assert report.message.splitlines() == [
        "Connection successful!",
        "- Found 2 events",
        "- Found 1 news items",
        "- Found church profile",
    ]


def test_check_connection_without_url():
    report = check_connection(_client(), "  ")

    assert not report.successful
    assert report.message == "No Google Sheets URL configured"


def test_check_connection_without_rows():
    header_only = {"1": EVENTS_CSV.splitlines()[0], "2": NEWS_CSV.splitlines()[0], "3": ""}
    client = _client(header_only)

    report = check_connection(client, SHEET_URL)

    assert not report.successful
    assert report.message.startswith("Connection successful but no data found")


def test_check_connection_failure():
    client = _client(error=requests.ConnectionError("offline"))

    report = check_connection(client, SHEET_URL)

    assert not report.successful
    assert report.message.startswith("Connection failed:")


def test_check_tab():
    client = _client({"1": EVENTS_CSV, "2": NEWS_CSV.splitlines()[0]})

    assert check_tab(client, SHEET_URL, EVENTS_TAB)
    assert not check_tab(client, SHEET_URL, NEWS_TAB)
    assert not check_tab(client, SHEET_URL, PROFILE_TAB)
    with pytest.raises(ValueError):
        check_tab(client, SHEET_URL, "Sermons")


class CountingSession(FakeSession):
    """Records how many requests are in flight at once."""

    def __init__(self, bodies):
        super().__init__(bodies)
        self.active = 0
        self.peak = 0
        self._guard = threading.Lock()

    def get(self, url, timeout=None):
        with self._guard:
            self.active += 1
            self.peak = max(self.peak, self.active)
        try:
            time.sleep(0.05)
            return super().get(url, timeout)
        finally:
            with self._guard:
                self.active -= 1


def test_concurrent_fetches_use_the_session_one_at_a_time():
    session = CountingSession({"1": EVENTS_CSV, "2": NEWS_CSV, "3": PROFILE_CSV})
    client = SheetsClient(
        SheetsConfig(tab_gids={EVENTS_TAB: 1, NEWS_TAB: 2, PROFILE_TAB: 3}),
        session=session,
    )

    with concurrent.futures.ThreadPoolExecutor(max_workers=3) as pool:
        events = pool.submit(client.fetch_events, SHEET_URL, True)
        news = pool.submit(client.fetch_news_items, SHEET_URL, True)
        profile = pool.submit(client.fetch_church_profile, SHEET_URL, True)

        assert len(events.result()) == 2
        assert len(news.result()) == 1
        assert profile.result().name == "Grace Church"

    assert session.peak == 1
    assert len(session.calls) == 3
