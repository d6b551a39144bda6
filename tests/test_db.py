"""Tests for the database abstraction layer."""

import asyncio
from datetime import datetime, timezone

import pytest

from sheetcms import db
from sheetcms.models import ChurchProfile, Event, NewsItem


def _at(day, hour=0):
    return datetime(2024, 10, day, hour, tzinfo=timezone.utc)


@pytest.fixture
def event_store(session_factory):
    return db.EventStore(session_factory)


@pytest.fixture
def news_store(session_factory):
    return db.NewsItemStore(session_factory)


@pytest.fixture
def profile_store(session_factory):
    return db.ChurchProfileStore(session_factory)


def test_init_engine_without_connection_string():
    assert db.init_engine("") is None
    assert db.init_engine(None) is None


def test_event_row_codec_keeps_empty_values():
    event = Event(id="evt-1", date=_at(20, 18))

    restored = db.event_from_row(db.event_to_row(event))

    assert restored == event
    assert restored.on_duty_council_members == []
    assert restored.date.tzinfo == timezone.utc


def test_decode_list_tolerates_bad_column():
    row = db.event_to_row(Event(id="evt-1"))
    row.on_duty_council_members = "not json"

    assert db.event_from_row(row).on_duty_council_members == []


@pytest.mark.asyncio
async def test_replace_all_round_trips_events(event_store):
    events = [
        Event(
            id="evt-2",
            title="Prayer",
            date=_at(21),
            category="Prayer",
            on_duty_council_members=["John", "Jane"],
            is_featured=True,
        ),
        Event(id="evt-1", title="Youth Night", date=_at(20), category="Youth"),
    ]

    await event_store.replace_all(events)

    stored = await event_store.get_all()
    assert [event.id for event in stored] == ["evt-1", "evt-2"]
    assert stored[1] == events[0]


@pytest.mark.asyncio
async def test_replace_all_swaps_contents(event_store):
    await event_store.replace_all([Event(id="a"), Event(id="b")])
    await event_store.replace_all([Event(id="c")])

    assert [event.id for event in await event_store.get_all()] == ["c"]

    await event_store.replace_all([])

    assert await event_store.get_all() == []


@pytest.mark.asyncio
async def test_replace_all_keeps_last_duplicate(event_store):
    await event_store.replace_all(
        [Event(id="a", title="first"), Event(id="a", title="second")]
    )

    stored = await event_store.get_all()
    assert len(stored) == 1
    assert stored[0].title == "second"


@pytest.mark.asyncio
async def test_get_by_id_and_category(event_store):
    await event_store.replace_all(
        [
            Event(id="a", category="Youth", date=_at(2)),
            Event(id="b", category="Outreach", date=_at(1)),
            Event(id="c", category="Youth", date=_at(1)),
        ]
    )

    assert (await event_store.get_by_id("b")).category == "Outreach"
    assert await event_store.get_by_id("missing") is None
    assert [e.id for e in await event_store.get_by_category("Youth")] == ["c", "a"]


@pytest.mark.asyncio
async def test_get_upcoming_limits_and_orders(event_store):
    await event_store.replace_all(
        [Event(id=str(day), date=_at(day)) for day in range(1, 20)]
    )

    upcoming = await event_store.get_upcoming(_at(5), limit=3)

    assert [event.id for event in upcoming] == ["5", "6", "7"]


@pytest.mark.asyncio
async def test_news_ordered_newest_first_and_date_range(news_store):
    await news_store.replace_all(
        [
            NewsItem(id="old", publish_date=_at(1)),
            NewsItem(id="new", publish_date=_at(10), is_urgent=True),
            NewsItem(id="mid", publish_date=_at(5)),
        ]
    )

    assert [item.id for item in await news_store.get_all()] == ["new", "mid", "old"]
    in_range = await news_store.get_by_date_range(_at(2), _at(10))
    assert [item.id for item in in_range] == ["new", "mid"]
    assert (await news_store.get_by_id("new")).is_urgent is True


@pytest.mark.asyncio
async def test_profile_replace_keeps_single_row(profile_store):
    assert await profile_store.get() is None

    await profile_store.replace(ChurchProfile(name="Grace"))
    await profile_store.replace(ChurchProfile(name="Hope", phone="555"))

    assert await profile_store.get_all() == [ChurchProfile(name="Hope", phone="555")]


@pytest.mark.asyncio
async def test_delete_all(event_store, profile_store):
    await event_store.replace_all([Event(id="a")])
    await profile_store.replace(ChurchProfile(name="Grace"))

    await event_store.delete_all()
    await profile_store.delete_all()

    assert await event_store.get_all() == []
    assert await profile_store.get() is None


@pytest.mark.asyncio
async def test_observe_all_emits_each_committed_snapshot(event_store):
    seen = []
    stream = event_store.observe_all()

    seen.append(await stream.__anext__())
    await event_store.replace_all([Event(id="a")])
    seen.append(await stream.__anext__())
    await event_store.replace_all([Event(id="a"), Event(id="b")])
    seen.append(await stream.__anext__())
    await stream.aclose()

    assert [[event.id for event in snapshot] for snapshot in seen] == [
        [],
        ["a"],
        ["a", "b"],
    ]


@pytest.mark.asyncio
async def test_profile_observe_follows_replacements(profile_store):
    stream = profile_store.observe()

    assert await stream.__anext__() is None
    await profile_store.replace(ChurchProfile(name="Grace"))
    assert (await asyncio.wait_for(stream.__anext__(), 1)).name == "Grace"
    await stream.aclose()
