"""Database layer caching the last successfully fetched sheet contents."""

from __future__ import annotations

import asyncio
import functools
import json
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import AsyncIterator, Callable, Generic, Iterable, List, Optional, TypeVar

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    String,
    Text,
    create_engine,
    delete,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .flow import StateFlow
from .models import EPOCH, ChurchProfile, Event, NewsItem

logger = logging.getLogger(__name__)

T = TypeVar("T")

PROFILE_ID = "default"

# One worker keeps SQLite access serialised and writes in submission order.
_DB_EXECUTOR = ThreadPoolExecutor(max_workers=1, thread_name_prefix="sheetcms-db")


async def run_db(func: Callable[..., T], *args) -> T:
    """Run blocking database work on the dedicated database thread."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(_DB_EXECUTOR, functools.partial(func, *args))


class Base(DeclarativeBase):
    pass


class EventModel(Base):
    """Cached event row."""

    __tablename__ = "events"

    id = Column(String, primary_key=True)
    title = Column(String, nullable=False, default="")
    date = Column(DateTime, nullable=False)
    category = Column(String, nullable=False, default="")
    location = Column(String, nullable=False, default="")
    description = Column(Text, nullable=False, default="")
    topic = Column(String, nullable=False, default="")
    bible_verse = Column(String, nullable=False, default="")
    pic_council_member = Column(String, nullable=False, default="")
    on_duty_council_members = Column(Text, nullable=False, default="[]")
    is_featured = Column(Boolean, nullable=False, default=False)


class NewsItemModel(Base):
    """Cached news row."""

    __tablename__ = "news_items"

    id = Column(String, primary_key=True)
    headline = Column(String, nullable=False, default="")
    publish_date = Column(DateTime, nullable=False)
    author = Column(String, nullable=False, default="")
    body = Column(Text, nullable=False, default="")
    category = Column(String, nullable=False, default="")
    scripture_reference = Column(String, nullable=False, default="")
    is_urgent = Column(Boolean, nullable=False, default=False)
    photo_url = Column(String, nullable=False, default="")
    related_event_id = Column(String, nullable=False, default="")


class ChurchProfileModel(Base):
    """The single cached profile row."""

    __tablename__ = "church_profile"

    id = Column(String, primary_key=True, default=PROFILE_ID)
    name = Column(String, nullable=False, default="")
    logo_url = Column(String, nullable=False, default="")
    welcome_message = Column(Text, nullable=False, default="")
    address = Column(String, nullable=False, default="")
    phone = Column(String, nullable=False, default="")
    website = Column(String, nullable=False, default="")
    email = Column(String, nullable=False, default="")
    mission = Column(Text, nullable=False, default="")
    service_times = Column(String, nullable=False, default="")
    social_facebook = Column(String, nullable=False, default="")


class SettingModel(Base):
    """Named application setting."""

    __tablename__ = "settings"

    key = Column(String, primary_key=True)
    value = Column(Text, nullable=True)


def init_engine(connection_string: Optional[str]) -> Optional[Engine]:
    """Initialize the database engine."""
    if not connection_string:
        return None

    logger.info("Initializing database connection: %s", connection_string)
    kwargs = {}
    if connection_string.startswith("sqlite"):
        # Store calls run on worker threads.
        kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in connection_string or connection_string == "sqlite://":
            kwargs["poolclass"] = StaticPool
    engine = create_engine(connection_string, **kwargs)
    Base.metadata.create_all(engine)
    return engine


def get_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Return a session factory for the given engine."""
    return sessionmaker(bind=engine, expire_on_commit=False)


def _to_column_time(value: datetime) -> datetime:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _from_column_time(value: Optional[datetime]) -> datetime:
    if value is None:
        return EPOCH
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _decode_list(raw: Optional[str]) -> List[str]:
    if not raw or not raw.strip():
        return []
    try:
        decoded = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Ignoring undecodable list column: %r", raw)
        return []
    if not isinstance(decoded, list):
        return []
    return [str(item) for item in decoded]


def event_to_row(event: Event) -> EventModel:
    return EventModel(
        id=event.id,
        title=event.title,
        date=_to_column_time(event.date),
        category=event.category,
        location=event.location,
        description=event.description,
        topic=event.topic,
        bible_verse=event.bible_verse,
        pic_council_member=event.pic_council_member,
        on_duty_council_members=json.dumps(
            list(event.on_duty_council_members), ensure_ascii=False
        ),
        is_featured=bool(event.is_featured),
    )


def event_from_row(row: EventModel) -> Event:
    return Event(
        id=row.id,
        title=row.title or "",
        date=_from_column_time(row.date),
        category=row.category or "",
        location=row.location or "",
        description=row.description or "",
        topic=row.topic or "",
        bible_verse=row.bible_verse or "",
        pic_council_member=row.pic_council_member or "",
        on_duty_council_members=_decode_list(row.on_duty_council_members),
        is_featured=bool(row.is_featured),
    )


def news_item_to_row(item: NewsItem) -> NewsItemModel:
    return NewsItemModel(
        id=item.id,
        headline=item.headline,
        publish_date=_to_column_time(item.publish_date),
        author=item.author,
        body=item.body,
        category=item.category,
        scripture_reference=item.scripture_reference,
        is_urgent=bool(item.is_urgent),
        photo_url=item.photo_url,
        related_event_id=item.related_event_id,
    )


def news_item_from_row(row: NewsItemModel) -> NewsItem:
    return NewsItem(
        id=row.id,
        headline=row.headline or "",
        publish_date=_from_column_time(row.publish_date),
        author=row.author or "",
        body=row.body or "",
        category=row.category or "",
        scripture_reference=row.scripture_reference or "",
        is_urgent=bool(row.is_urgent),
        photo_url=row.photo_url or "",
        related_event_id=row.related_event_id or "",
    )


def profile_to_row(profile: ChurchProfile) -> ChurchProfileModel:
    return ChurchProfileModel(
        id=PROFILE_ID,
        name=profile.name,
        logo_url=profile.logo_url,
        welcome_message=profile.welcome_message,
        address=profile.address,
        phone=profile.phone,
        website=profile.website,
        email=profile.email,
        mission=profile.mission,
        service_times=profile.service_times,
        social_facebook=profile.social_facebook,
    )


def profile_from_row(row: ChurchProfileModel) -> ChurchProfile:
    return ChurchProfile(
        name=row.name or "",
        logo_url=row.logo_url or "",
        welcome_message=row.welcome_message or "",
        address=row.address or "",
        phone=row.phone or "",
        website=row.website or "",
        email=row.email or "",
        mission=row.mission or "",
        service_times=row.service_times or "",
        social_facebook=row.social_facebook or "",
    )


class _Table(Generic[T]):
    """Async access to one cached table.

    Every successful write bumps ``writes``; observers re-read the table
    on each bump, so they see writes in the order they were committed.
    """

    model: type
    order_by: tuple
    to_row: Callable[[T], Base]
    from_row: Callable[[Base], T]

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory
        self.writes = StateFlow(0)

    def _notify(self) -> None:
        self.writes.update(lambda count: count + 1)

    def _query(self, stmt) -> List[T]:
        with self._session_factory() as session:
            rows = session.execute(stmt).scalars().all()
            return [type(self).from_row(row) for row in rows]

    def _commit(self, session: Session) -> None:
        try:
            session.commit()
        except Exception:
            session.rollback()
            raise

    def _replace(self, records: List[T]) -> None:
        with self._session_factory() as session:
            session.execute(delete(self.model))
            session.add_all(type(self).to_row(record) for record in records)
            self._commit(session)

    def _delete_all(self) -> None:
        with self._session_factory() as session:
            session.execute(delete(self.model))
            self._commit(session)

    async def get_all(self) -> List[T]:
        stmt = select(self.model).order_by(*self.order_by)
        return await run_db(self._query, stmt)

    async def observe_all(self) -> AsyncIterator[List[T]]:
        async for _ in self.writes.subscribe():
            yield await self.get_all()

    async def delete_all(self) -> None:
        await run_db(self._delete_all)
        logger.info("Cleared %s cache", self.model.__tablename__)
        self._notify()


class _KeyedTable(_Table[T]):
    async def get_by_id(self, record_id: str) -> Optional[T]:
        def load() -> Optional[T]:
            with self._session_factory() as session:
                row = session.get(self.model, record_id)
                return type(self).from_row(row) if row is not None else None

        return await run_db(load)

    async def get_by_category(self, category: str) -> List[T]:
        stmt = (
            select(self.model)
            .where(self.model.category == category)
            .order_by(*self.order_by)
        )
        return await run_db(self._query, stmt)

    async def replace_all(self, records: Iterable[T]) -> None:
        """Atomically swap the table contents; later duplicate ids win."""
        unique = {record.id: record for record in records}
        await run_db(self._replace, list(unique.values()))
        logger.info(
            "Stored %d rows in %s", len(unique), self.model.__tablename__
        )
        self._notify()


class EventStore(_KeyedTable[Event]):
    model = EventModel
    order_by = (EventModel.date.asc(), EventModel.id.asc())
    to_row = staticmethod(event_to_row)
    from_row = staticmethod(event_from_row)

    async def get_upcoming(self, now: datetime, limit: int = 10) -> List[Event]:
        stmt = (
            select(EventModel)
            .where(EventModel.date >= _to_column_time(now))
            .order_by(*self.order_by)
            .limit(limit)
        )
        return await run_db(self._query, stmt)


class NewsItemStore(_KeyedTable[NewsItem]):
    model = NewsItemModel
    order_by = (NewsItemModel.publish_date.desc(), NewsItemModel.id.asc())
    to_row = staticmethod(news_item_to_row)
    from_row = staticmethod(news_item_from_row)

    async def get_by_date_range(
        self, start: datetime, end: datetime
    ) -> List[NewsItem]:
        stmt = (
            select(NewsItemModel)
            .where(
                NewsItemModel.publish_date >= _to_column_time(start),
                NewsItemModel.publish_date <= _to_column_time(end),
            )
            .order_by(*self.order_by)
        )
        return await run_db(self._query, stmt)


class ChurchProfileStore(_Table[ChurchProfile]):
    model = ChurchProfileModel
    order_by = (ChurchProfileModel.id.asc(),)
    to_row = staticmethod(profile_to_row)
    from_row = staticmethod(profile_from_row)

    async def get(self) -> Optional[ChurchProfile]:
        profiles = await self.get_all()
        return profiles[0] if profiles else None

    async def observe(self) -> AsyncIterator[Optional[ChurchProfile]]:
        async for profiles in self.observe_all():
            yield profiles[0] if profiles else None

    async def replace(self, profile: ChurchProfile) -> None:
        await run_db(self._replace, [profile])
        logger.info("Stored church profile '%s'", profile.name)
        self._notify()
