"""Builds and tears down the shared stores, client and repositories."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, Optional

import requests
from sqlalchemy.engine import Engine

from . import db
from .config import AppConfig
from .models import Result
from .repositories import ChurchProfileRepository, EventRepository, NewsItemRepository
from .settings import SettingsStore
from .sheets import SheetsClient

logger = logging.getLogger(__name__)


@dataclass
class App:
    """Everything a front end needs, wired from one configuration."""

    engine: Engine
    client: SheetsClient
    settings: SettingsStore
    event_store: db.EventStore
    news_store: db.NewsItemStore
    profile_store: db.ChurchProfileStore
    events: EventRepository
    news: NewsItemRepository
    profile: ChurchProfileRepository

    async def close(self) -> None:
        for repository in (self.events, self.news, self.profile):
            await repository.close()
        self.client.close()
        self.engine.dispose()


async def create_app(
    config: AppConfig, session: Optional[requests.Session] = None
) -> App:
    """Create the application graph; must be awaited inside an event loop."""
    engine = db.init_engine(config.database.connection_string)
    if engine is None:
        raise ValueError("A database connection string is required.")
    session_factory = db.get_session_factory(engine)

    client = SheetsClient(config.sheets, session=session)
    settings = SettingsStore(session_factory)
    event_store = db.EventStore(session_factory)
    news_store = db.NewsItemStore(session_factory)
    profile_store = db.ChurchProfileStore(session_factory)

    # Read on every refresh so a new URL applies without rebuilding.
    url_provider = settings.get_url

    return App(
        engine=engine,
        client=client,
        settings=settings,
        event_store=event_store,
        news_store=news_store,
        profile_store=profile_store,
        events=EventRepository(client, event_store, url_provider),
        news=NewsItemRepository(client, news_store, url_provider),
        profile=ChurchProfileRepository(client, profile_store, url_provider),
    )


async def refresh_all(app: App) -> Dict[str, Result]:
    """Refresh the three repositories concurrently."""
    events, news, profile = await asyncio.gather(
        app.events.refresh(), app.news.refresh(), app.profile.refresh()
    )
    return {"events": events, "news": news, "profile": profile}


async def reset_app(app: App) -> None:
    """Forget the configured sheet and drop every cached record."""
    await app.settings.clear()
    await app.event_store.delete_all()
    await app.news_store.delete_all()
    await app.profile_store.delete_all()
    for repository in (app.events, app.news, app.profile):
        repository.clear_error()
    app.events.clear_selection()
    app.news.clear_selection()
    logger.info("Reset configuration and cached content")
