"""Repositories that own the published state of each content kind.

Each repository mirrors its cache table into observable state for the
lifetime of the process and refreshes the table from the sheet on
demand. A failed refresh falls back to whatever the cache last held.
Public operations report problems through :class:`Result` values and
the ``error`` state instead of raising.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import re
from typing import Any, AsyncIterator, Awaitable, Callable, Generic, List, Optional, TypeVar

from .db import ChurchProfileStore, EventStore, NewsItemStore
from .flow import StateFlow
from .models import ChurchProfile, Event, NewsItem, Result
from .sheets import SheetsClient

logger = logging.getLogger(__name__)

T = TypeVar("T")

UrlProvider = Callable[[], Awaitable[Optional[str]]]

NOT_CONFIGURED = "Google Sheets URL not configured"
CACHED_DATA_PREFIX = "Using cached data."

EMAIL_PATTERN = re.compile(r"^[A-Za-z0-9+_.-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$")


class _Repository:
    label = "items"

    def __init__(self, client: SheetsClient, url_provider: UrlProvider) -> None:
        self._client = client
        self._url_provider = url_provider
        self.is_loading = StateFlow(False)
        self.error: StateFlow[Optional[str]] = StateFlow(None)
        self._mirrored = asyncio.Event()
        self._observer = asyncio.get_running_loop().create_task(
            self._mirror_cache(), name=f"mirror-{self.label}"
        )

    def _observe_cache(self) -> AsyncIterator[Any]:
        raise NotImplementedError

    def _publish(self, value: Any) -> None:
        raise NotImplementedError

    def _has_data(self) -> bool:
        raise NotImplementedError

    async def _read_cache(self) -> Any:
        raise NotImplementedError

    async def _fetch_and_store(self, url: str) -> None:
        raise NotImplementedError

    async def _mirror_cache(self) -> None:
        try:
            async for value in self._observe_cache():
                self._publish(value)
                self._mirrored.set()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Stopped mirroring %s cache", self.label)
        finally:
            self._mirrored.set()

    async def close(self) -> None:
        """Stop mirroring the cache; only needed at shutdown."""
        self._observer.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._observer

    def clear_error(self) -> None:
        self.error.set(None)

    async def _sheet_url(self) -> Optional[str]:
        try:
            url = await self._url_provider()
        except Exception as exc:  # noqa: BLE001 - treated as unconfigured
            logger.warning("Could not read sheet URL: %s", exc)
            return None
        if not url or not url.strip():
            return None
        return url.strip()

    async def load(self) -> Result:
        """Refresh only when the cache has nothing to publish."""
        await self._mirrored.wait()
        if self._has_data():
            return Result.success()
        return await self.refresh()

    async def refresh(self) -> Result:
        """Fetch the tab, replace the cache and let the mirror publish it."""
        self.is_loading.set(True)
        self.error.set(None)

        url = await self._sheet_url()
        if url is None:
            self.error.set(NOT_CONFIGURED)
            self.is_loading.set(False)
            return Result.failure(NOT_CONFIGURED)

        try:
            await self._fetch_and_store(url)
        except Exception as exc:  # noqa: BLE001 - falls back to the cache
            return await self._fall_back(exc)

        self.is_loading.set(False)
        logger.info("Refreshed %s from %s", self.label, url)
        return Result.success()

    async def _fall_back(self, exc: Exception) -> Result:
        cause = str(exc) or type(exc).__name__
        logger.warning("Refreshing %s failed: %s", self.label, cause)

        try:
            cached = await self._read_cache()
        except Exception as cache_exc:  # noqa: BLE001
            logger.error("Reading cached %s failed: %s", self.label, cache_exc)
            cached = None

        if cached:
            self._publish(cached)
            message = f"{CACHED_DATA_PREFIX} {cause}"
            self.error.set(message)
            self.is_loading.set(False)
            logger.warning("Serving cached %s", self.label)
            return Result.success(message=message)

        message = cause or f"Failed to load {self.label}"
        self.error.set(message)
        self.is_loading.set(False)
        return Result.failure(message)


class _CollectionRepository(_Repository, Generic[T]):
    not_found = "Item not found"

    def __init__(
        self,
        client: SheetsClient,
        store: Any,
        url_provider: UrlProvider,
    ) -> None:
        self._store = store
        self.items: StateFlow[List[T]] = StateFlow([])
        self.selected: StateFlow[Optional[T]] = StateFlow(None)
        super().__init__(client, url_provider)

    def _observe_cache(self) -> AsyncIterator[List[T]]:
        return self._store.observe_all()

    def _publish(self, value: List[T]) -> None:
        self.items.set(list(value))

    def _has_data(self) -> bool:
        return bool(self.items.value)

    async def _read_cache(self) -> List[T]:
        return await self._store.get_all()

    def _download(self, url: str) -> List[T]:
        raise NotImplementedError

    async def _fetch_and_store(self, url: str) -> None:
        records = await asyncio.to_thread(self._download, url)
        await self._store.replace_all(records)

    async def _lookup(self, item_id: str) -> Optional[T]:
        for item in self.items.value:
            if item.id == item_id:
                return item
        return await self._store.get_by_id(item_id)

    async def select_item(self, item_id: str) -> None:
        """Point ``selected`` at ``item_id`` or report it as missing."""
        try:
            item = await self._lookup(item_id)
        except Exception as exc:  # noqa: BLE001
            logger.error("Looking up %s %s failed: %s", self.label, item_id, exc)
            item = None

        if item is None:
            self.error.set(f"{self.not_found}: {item_id}")
            return
        self.selected.set(item)

    def clear_selection(self) -> None:
        self.selected.set(None)

    async def get_by_id(self, item_id: str) -> Result:
        try:
            item = await self._lookup(item_id)
        except Exception as exc:  # noqa: BLE001
            return Result.failure(str(exc) or f"{self.not_found}: {item_id}")
        if item is None:
            return Result.failure(f"{self.not_found}: {item_id}")
        return Result.success(item)


class EventRepository(_CollectionRepository[Event]):
    label = "events"
    not_found = "Event not found"

    def __init__(
        self, client: SheetsClient, store: EventStore, url_provider: UrlProvider
    ) -> None:
        super().__init__(client, store, url_provider)

    def _download(self, url: str) -> List[Event]:
        return self._client.fetch_events(url, strict=True)


class NewsItemRepository(_CollectionRepository[NewsItem]):
    label = "news items"
    not_found = "News item not found"

    def __init__(
        self, client: SheetsClient, store: NewsItemStore, url_provider: UrlProvider
    ) -> None:
        super().__init__(client, store, url_provider)

    def _download(self, url: str) -> List[NewsItem]:
        return self._client.fetch_news_items(url, strict=True)


def validate_profile(profile: ChurchProfile) -> Optional[str]:
    """Return the first problem with a locally edited profile, if any."""
    if not profile.name.strip():
        return "Church name is required"
    if profile.email and not EMAIL_PATTERN.match(profile.email):
        return "Invalid email format"
    if profile.website and not profile.website.startswith(("http://", "https://")):
        return "Invalid website URL format"
    if profile.phone and not any(char.isdigit() for char in profile.phone):
        return "Invalid phone number format"
    return None


class ChurchProfileRepository(_Repository):
    label = "church profile"

    def __init__(
        self,
        client: SheetsClient,
        store: ChurchProfileStore,
        url_provider: UrlProvider,
    ) -> None:
        self._store = store
        self.profile: StateFlow[Optional[ChurchProfile]] = StateFlow(None)
        super().__init__(client, url_provider)

    def _observe_cache(self) -> AsyncIterator[Optional[ChurchProfile]]:
        return self._store.observe()

    def _publish(self, value: Optional[ChurchProfile]) -> None:
        self.profile.set(value)

    def _has_data(self) -> bool:
        return self.profile.value is not None

    async def _read_cache(self) -> Optional[ChurchProfile]:
        return await self._store.get()

    async def _fetch_and_store(self, url: str) -> None:
        profile = await asyncio.to_thread(
            self._client.fetch_church_profile, url, strict=True
        )
        if profile is None:
            logger.info("Profile tab has no rows; keeping cached profile")
            return
        await self._store.replace(profile)

    async def update_profile(self, profile: ChurchProfile) -> Result:
        """Overwrite the cached profile with a local edit.

        The next successful refresh replaces it with the sheet's copy.
        """
        reason = validate_profile(profile)
        if reason is not None:
            return Result.failure(reason)
        try:
            await self._store.replace(profile)
        except Exception as exc:  # noqa: BLE001
            logger.error("Saving church profile failed: %s", exc)
            return Result.failure(f"Failed to save church profile: {exc}")
        return Result.success(profile)
