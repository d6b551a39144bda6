"""Persistent named settings: the sheet URL and preferred categories."""

from __future__ import annotations

import json
import logging
from typing import AsyncIterator, Collection, List, Optional

from sqlalchemy import delete
from sqlalchemy.orm import Session, sessionmaker

from .db import SettingModel, run_db
from .flow import StateFlow
from .models import Result
from .sheets import validate_sheet_url

logger = logging.getLogger(__name__)

SHEET_URL_KEY = "sheet_url"
PREFERRED_CATEGORIES_KEY = "preferred_categories"


class SettingsStore:
    """Key/value settings with change notification."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory
        self.writes = StateFlow(0)

    def _read(self, key: str) -> Optional[str]:
        with self._session_factory() as session:
            row = session.get(SettingModel, key)
            return row.value if row is not None else None

    def _write(self, key: str, value: Optional[str]) -> None:
        with self._session_factory() as session:
            session.merge(SettingModel(key=key, value=value))
            try:
                session.commit()
            except Exception:
                session.rollback()
                raise

    def _remove(self, key: Optional[str]) -> None:
        with self._session_factory() as session:
            stmt = delete(SettingModel)
            if key is not None:
                stmt = stmt.where(SettingModel.key == key)
            session.execute(stmt)
            try:
                session.commit()
            except Exception:
                session.rollback()
                raise

    def _notify(self) -> None:
        self.writes.update(lambda count: count + 1)

    async def get(self, key: str) -> Optional[str]:
        return await run_db(self._read, key)

    async def set(self, key: str, value: Optional[str]) -> None:
        await run_db(self._write, key, value)
        logger.debug("Updated setting %s", key)
        self._notify()

    async def delete(self, key: str) -> None:
        await run_db(self._remove, key)
        self._notify()

    async def observe(self, key: str) -> AsyncIterator[Optional[str]]:
        """Yield the value of ``key`` now and after every change to it."""
        sentinel = object()
        last = sentinel
        async for _ in self.writes.subscribe():
            value = await self.get(key)
            if value != last:
                last = value
                yield value

    async def clear(self) -> None:
        """Remove every setting."""
        await run_db(self._remove, None)
        logger.info("Cleared all settings")
        self._notify()

    # Sheet URL

    async def set_url(self, url: str) -> None:
        await self.set(SHEET_URL_KEY, url)

    async def get_url(self) -> Optional[str]:
        return await self.get(SHEET_URL_KEY)

    def observe_url(self) -> AsyncIterator[Optional[str]]:
        return self.observe(SHEET_URL_KEY)

    # Preferred categories

    async def get_preferred_categories(self) -> List[str]:
        return _decode_categories(await self.get(PREFERRED_CATEGORIES_KEY))

    async def set_preferred_categories(self, categories: Collection[str]) -> None:
        cleaned = []
        for category in categories:
            category = category.strip()
            if category and category not in cleaned:
                cleaned.append(category)
        await self.set(PREFERRED_CATEGORIES_KEY, json.dumps(cleaned, ensure_ascii=False))

    async def add_preferred_category(self, category: str) -> List[str]:
        current = await self.get_preferred_categories()
        if category not in current:
            current.append(category)
            await self.set_preferred_categories(current)
        return current

    async def remove_preferred_category(self, category: str) -> List[str]:
        current = await self.get_preferred_categories()
        if category in current:
            current.remove(category)
            await self.set_preferred_categories(current)
        return current

    async def is_preferred_category(self, category: str) -> bool:
        return category in await self.get_preferred_categories()

    async def reset_preferred_categories(
        self, defaults: Collection[str] = ()
    ) -> List[str]:
        await self.set_preferred_categories(defaults)
        return await self.get_preferred_categories()

    async def observe_preferred_categories(self) -> AsyncIterator[List[str]]:
        async for raw in self.observe(PREFERRED_CATEGORIES_KEY):
            yield _decode_categories(raw)


def _decode_categories(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    try:
        decoded = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Ignoring undecodable preferred categories: %r", raw)
        return []
    if not isinstance(decoded, list):
        return []
    return [str(item) for item in decoded]


async def set_sheet_url(settings: SettingsStore, url: str) -> Result:
    """Validate and persist the document URL."""
    reason = validate_sheet_url(url)
    if reason is not None:
        return Result.failure(reason)
    try:
        await settings.set_url(url.strip())
    except Exception as exc:  # noqa: BLE001 - reported to the caller
        logger.error("Failed to save sheet URL: %s", exc)
        return Result.failure(f"Failed to save sheet URL: {exc}")
    return Result.success(url.strip())


async def is_configured(settings: SettingsStore) -> bool:
    url = await settings.get_url()
    return bool(url and url.strip()) and validate_sheet_url(url) is None
