"""Command-line interface for the sheetcms application."""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import logging
import pprint
from datetime import datetime
from pathlib import Path
from typing import Any, List, Optional, Tuple

from . import queries
from .app import App, create_app, refresh_all, reset_app
from .config import AppConfig, load_app_config
from .settings import set_sheet_url
from .sheets import check_connection

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Create the CLI argument parser."""
    parser = argparse.ArgumentParser(
        description="Mirror a Google Sheets content document into a local cache."
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to the main configuration XML file.",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (e.g. DEBUG, INFO, WARNING). Overrides config.",
    )
    parser.add_argument(
        "--log-file",
        default=None,
        help="Optional path to a log file. Overrides config.",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    set_url = commands.add_parser("set-url", help="Validate and store the sheet URL.")
    set_url.add_argument("url")

    commands.add_parser("show-url", help="Print the configured sheet URL.")

    test = commands.add_parser(
        "test-connection", help="Fetch every tab and report what was found."
    )
    test.add_argument("--url", default=None, help="Test this URL instead.")

    refresh = commands.add_parser("refresh", help="Refresh the cache from the sheet.")
    refresh.add_argument(
        "kind", nargs="?", default="all", choices=["all", "events", "news", "profile"]
    )

    events = commands.add_parser("events", help="List cached events.")
    events.add_argument("--search", default=None)
    events.add_argument("--category", action="append", default=[])
    events.add_argument("--featured", action="store_true")
    events.add_argument("--upcoming", action="store_true")

    news = commands.add_parser("news", help="List cached news, newest first.")
    news.add_argument("--limit", type=int, default=None)
    news.add_argument("--urgent-first", action="store_true")
    news.add_argument("--days", type=int, default=None)
    news.add_argument("--category", action="append", default=[])

    commands.add_parser("profile", help="Show the cached church profile.")
    commands.add_parser("categories", help="Count events and news per category.")
    commands.add_parser("reset", help="Clear the sheet URL and every cached record.")

    return parser


def configure_logging(level_name: str, log_file: Optional[str] = None) -> None:
    """Initialise logging according to options."""
    log_level = getattr(logging, level_name.upper(), None)
    if not isinstance(log_level, int):
        raise ValueError(f"Unsupported log level: {level_name}")

    formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    root_logger.setLevel(log_level)

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    root_logger.addHandler(stream_handler)

    if log_file:
        log_path = Path(log_file)
        if log_path.parent and not log_path.parent.exists():
            log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)
        logger.debug(
            "Logger initialised with level %s and file output to %s",
            level_name.upper(),
            log_path,
        )
    else:
        logger.debug(
            "Logger initialised with console output at level %s", level_name.upper()
        )


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Cannot serialise {type(value).__name__}")


def _dump(payload: Any) -> str:
    if dataclasses.is_dataclass(payload):
        payload = dataclasses.asdict(payload)
    elif isinstance(payload, list):
        payload = [
            dataclasses.asdict(item) if dataclasses.is_dataclass(item) else item
            for item in payload
        ]
    return json.dumps(payload, indent=2, ensure_ascii=False, default=_json_default)


async def _list_events(app: App, args: argparse.Namespace) -> Tuple[int, str]:
    result = await app.events.load()
    if not result.ok:
        logger.error("%s", result.message)
        return 1, ""
    if result.is_soft:
        logger.warning("%s", result.message)

    events = await app.event_store.get_all()
    events = queries.search_with_filters(
        events, args.search, args.category, featured_only=args.featured
    )
    if args.upcoming:
        events = queries.upcoming_events(events)
    return 0, _dump(events)


async def _list_news(app: App, args: argparse.Namespace) -> Tuple[int, str]:
    result = await app.news.load()
    if not result.ok:
        logger.error("%s", result.message)
        return 1, ""
    if result.is_soft:
        logger.warning("%s", result.message)

    items = await app.news_store.get_all()
    if args.days is not None:
        items = queries.news_from_last_days(items, args.days)
    items = queries.filter_news_by_categories(items, args.category)
    return 0, _dump(queries.latest_news(items, args.limit, args.urgent_first))


async def _show_profile(app: App) -> Tuple[int, str]:
    result = await app.profile.load()
    if not result.ok:
        logger.error("%s", result.message)
        return 1, ""
    profile = await app.profile_store.get()
    if profile is None:
        return 0, "null"
    payload = dataclasses.asdict(profile)
    payload["completeness"] = queries.profile_completeness(profile)
    return 0, _dump(payload)


async def _refresh(app: App, kind: str) -> Tuple[int, str]:
    if kind == "all":
        results = await refresh_all(app)
    else:
        repository = {"events": app.events, "news": app.news, "profile": app.profile}[kind]
        results = {kind: await repository.refresh()}

    summary = {
        name: {"ok": result.ok, "message": result.message}
        for name, result in results.items()
    }
    exit_code = 0 if all(result.ok for result in results.values()) else 1
    return exit_code, _dump(summary)


async def run_command(app: App, args: argparse.Namespace) -> Tuple[int, str]:
    """Execute one parsed command against a live application graph."""
    command = args.command
    if command == "set-url":
        result = await set_sheet_url(app.settings, args.url)
        if not result.ok:
            raise ValueError(result.message)
        return 0, result.value
    if command == "show-url":
        return 0, await app.settings.get_url() or ""
    if command == "test-connection":
        url = args.url or await app.settings.get_url()
        report = await asyncio.to_thread(check_connection, app.client, url)
        return (0 if report.successful else 1), report.message
    if command == "refresh":
        return await _refresh(app, args.kind)
    if command == "events":
        return await _list_events(app, args)
    if command == "news":
        return await _list_news(app, args)
    if command == "profile":
        return await _show_profile(app)
    if command == "categories":
        await asyncio.gather(app.events.load(), app.news.load())
        counts = queries.category_counts(
            await app.event_store.get_all(), await app.news_store.get_all()
        )
        return 0, _dump(counts)
    if command == "reset":
        await reset_app(app)
        return 0, "Configuration and cache cleared."
    raise ValueError(f"Unknown command: {command}")


async def _execute(app_config: AppConfig, args: argparse.Namespace) -> Tuple[int, str]:
    app = await create_app(app_config)
    try:
        return await run_command(app, args)
    finally:
        await app.close()


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        app_config = load_app_config(args.config)

        # Determine logging settings (CLI overrides Config)
        log_level = args.log_level or app_config.logging.level
        log_file = args.log_file or app_config.logging.file

        configure_logging(log_level, log_file)

        config_dict = dataclasses.asdict(app_config)
        logger.debug("Active Configuration:\n%s", pprint.pformat(config_dict))

        exit_code, output_text = asyncio.run(_execute(app_config, args))
    except ValueError as exc:
        parser.error(str(exc))
    except (RuntimeError, FileNotFoundError) as exc:
        logger.error("%s", exc)
        return 1
    except Exception:  # noqa: BLE001
        logger.exception("Unexpected error during execution.")
        return 1

    if output_text:
        print(output_text)
    return exit_code
