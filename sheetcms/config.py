"""Configuration loading for sheetcms."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional
from xml.etree import ElementTree as ET

logger = logging.getLogger(__name__)

EVENTS_TAB = "Events"
NEWS_TAB = "News"
PROFILE_TAB = "ChurchProfile"
TABS = (EVENTS_TAB, NEWS_TAB, PROFILE_TAB)

_GID_ELEMENTS = {"events": EVENTS_TAB, "news": NEWS_TAB, "profile": PROFILE_TAB}


def _default_gids() -> Dict[str, int]:
    # Every tab is exported from the first sub-sheet unless configured.
    return {tab: 0 for tab in TABS}


@dataclass
class SheetsConfig:
    host: str = "docs.google.com"
    connect_timeout: float = 30.0
    read_timeout: float = 30.0
    tab_gids: Dict[str, int] = field(default_factory=_default_gids)


@dataclass
class LoggingConfig:
    level: str = "INFO"
    file: Optional[str] = None


@dataclass
class DatabaseConfig:
    connection_string: str = "sqlite:///sheetcms.db"


@dataclass
class AppConfig:
    sheets: SheetsConfig = field(default_factory=SheetsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)


def _resolve_path(base_path: Path, target_path: str) -> str:
    """Resolve a path relative to the base config file if it's not absolute."""
    target = Path(target_path)
    if target.is_absolute():
        return str(target)
    return str((base_path.parent / target).resolve())


def _parse_number(node: ET.Element, tag: str, default: float) -> float:
    text = node.findtext(tag)
    if text is None or not text.strip():
        return default
    try:
        return float(text)
    except ValueError:
        raise ValueError(f"<{tag}> must be a number, got {text!r}")


def parse_app_config(path: str) -> AppConfig:
    """Parse the main application configuration XML."""
    config_path = Path(path).resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    logger.info("Loading application configuration from %s", config_path)
    tree = ET.parse(config_path)
    root = tree.getroot()

    # Sheets
    sheets = SheetsConfig()
    sheets_node = root.find("sheets")
    if sheets_node is not None:
        sheets.host = (sheets_node.findtext("host") or sheets.host).strip()
        sheets.connect_timeout = _parse_number(
            sheets_node, "connect-timeout", sheets.connect_timeout
        )
        sheets.read_timeout = _parse_number(
            sheets_node, "read-timeout", sheets.read_timeout
        )
        gids_node = sheets_node.find("gids")
        if gids_node is not None:
            for element, tab in _GID_ELEMENTS.items():
                gid = _parse_number(gids_node, element, sheets.tab_gids[tab])
                sheets.tab_gids[tab] = int(gid)

    # Logging
    logging_config = LoggingConfig()
    log_node = root.find("logging")
    if log_node is not None:
        logging_config.level = log_node.findtext("level", "INFO")
        log_file = log_node.findtext("file")
        if log_file:
            logging_config.file = _resolve_path(config_path, log_file)

    # Database
    db_config = DatabaseConfig()
    db_node = root.find("database")
    if db_node is not None:
        connection_string = db_node.findtext("connection-string")
        if connection_string:
            db_config.connection_string = connection_string.strip()

    return AppConfig(sheets=sheets, logging=logging_config, database=db_config)


def load_app_config(path: Optional[str]) -> AppConfig:
    """Return defaults when no configuration file was requested."""
    if not path:
        logger.info("No configuration file given; using defaults")
        return AppConfig()
    return parse_app_config(path)
