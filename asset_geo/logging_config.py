"""
Logging configuration.
One JSON object per line in production, human-readable in development.
"""

from __future__ import annotations

import logging
import sys

import json_log_formatter

from asset_geo.config import get_settings

SERVICE_NAME = "asset-geo"


class AssetGeoJSONFormatter(json_log_formatter.JSONFormatter):
    """Adds level, logger and service to every JSON record."""

    def json_record(self, message: str, extra: dict, record: logging.LogRecord) -> dict:
        payload = super().json_record(message, extra, record)
        payload["level"] = record.levelname
        payload["logger"] = record.name
        payload["service"] = SERVICE_NAME
        return payload


def setup_logging() -> None:
    settings = get_settings()
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    if settings.env == "production":
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(AssetGeoJSONFormatter())

        root = logging.getLogger()
        root.setLevel(level)
        root.handlers = [handler]
    else:
        _setup_basic_logging(level)

    # asyncpg is chatty at DEBUG; APScheduler logs every job run at INFO
    logging.getLogger("asyncpg").setLevel(logging.WARNING)
    logging.getLogger("apscheduler.executors").setLevel(logging.WARNING)
    logging.getLogger("apscheduler.scheduler").setLevel(logging.INFO)


def _setup_basic_logging(level: int) -> None:
    """Human-readable logging for development."""
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)-8s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
