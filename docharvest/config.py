"""Runtime configuration resolved from ``DOCHARVEST_*`` environment variables."""

import logging.config
import os
from pathlib import Path
from typing import Optional


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name, "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


def _env_list(name: str) -> list[str]:
    raw = os.getenv(name, "")
    return [item.strip() for item in raw.split(",") if item.strip()]


DATA_DIR = Path(os.getenv("DOCHARVEST_DATA_DIR", "data")).resolve()

BASE_URL = os.getenv(
    "DOCHARVEST_BASE_URL", "https://documentation.galaktika-soft.com/xafari/"
)

# Total pages considered per crawl run (reused + fetched)
MAX_PAGES = _env_int("DOCHARVEST_MAX_PAGES", 300)

# Newly fetched resources per crawl run; 0 means unlimited
MAX_NEW_PAGES = _env_int("DOCHARVEST_MAX_NEW_PAGES", 0)

REQUEST_TIMEOUT = _env_int("DOCHARVEST_REQUEST_TIMEOUT", 15)  # seconds

USER_AGENT = os.getenv("DOCHARVEST_USER_AGENT", "docharvest-crawler/1.0")

# Empty list keeps code blocks of every language
CODE_LANGUAGES = _env_list("DOCHARVEST_CODE_LANGUAGES")

FETCH_ON_MISS = _env_bool("DOCHARVEST_FETCH_ON_MISS")

LOG_LEVEL = os.getenv("DOCHARVEST_LOG_LEVEL", "INFO").upper()
LOG_FILE = os.getenv("DOCHARVEST_LOG_FILE") or None

_JSON_FORMAT = (
    '{"time": "%(asctime)s", "level": "%(levelname)s", '
    '"logger": "%(name)s", "message": "%(message)s"}'
)


def configure_logging(level: str = LOG_LEVEL, log_file: Optional[str] = LOG_FILE) -> None:
    """Install the JSON-line console handler, plus a file handler when *log_file* is set."""
    handlers: dict = {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "json",
        },
    }
    if log_file:
        log_path = Path(log_file)
        if not log_path.is_absolute():
            log_path = DATA_DIR / log_path
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers["file"] = {
            "class": "logging.FileHandler",
            "formatter": "json",
            "filename": str(log_path),
            "encoding": "utf-8",
        }

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "json": {"format": _JSON_FORMAT},
            },
            "handlers": handlers,
            "root": {"level": level, "handlers": list(handlers)},
        }
    )
