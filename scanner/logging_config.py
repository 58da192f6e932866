"""Logging bootstrap for the scanner service."""
from __future__ import annotations

import logging
from logging.config import dictConfig
from pathlib import Path
from typing import Any, Dict, Optional

RUNTIME_LOG = "scanner-runtime.log"
SCAN_LOG = "scanner-scans.log"

# Third-party loggers that log every request at INFO.
_NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access")
# Pipeline loggers whose records also go to the per-scan history file.
_SCAN_LOGGERS = ("scanner.session_manager", "scanner.backend")


def _rotating_file(path: Path, level: str, retention_days: int) -> Dict[str, Any]:
    return {
        "class": "logging.handlers.TimedRotatingFileHandler",
        "formatter": "default",
        "level": level,
        "filename": str(path),
        "when": "midnight",
        "backupCount": max(int(retention_days), 1),
        "utc": True,
        "delay": True,
        "encoding": "utf-8",
    }


def configure_logging(level: str = "INFO", log_dir: Optional[Path] = None, retention_days: int = 14) -> None:
    """Console plus daily rotating runtime log; scan pipeline records are also kept in their own file."""

    log_dir = Path(log_dir or Path(__file__).resolve().parents[1] / "logs").expanduser()
    log_dir.mkdir(parents=True, exist_ok=True)
    level = str(level).upper()
    is_debug = logging.getLevelName(level) == logging.DEBUG

    loggers: Dict[str, Dict[str, Any]] = {
        name: {"level": level if is_debug else "WARNING"} for name in _NOISY_LOGGERS
    }
    for name in _SCAN_LOGGERS:
        loggers[name] = {"handlers": ["scan_file"], "propagate": True}

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {"format": "%(asctime)s | %(levelname)s | %(name)s | %(message)s"},
            },
            "handlers": {
                "console": {"class": "logging.StreamHandler", "formatter": "default", "level": level},
                "runtime_file": _rotating_file(log_dir / RUNTIME_LOG, level, retention_days),
                "scan_file": _rotating_file(log_dir / SCAN_LOG, "INFO", retention_days),
            },
            "loggers": loggers,
            "root": {"level": level, "handlers": ["console", "runtime_file"]},
        }
    )


__all__ = ["configure_logging", "RUNTIME_LOG", "SCAN_LOG"]
