"""Logger configuration for the plan engine.

Call sites pass context as keyword arguments, e.g.
``logger.info("Plan materialized to calendar", plan_id=..., upserted_count=...)``.
Loguru keeps those in ``record["extra"]``; a patcher renders them once per
record so the console shows them as ``key=value`` pairs after the message and
the file sink writes one JSON object per line.
"""

import sys
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from loguru import logger

from plan_engine.config.settings import settings

# Keys the patcher adds to extra; never rendered as context.
_DERIVED_KEYS = frozenset({"component", "context"})

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[component]}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>{extra[context]}"
)


def format_context(values: Mapping[str, Any]) -> str:
    """Render log context as " | key=value ..." sorted by key, or "" when empty."""
    pairs = [f"{key}={value}" for key, value in sorted(values.items()) if key not in _DERIVED_KEYS and value is not None]
    if not pairs:
        return ""
    return " | " + " ".join(pairs)


def _patch_record(record: dict[str, Any]) -> None:
    extra = record["extra"]
    extra["component"] = record["name"].removeprefix("plan_engine.") if record["name"] else "-"
    extra["context"] = format_context(extra)


def setup_logger(
    level: str = "INFO",
    log_file: str | None = None,
    rotation: str = "10 MB",
    retention: str = "7 days",
) -> None:
    """Configure loguru with a console sink and an optional JSON-lines file sink.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path to log file. If None, only console logging.
        rotation: Log rotation size (e.g., "10 MB", "1 day")
        retention: Log retention period (e.g., "7 days", "1 month")
    """
    logger.remove()
    logger.configure(patcher=_patch_record)

    logger.add(sys.stderr, format=CONSOLE_FORMAT, level=level, colorize=True)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        logger.add(
            log_path,
            level=level,
            serialize=True,
            rotation=rotation,
            retention=retention,
            compression="zip",
            backtrace=True,
            diagnose=False,
        )

    logger.debug("Logger initialized", level=level, log_file=log_file)


setup_logger(level=settings.log_level, log_file=settings.log_file)
