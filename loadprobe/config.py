from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from .measure import BROWSERS, DEFAULT_PAGE_LOAD_TIMEOUT_S
from .pool import DEFAULT_SLOW_THRESHOLD_MS
from .results import RESULTS_FILENAME, SLOW_RESULTS_FILENAME

LOGGER = logging.getLogger("loadprobe.config")

DEFAULT_THREADS = 8
DEFAULT_DURATION_MINUTES = 10
DEFAULT_URLS_PATH = "urls.csv"
DEFAULT_OUTPUT_DIR = "target"
DEFAULT_BROWSER = "firefox"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class HarnessConfig:
    """Settings for a single load run."""

    urls_path: Path = Path(DEFAULT_URLS_PATH)
    output_dir: Path = Path(DEFAULT_OUTPUT_DIR)
    threads: int = DEFAULT_THREADS
    duration_seconds: float = DEFAULT_DURATION_MINUTES * 60.0
    slow_threshold_ms: int = DEFAULT_SLOW_THRESHOLD_MS
    page_load_timeout_s: float = DEFAULT_PAGE_LOAD_TIMEOUT_S
    headless: bool = False
    browser: str = DEFAULT_BROWSER

    def __post_init__(self) -> None:
        if self.threads <= 0:
            raise ValueError("threads must be > 0")
        if self.duration_seconds <= 0:
            raise ValueError("duration_seconds must be > 0")
        if self.slow_threshold_ms < 0:
            raise ValueError("slow_threshold_ms must be >= 0")
        if self.page_load_timeout_s <= 0:
            raise ValueError("page_load_timeout_s must be > 0")
        if self.browser not in BROWSERS:
            raise ValueError(f"browser must be one of {', '.join(BROWSERS)}")

    @property
    def duration_minutes(self) -> float:
        return self.duration_seconds / 60

    @property
    def results_path(self) -> Path:
        return self.output_dir / RESULTS_FILENAME

    @property
    def slow_results_path(self) -> Path:
        return self.output_dir / SLOW_RESULTS_FILENAME


def parse_positive_int(value: str | int | None, default: int, name: str = "value") -> int:
    """Parse a positive integer, falling back to ``default`` on missing or invalid input."""
    if value is None or value == "":
        return default
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        LOGGER.warning("invalid %s %r; defaulting to %d", name, value, default)
        return default
    if parsed <= 0:
        LOGGER.warning("non-positive %s %r; defaulting to %d", name, value, default)
        return default
    return parsed


def parse_non_negative_int(value: str | int | None, default: int, name: str = "value") -> int:
    if value is None or value == "":
        return default
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        LOGGER.warning("invalid %s %r; defaulting to %d", name, value, default)
        return default
    if parsed < 0:
        LOGGER.warning("negative %s %r; defaulting to %d", name, value, default)
        return default
    return parsed


def parse_positive_float(value: str | float | None, default: float, name: str = "value") -> float:
    if value is None or value == "":
        return default
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        LOGGER.warning("invalid %s %r; defaulting to %s", name, value, default)
        return default
    if parsed <= 0:
        LOGGER.warning("non-positive %s %r; defaulting to %s", name, value, default)
        return default
    return parsed


def parse_bool(value: str | bool | None, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return default
    normalised = value.strip().lower()
    if normalised in _TRUE_VALUES:
        return True
    if normalised in _FALSE_VALUES:
        return False
    return default


__all__ = [
    "HarnessConfig",
    "parse_bool",
    "parse_non_negative_int",
    "parse_positive_float",
    "parse_positive_int",
]
