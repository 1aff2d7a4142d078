from __future__ import annotations

import contextlib
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

from playwright.sync_api import sync_playwright

from .results import UNKNOWN_DURATION_MS, Attempt, describe_error

LOGGER = logging.getLogger("loadprobe.measure")

BROWSERS: tuple[str, ...] = ("firefox", "chromium", "webkit")
DEFAULT_PAGE_LOAD_TIMEOUT_S = 60.0
SANITY_CHECK_URL = "https://www.example.com"

# Navigation Timing Level 2 first, legacy performance.timing second.
NAVIGATION_TIMING_SCRIPT = """
() => {
  const nav = performance.getEntriesByType('navigation')[0];
  if (nav) { return Math.round(nav.duration); }
  const t = performance.timing;
  if (t && t.loadEventEnd && t.navigationStart) { return t.loadEventEnd - t.navigationStart; }
  return -1;
}
"""


class MeasurementError(Exception):
    """Raised when a page loaded but no usable load duration could be read."""


@dataclass(frozen=True)
class MeasurementResult:
    duration_ms: int = UNKNOWN_DURATION_MS
    opened_at: datetime | None = None
    error: str | None = None

    def to_attempt(self, target: str) -> Attempt:
        return Attempt(
            target=target,
            duration_ms=self.duration_ms,
            opened_at=self.opened_at,
            error=self.error,
        )


class PlaywrightMeasurer:
    """Loads each target in a fresh browser and reads its navigation timing.

    A new browser is launched per call, so one instance can be shared by every
    worker thread. The page-load timeout bounds how long a single call may block.
    """

    def __init__(
        self,
        browser: str = "firefox",
        headless: bool = False,
        page_load_timeout_s: float = DEFAULT_PAGE_LOAD_TIMEOUT_S,
        playwright_factory: Callable[[], Any] = sync_playwright,
    ) -> None:
        if browser not in BROWSERS:
            raise ValueError(f"unsupported browser {browser!r}; expected one of {', '.join(BROWSERS)}")
        self._browser = browser
        self._headless = headless
        self._timeout_ms = page_load_timeout_s * 1000.0
        self._playwright_factory = playwright_factory

    def __call__(self, target: str) -> MeasurementResult:
        duration_ms = UNKNOWN_DURATION_MS
        opened_at: datetime | None = None
        error: str | None = None

        with self._playwright_factory() as playwright:
            browser = self._launch(playwright)
            try:
                page = browser.new_page()
                opened_at = datetime.now()
                page.goto(target, wait_until="load", timeout=self._timeout_ms)
                duration_ms = _as_duration(page.evaluate(NAVIGATION_TIMING_SCRIPT))
            except Exception as exc:  # noqa: BLE001
                error = describe_error(exc)
                LOGGER.debug("Measurement of %s failed: %s", target, error)
            finally:
                with contextlib.suppress(Exception):
                    browser.close()

        return MeasurementResult(duration_ms=duration_ms, opened_at=opened_at, error=error)

    def page_title(self, url: str = SANITY_CHECK_URL) -> str:
        with self._playwright_factory() as playwright:
            browser = self._launch(playwright)
            try:
                page = browser.new_page()
                page.goto(url, wait_until="load", timeout=self._timeout_ms)
                return page.title()
            finally:
                with contextlib.suppress(Exception):
                    browser.close()

    def sanity_check(self, url: str = SANITY_CHECK_URL, expected: str = "example") -> bool:
        title = self.page_title(url)
        LOGGER.info("Sanity check page title: %r", title)
        return expected.lower() in title.lower()

    def _launch(self, playwright: Any) -> Any:
        return getattr(playwright, self._browser).launch(headless=self._headless)


def _as_duration(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        raise MeasurementError(f"navigation timing unavailable (got {value!r})")
    return int(round(value))


__all__ = [
    "BROWSERS",
    "MeasurementError",
    "MeasurementResult",
    "NAVIGATION_TIMING_SCRIPT",
    "PlaywrightMeasurer",
]
