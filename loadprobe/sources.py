from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Iterable

LOGGER = logging.getLogger("loadprobe.sources")

HEADER_PREFIX = "url"


class LoadError(Exception):
    """Raised when the target list cannot be loaded or is empty."""


def parse_targets(lines: Iterable[str]) -> list[str]:
    """Extract target identifiers from a newline-delimited list.

    Blank lines are ignored. The first non-blank line is treated as a header and
    skipped when its first comma field starts with ``url`` (any case). Every
    other line contributes its first comma field, trimmed, unless that is empty.
    """
    targets: list[str] = []
    first = True
    for raw in lines:
        line = raw.strip()
        if not line:
            continue
        field = line.split(",", 1)[0].strip()
        if first:
            first = False
            if field.lower().startswith(HEADER_PREFIX):
                continue
        if field:
            targets.append(field)
    return targets


class TargetSource:
    """Loads the target list once and shares it read-only with every worker."""

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()
        self._targets: tuple[str, ...] | None = None

    @property
    def loaded(self) -> bool:
        return self._targets is not None

    def ensure_loaded(self) -> tuple[str, ...]:
        targets = self._targets
        if targets is not None:
            return targets
        with self._lock:
            if self._targets is None:
                self._targets = self._load()
            return self._targets

    def _load(self) -> tuple[str, ...]:
        LOGGER.info("Loading targets from %s", self._path)
        try:
            with open(self._path, "r", encoding="utf-8-sig") as handle:
                targets = tuple(parse_targets(handle))
        except FileNotFoundError as exc:
            raise LoadError(f"target list not found: {self._path}") from exc
        except (OSError, UnicodeDecodeError) as exc:
            raise LoadError(f"unable to read target list {self._path}: {exc}") from exc

        if not targets:
            raise LoadError(f"target list {self._path} contains no targets")
        LOGGER.info("Loaded %d target(s)", len(targets))
        return targets


__all__ = ["LoadError", "TargetSource", "parse_targets"]
