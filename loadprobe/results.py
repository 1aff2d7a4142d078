from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable

import pandas as pd

LOGGER = logging.getLogger("loadprobe.results")

RESULTS_FILENAME = "load-results.csv"
SLOW_RESULTS_FILENAME = "slow-results.csv"

RESULTS_COLUMNS: tuple[str, ...] = ("timestamp", "url", "load_ms", "status", "error")
SLOW_RESULTS_COLUMNS: tuple[str, ...] = ("timestamp", "url", "load_ms")

STATUS_OK = "OK"
STATUS_ERROR = "ERROR"
UNKNOWN_DURATION_MS = -1


class SinkWriteError(Exception):
    """Raised when a row or header cannot be persisted to a result stream."""


def format_timestamp(moment: datetime) -> str:
    return moment.strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]


def escape_field(value: object) -> str:
    """Quote a CSV field when it contains a comma, double quote or line break."""
    if value is None:
        return ""
    text = str(value)
    if "," in text or '"' in text or "\n" in text or "\r" in text:
        return '"' + text.replace('"', '""') + '"'
    return text


def format_row(fields: Iterable[object]) -> str:
    return ",".join(escape_field(field) for field in fields) + "\n"


@dataclass(frozen=True)
class Attempt:
    target: str
    duration_ms: int = UNKNOWN_DURATION_MS
    opened_at: datetime | None = None
    error: str | None = None

    @property
    def status(self) -> str:
        if self.error is None and self.duration_ms >= 0:
            return STATUS_OK
        return STATUS_ERROR

    @property
    def ok(self) -> bool:
        return self.status == STATUS_OK

    @classmethod
    def failed(cls, target: str, exc: BaseException, opened_at: datetime | None = None) -> Attempt:
        return cls(
            target=target,
            duration_ms=UNKNOWN_DURATION_MS,
            opened_at=opened_at,
            error=describe_error(exc),
        )


def describe_error(exc: BaseException) -> str:
    return f"{type(exc).__name__}: {exc}"


class CsvStream:
    """Append-only CSV file whose header is written once, before the first row.

    Not synchronised on its own; callers serialise access (see ResultSink).
    """

    def __init__(self, path: Path | str, columns: Iterable[str]) -> None:
        self._path = Path(path)
        self._header = format_row(columns)
        self.header_written = False

    @property
    def path(self) -> Path:
        return self._path

    def append(self, fields: Iterable[object]) -> None:
        line = format_row(fields)
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._path, "a", encoding="utf-8", newline="") as handle:
                if not self.header_written:
                    handle.write(self._header)
                    handle.flush()
                    self.header_written = True
                handle.write(line)
        except OSError as exc:
            raise SinkWriteError(f"failed to write {self._path}: {exc}") from exc


class ResultSink:
    """Thread-safe writer for the all-attempts and slow-attempts CSV files."""

    def __init__(
        self,
        results_path: Path | str,
        slow_results_path: Path | str,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._results = CsvStream(results_path, RESULTS_COLUMNS)
        self._slow_results = CsvStream(slow_results_path, SLOW_RESULTS_COLUMNS)
        self._clock = clock
        self._lock = threading.Lock()

    @property
    def results_path(self) -> Path:
        return self._results.path

    @property
    def slow_results_path(self) -> Path:
        return self._slow_results.path

    def append_attempt(self, attempt: Attempt) -> bool:
        fields = (
            format_timestamp(self._clock()),
            attempt.target,
            attempt.duration_ms,
            attempt.status,
            attempt.error or "",
        )
        return self._append(self._results, fields)

    def append_slow(self, attempt: Attempt) -> bool:
        opened_at = attempt.opened_at if attempt.opened_at is not None else self._clock()
        fields = (format_timestamp(opened_at), attempt.target, attempt.duration_ms)
        return self._append(self._slow_results, fields)

    def _append(self, stream: CsvStream, fields: tuple[object, ...]) -> bool:
        with self._lock:
            try:
                stream.append(fields)
            except SinkWriteError as exc:
                LOGGER.error("Dropping result row: %s", exc)
                return False
        return True


def read_results(path: Path | str) -> pd.DataFrame:
    """Load an all-attempts file written by ResultSink.

    Files are appended across runs, so header rows repeated by later runs are
    dropped before ``load_ms`` is converted to integers. Rows with too many
    fields or a non-numeric ``load_ms`` (e.g. left behind by an older writer
    or a torn line) are skipped with a warning.
    """
    path = Path(path)
    if not path.exists():
        return pd.DataFrame(columns=list(RESULTS_COLUMNS))
    frame = pd.read_csv(path, dtype=str, keep_default_na=False, on_bad_lines="skip")
    frame = frame[frame["timestamp"] != RESULTS_COLUMNS[0]]
    load_ms = pd.to_numeric(frame["load_ms"], errors="coerce")
    malformed = int(load_ms.isna().sum())
    if malformed:
        LOGGER.warning("Skipping %d malformed row(s) in %s", malformed, path)
    frame = frame[load_ms.notna()].reset_index(drop=True)
    frame["load_ms"] = load_ms.dropna().astype("int64").to_numpy()
    return frame


def summarise_results(frame: pd.DataFrame) -> dict[str, int]:
    if frame.empty:
        return {}
    return {str(status): int(count) for status, count in frame["status"].value_counts().items()}


__all__ = [
    "Attempt",
    "CsvStream",
    "ResultSink",
    "SinkWriteError",
    "escape_field",
    "format_timestamp",
    "read_results",
    "summarise_results",
]
