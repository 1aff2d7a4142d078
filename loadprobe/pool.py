from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Callable

from .dispatch import RoundRobinDispatcher
from .results import Attempt, ResultSink

if TYPE_CHECKING:
    from .measure import MeasurementResult

LOGGER = logging.getLogger("loadprobe.pool")

DEFAULT_SLOW_THRESHOLD_MS = 20_000

WorkFn = Callable[[str], Attempt]


@dataclass
class WorkerTally:
    attempts: int = 0
    errors: int = 0
    slow: int = 0
    dropped: int = 0


@dataclass
class PoolStatistics:
    workers: int
    attempts: int
    errors: int
    slow: int
    dropped: int
    started_at: float
    finished_at: float

    @property
    def duration_s(self) -> float:
        return max(self.finished_at - self.started_at, 0.0)

    @property
    def throughput_per_minute(self) -> float:
        if self.duration_s == 0:
            return 0.0
        return self.attempts / self.duration_s * 60.0


class WorkerPool:
    """Runs a fixed number of worker threads until a shared wall-clock deadline.

    Each worker repeatedly claims the next target from the dispatcher, runs the
    work function on it and records the attempt. The deadline is only checked
    before starting an iteration, so a run can overshoot it by one attempt.
    """

    def __init__(
        self,
        dispatcher: RoundRobinDispatcher,
        sink: ResultSink,
        slow_threshold_ms: int = DEFAULT_SLOW_THRESHOLD_MS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._dispatcher = dispatcher
        self._sink = sink
        self._slow_threshold_ms = slow_threshold_ms
        self._clock = clock

    def run(self, worker_count: int, deadline: float, work_fn: WorkFn) -> PoolStatistics:
        if worker_count <= 0:
            raise ValueError("worker_count must be > 0")

        tallies = [WorkerTally() for _ in range(worker_count)]
        threads = [
            threading.Thread(
                target=self._worker,
                args=(index, deadline, work_fn, tallies[index]),
                name=f"loadprobe-worker-{index}",
            )
            for index in range(worker_count)
        ]

        started_at = self._clock()
        LOGGER.info("Starting %d worker(s)", worker_count)
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        finished_at = self._clock()

        stats = PoolStatistics(
            workers=worker_count,
            attempts=sum(tally.attempts for tally in tallies),
            errors=sum(tally.errors for tally in tallies),
            slow=sum(tally.slow for tally in tallies),
            dropped=sum(tally.dropped for tally in tallies),
            started_at=started_at,
            finished_at=finished_at,
        )
        LOGGER.info(
            "All workers finished: %d attempt(s), %d error(s), %d slow in %.1fs",
            stats.attempts,
            stats.errors,
            stats.slow,
            stats.duration_s,
        )
        return stats

    def run_for(self, worker_count: int, duration_seconds: float, work_fn: WorkFn) -> PoolStatistics:
        return self.run(worker_count, self._clock() + duration_seconds, work_fn)

    def _worker(self, index: int, deadline: float, work_fn: WorkFn, tally: WorkerTally) -> None:
        LOGGER.debug("Worker %d started", index)
        while self._clock() < deadline:
            target = self._dispatcher.next()
            attempt = self._attempt(target, work_fn)
            self._record(attempt, tally)
        LOGGER.debug("Worker %d reached its deadline after %d attempt(s)", index, tally.attempts)

    def _attempt(self, target: str, work_fn: WorkFn) -> Attempt:
        opened_at = datetime.now()
        try:
            return work_fn(target)
        except Exception as exc:  # noqa: BLE001
            return Attempt.failed(target, exc, opened_at=opened_at)

    def _record(self, attempt: Attempt, tally: WorkerTally) -> None:
        tally.attempts += 1
        if not attempt.ok:
            tally.errors += 1
            LOGGER.warning("Attempt against %s failed: %s", attempt.target, attempt.error or "no duration")
        else:
            LOGGER.debug("Attempt against %s took %d ms", attempt.target, attempt.duration_ms)

        if not self._sink.append_attempt(attempt):
            tally.dropped += 1
        if attempt.duration_ms >= self._slow_threshold_ms:
            tally.slow += 1
            if not self._sink.append_slow(attempt):
                tally.dropped += 1


def measurement_work(measure: Callable[[str], MeasurementResult]) -> WorkFn:
    """Adapt a measurement capability returning a MeasurementResult into a work function."""

    def work(target: str) -> Attempt:
        return measure(target).to_attempt(target)

    return work


__all__ = [
    "DEFAULT_SLOW_THRESHOLD_MS",
    "PoolStatistics",
    "WorkerPool",
    "measurement_work",
]
