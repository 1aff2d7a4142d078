from __future__ import annotations

import threading
import time
from datetime import datetime

import pandas as pd
import pytest

from loadprobe.dispatch import RoundRobinDispatcher
from loadprobe.measure import MeasurementResult
from loadprobe.pool import PoolStatistics, WorkerPool, measurement_work
from loadprobe.results import Attempt, ResultSink


def make_pool(tmp_path, targets=("https://a.example", "https://b.example"), **kwargs):
    sink = ResultSink(tmp_path / "load-results.csv", tmp_path / "slow-results.csv")
    return WorkerPool(RoundRobinDispatcher(list(targets)), sink, **kwargs), sink


def read_rows(path):
    if not path.exists():
        return pd.DataFrame()
    return pd.read_csv(path, dtype=str, keep_default_na=False)


def test_no_measurement_starts_after_deadline(tmp_path):
    pool, sink = make_pool(tmp_path)
    latency = 0.05
    duration = 0.4
    starts: list[float] = []
    starts_lock = threading.Lock()

    def work(target):
        with starts_lock:
            starts.append(time.time())
        time.sleep(latency)
        return Attempt(target, 50)

    began = time.time()
    deadline = began + duration
    stats = pool.run(4, deadline, work)
    elapsed = time.time() - began

    assert starts
    # starts are stamped just after the loop-top check
    assert max(starts) < deadline + 0.02
    assert elapsed >= duration
    assert elapsed < duration + latency + 0.5
    assert stats.attempts == len(starts)
    assert len(read_rows(sink.results_path)) == stats.attempts


def test_expired_deadline_runs_nothing(tmp_path):
    pool, sink = make_pool(tmp_path)

    def work(target):
        raise AssertionError("should not be called")

    stats = pool.run(3, time.time() - 1, work)

    assert stats.attempts == 0
    assert not sink.results_path.exists()


def test_worker_failures_become_error_rows(tmp_path):
    pool, sink = make_pool(tmp_path)

    def work(target):
        time.sleep(0.01)
        if "b.example" in target:
            raise RuntimeError("browser crashed")
        return Attempt(target, 100, opened_at=datetime.now())

    stats = pool.run_for(2, 0.3, work)

    rows = read_rows(sink.results_path)
    assert stats.attempts == len(rows)
    assert stats.errors > 0
    failed = rows[rows["url"] == "https://b.example"]
    assert not failed.empty
    assert set(failed["status"]) == {"ERROR"}
    assert set(failed["load_ms"]) == {"-1"}
    assert set(failed["error"]) == {"RuntimeError: browser crashed"}
    passed = rows[rows["url"] == "https://a.example"]
    assert set(passed["status"]) == {"OK"}
    assert stats.errors == len(failed)


def test_slow_attempts_are_written_to_both_streams(tmp_path):
    pool, sink = make_pool(tmp_path, slow_threshold_ms=20_000)
    opened = datetime(2024, 1, 2, 3, 4, 5, 600000)
    durations = {"https://a.example": 25_000, "https://b.example": 5_000}

    def work(target):
        time.sleep(0.01)
        return Attempt(target, durations[target], opened_at=opened)

    stats = pool.run_for(1, 0.2, work)

    rows = read_rows(sink.results_path)
    slow_rows = read_rows(sink.slow_results_path)
    assert set(rows["status"]) == {"OK"}
    assert set(slow_rows["url"]) == {"https://a.example"}
    assert set(slow_rows["load_ms"]) == {"25000"}
    assert set(slow_rows["timestamp"]) == {"2024-01-02 03:04:05.600"}
    assert len(slow_rows) == (rows["url"] == "https://a.example").sum()
    assert stats.slow == len(slow_rows)


def test_threshold_is_inclusive(tmp_path):
    pool, sink = make_pool(tmp_path, targets=("https://a.example",), slow_threshold_ms=1_000)

    def work(target):
        time.sleep(0.01)
        return Attempt(target, 1_000)

    stats = pool.run_for(1, 0.05, work)

    assert stats.slow == stats.attempts > 0


def test_dropped_rows_are_counted(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("", encoding="utf-8")
    sink = ResultSink(blocker / "load-results.csv", blocker / "slow-results.csv")
    pool = WorkerPool(RoundRobinDispatcher(["https://a.example"]), sink)

    def work(target):
        time.sleep(0.01)
        return Attempt(target, 10)

    stats = pool.run_for(2, 0.1, work)

    assert stats.attempts > 0
    assert stats.dropped == stats.attempts


def test_worker_count_must_be_positive(tmp_path):
    pool, _ = make_pool(tmp_path)

    with pytest.raises(ValueError):
        pool.run(0, time.time() + 1, lambda target: Attempt(target, 1))


def test_statistics_throughput():
    stats = PoolStatistics(workers=2, attempts=30, errors=0, slow=0, dropped=0, started_at=100.0, finished_at=130.0)

    assert stats.duration_s == 30.0
    assert stats.throughput_per_minute == 60.0


def test_measurement_work_builds_attempts():
    opened = datetime(2024, 1, 1)
    work = measurement_work(lambda target: MeasurementResult(duration_ms=42, opened_at=opened))

    assert work("https://a.example") == Attempt("https://a.example", 42, opened_at=opened)
