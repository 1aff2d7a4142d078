"""
Duration-bounded page load harness.

A fixed pool of worker threads cycles through a shared target list in
round-robin order until a wall-clock deadline, measuring each page load and
appending every attempt (and every slow attempt) to CSV result files.
"""

from .dispatch import RoundRobinDispatcher
from .main import main
from .pool import PoolStatistics, WorkerPool
from .results import Attempt, ResultSink
from .sources import LoadError, TargetSource

__all__ = [
    "Attempt",
    "LoadError",
    "PoolStatistics",
    "ResultSink",
    "RoundRobinDispatcher",
    "TargetSource",
    "WorkerPool",
    "main",
]
