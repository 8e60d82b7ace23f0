"""Bounded-concurrency batch harness.

A fixed pool of worker threads pulls ``(index, issue)`` jobs from a bounded
queue fed by a single producer. Each worker runs the item callback to
completion and pushes a :class:`BatchRecord` onto a results queue. Once every
worker has been joined the records are reassembled by index, so the output
order always matches the input order whatever order items finished in.
"""

from __future__ import annotations

import queue
import threading
import time
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

from .errors import redact
from .logging import get_logger
from .models import Issue, Result

_STOP = object()


class ConcurrencyConfig:
    """Configuration for batch concurrency."""

    def __init__(self, max_workers: int = 1, queue_size: int | None = None):
        self.max_workers = max(1, int(max_workers))
        self.queue_size = queue_size if queue_size and queue_size > 0 else self.max_workers


@dataclass
class BatchRecord:
    index: int
    issue: Issue
    result: Result | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


ItemRunner = Callable[[Issue], Result]


class BatchProcessor:
    """Runs one callback per issue on a bounded worker pool."""

    def __init__(self, config: ConcurrencyConfig) -> None:
        self.config = config
        self.logger = get_logger()

    def process(self, issues: Sequence[Issue], run_item: ItemRunner) -> list[BatchRecord]:
        total = len(issues)
        if total == 0:
            return []
        workers = min(self.config.max_workers, total)
        jobs: queue.Queue[object] = queue.Queue(maxsize=self.config.queue_size)
        results: queue.Queue[BatchRecord] = queue.Queue()

        self.logger.log_operation("batch_start", issue_count=total, max_workers=workers)
        start_time = time.perf_counter()

        def _worker(worker_id: int) -> None:
            while True:
                job = jobs.get()
                if job is _STOP:
                    return
                index, issue = job  # type: ignore[misc]
                self.logger.debug(
                    f"[worker {worker_id}] processing {issue.key}", worker=worker_id
                )
                try:
                    record = BatchRecord(index, issue, result=run_item(issue))
                except Exception as exc:
                    self.logger.log_error(
                        f"[worker {worker_id}] {issue.key} failed", error=redact(str(exc))
                    )
                    record = BatchRecord(index, issue, error=exc)
                results.put(record)

        def _produce() -> None:
            for index, issue in enumerate(issues):
                jobs.put((index, issue))
            for _ in range(workers):
                jobs.put(_STOP)

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="triage") as pool:
            futures = [pool.submit(_worker, i) for i in range(workers)]
            producer = threading.Thread(target=_produce, name="triage-producer", daemon=True)
            producer.start()
            # surface any harness-level exception instead of losing it
            for fut in futures:
                fut.result()
            producer.join()

        by_index: dict[int, BatchRecord] = {}
        while not results.empty():
            record = results.get_nowait()
            by_index[record.index] = record
        ordered = [by_index[i] for i in range(total)]

        duration_ms = (time.perf_counter() - start_time) * 1000
        self.logger.log_performance(
            "batch",
            duration_ms,
            issue_count=total,
            failed=sum(1 for r in ordered if not r.ok),
        )
        return ordered


def get_optimal_worker_count(issue_count: int, max_workers: int = 4) -> int:
    """Get a sensible worker count for a batch of ``issue_count`` issues."""
    small_threshold = 5
    medium_threshold = 20
    large_threshold = 50
    if issue_count <= small_threshold:
        return 1
    elif issue_count <= medium_threshold:
        return min(2, max_workers)
    elif issue_count <= large_threshold:
        return min(3, max_workers)
    else:
        return max_workers


__all__ = [
    "BatchProcessor",
    "BatchRecord",
    "ConcurrencyConfig",
    "ItemRunner",
    "get_optimal_worker_count",
]
