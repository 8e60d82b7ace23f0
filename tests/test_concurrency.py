"""Batch harness tests.

Workers are real threads; items sleep for varying times so completion order
differs from submission order.
"""

from __future__ import annotations

import random
import threading
import time

from issuetriage.concurrency import (
    BatchProcessor,
    ConcurrencyConfig,
    get_optimal_worker_count,
)
from issuetriage.logging import configure_logging
from issuetriage.models import Issue, Result


def _issues(n: int) -> list[Issue]:
    return [Issue(org="acme", repo="widgets", number=i + 1, title=f"issue {i + 1}") for i in range(n)]


def test_concurrency_config_defaults():
    config = ConcurrencyConfig()
    assert config.max_workers == 1
    assert config.queue_size == 1


def test_concurrency_config_clamps_and_sizes_queue():
    config = ConcurrencyConfig(max_workers=0)
    assert config.max_workers == 1
    assert ConcurrencyConfig(max_workers=4).queue_size == 4
    assert ConcurrencyConfig(max_workers=4, queue_size=16).queue_size == 16


def test_output_order_matches_input_order():
    issues = _issues(25)
    rng = random.Random(3)
    delays = {i.number: rng.uniform(0, 0.02) for i in issues}
    finished: list[int] = []
    lock = threading.Lock()

    def run_item(issue: Issue) -> Result:
        time.sleep(delays[issue.number])
        with lock:
            finished.append(issue.number)
        return Result(issue_number=issue.number)

    records = BatchProcessor(ConcurrencyConfig(max_workers=4)).process(issues, run_item)

    assert len(records) == len(issues)
    for i, rec in enumerate(records):
        assert rec.index == i
        assert rec.issue == issues[i]
        assert rec.result is not None and rec.result.issue_number == issues[i].number
    assert sorted(finished) == [i.number for i in issues]


def test_parallelism_is_bounded():
    active = 0
    peak = 0
    lock = threading.Lock()

    def run_item(issue: Issue) -> Result:
        nonlocal active, peak
        with lock:
            active += 1
            peak = max(peak, active)
        time.sleep(0.01)
        with lock:
            active -= 1
        return Result(issue_number=issue.number)

    BatchProcessor(ConcurrencyConfig(max_workers=3)).process(_issues(12), run_item)
    assert 1 <= peak <= 3


def test_failure_is_isolated_to_its_item():
    def run_item(issue: Issue) -> Result:
        if issue.number == 2:
            raise ValueError("vector store unavailable")
        return Result(issue_number=issue.number)

    records = BatchProcessor(ConcurrencyConfig(max_workers=2)).process(_issues(4), run_item)
    assert [r.ok for r in records] == [True, False, True, True]
    assert isinstance(records[1].error, ValueError)
    assert records[1].result is None
    assert records[1].issue.number == 2


def test_each_item_gets_its_own_result():
    seen: list[int] = []

    def run_item(issue: Issue) -> Result:
        result = Result(issue_number=issue.number)
        result.suggested_labels.append(f"n{issue.number}")
        seen.append(id(result))
        return result

    records = BatchProcessor(ConcurrencyConfig(max_workers=3)).process(_issues(6), run_item)
    assert len(set(seen)) == 6
    assert [r.result.suggested_labels for r in records] == [[f"n{i}"] for i in range(1, 7)]  # type: ignore[union-attr]


def test_empty_batch():
    assert BatchProcessor(ConcurrencyConfig(max_workers=2)).process([], lambda i: Result()) == []


def test_get_optimal_worker_count():
    assert get_optimal_worker_count(3) == 1
    assert get_optimal_worker_count(10) == 2
    assert get_optimal_worker_count(30) == 3
    assert get_optimal_worker_count(100) == 4
    assert get_optimal_worker_count(100, max_workers=8) == 8
    assert get_optimal_worker_count(30, max_workers=2) == 2


def test_worker_failure_log_redacts_tokens(capsys):
    configure_logging(json_logging=True)
    token = "ghp_" + "a" * 36

    def run_item(issue: Issue) -> Result:
        raise RuntimeError(f"401 from tracker using {token}")

    records = BatchProcessor(ConcurrencyConfig(max_workers=1)).process(_issues(1), run_item)
    out = capsys.readouterr().out
    configure_logging()

    assert not records[0].ok
    assert "[worker 0] acme/widgets#1 failed" in out
    assert token not in out
    assert "<redacted>" in out
