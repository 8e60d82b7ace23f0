"""High-level entry points: triage one issue, or analyse a batch.

Batch runs are analysis only. Dependencies are forced into dry-run whatever
the configuration says, and the ``indexer`` step is dropped, so bulk runs
never write to the tracker or the vector store.
"""

from __future__ import annotations

import json
import threading
from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .concurrency import (
    BatchProcessor,
    BatchRecord,
    ConcurrencyConfig,
    get_optimal_worker_count,
)
from .config import ConfigError, TriageConfig
from .duplicates import ChainResolution, resolve_duplicate_chains
from .errors import redact
from .logging import StructuredLogger, configure_logging, get_logger
from .models import Issue, Result
from .pipeline import Context, Pipeline, StepObserver
from .registry import Dependencies, Registry, default_registry, resolve_steps

BATCH_EXCLUDED_STEPS = frozenset({"indexer"})


def setup_logging(cfg: TriageConfig) -> StructuredLogger:
    return configure_logging(json_logging=cfg.logging_json_enabled, level=cfg.logging_level)


def logging_observer(issue: Issue) -> StepObserver:
    logger = get_logger()

    def _observe(step: str, status: str, message: str) -> None:
        logger.log_step(step, status, issue.key, detail=message)

    return _observe


def run_issue(
    issue: Issue,
    pipeline: Pipeline,
    config: TriageConfig | None = None,
    *,
    cancel: threading.Event | None = None,
    observe: bool = True,
) -> Result:
    """Run ``pipeline`` for a single issue with a fresh context.

    Raises :class:`issuetriage.pipeline.StepFailedError` when a step fails.
    """
    ctx = Context(issue=issue, config=config, cancel=cancel or threading.Event())
    runner = pipeline.observed(logging_observer(issue)) if observe else pipeline
    runner.run(ctx)
    return ctx.result


@dataclass
class BatchReport:
    records: list[BatchRecord]
    chains: ChainResolution
    processed_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def successful(self) -> int:
        return sum(1 for r in self.records if r.ok)

    @property
    def failed(self) -> int:
        return len(self.records) - self.successful

    def to_dict(self) -> dict[str, Any]:
        results: list[dict[str, Any]] = []
        for rec in self.records:
            entry: dict[str, Any] = {"issue": rec.issue.to_dict()}
            if rec.result is not None:
                entry["result"] = rec.result.to_dict()
            if rec.error is not None:
                entry["error"] = redact(str(rec.error))
            results.append(entry)
        return {
            "processed_at": self.processed_at,
            "total_issues": len(self.records),
            "successful": self.successful,
            "failed": self.failed,
            "chains": self.chains.to_dict(),
            "results": results,
        }


def batch_step_names(step_names: Sequence[str]) -> list[str]:
    return [n for n in step_names if n not in BATCH_EXCLUDED_STEPS]


def run_batch(
    issues: Sequence[Issue],
    deps: Dependencies,
    config: TriageConfig | None = None,
    *,
    registry: Registry | None = None,
    step_names: Sequence[str] | None = None,
    workers: int | None = None,
    cancel: threading.Event | None = None,
) -> BatchReport:
    cfg = config if config is not None else TriageConfig()
    registry = registry or default_registry()
    logger = get_logger()

    names = batch_step_names(step_names or resolve_steps(cfg.steps, cfg.workflow))
    # Built once; raises before any item runs when a name is unknown.
    pipeline = registry.build_from_names(names, replace(deps, dry_run=True))
    logger.log_operation("batch_pipeline", steps=names, dry_run=True)

    shared_cancel = cancel or threading.Event()
    max_workers = workers or cfg.workers or get_optimal_worker_count(len(issues))
    processor = BatchProcessor(ConcurrencyConfig(max_workers=max_workers))

    def _run_item(issue: Issue) -> Result:
        return run_issue(issue, pipeline, cfg, cancel=shared_cancel, observe=False)

    records = processor.process(issues, _run_item)
    chains = resolve_duplicate_chains(records)
    report = BatchReport(records=records, chains=chains)
    logger.log_operation(
        "batch_complete", successful=report.successful, failed=report.failed
    )
    return report


def load_issues(path: str | Path) -> list[Issue]:
    """Read a JSON array of issues, validating the identifying fields."""
    p = Path(path)
    try:
        raw = json.loads(p.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ConfigError(f"Issues file not found: {p}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Failed to parse JSON in {p}: {exc}") from exc
    if not isinstance(raw, list) or not raw:
        raise ConfigError(f"No issues found in {p}")
    issues: list[Issue] = []
    for i, entry in enumerate(raw):
        if not isinstance(entry, dict):
            raise ConfigError(f"Issue at index {i} is not an object")
        try:
            issue = Issue.from_mapping(entry)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Issue at index {i} is malformed: {exc}") from exc
        if not (issue.org and issue.repo and issue.number and issue.title):
            raise ConfigError(
                f"Issue at index {i} missing required fields (org, repo, number, title)"
            )
        issues.append(issue)
    return issues


__all__ = [
    "BATCH_EXCLUDED_STEPS",
    "BatchReport",
    "batch_step_names",
    "load_issues",
    "logging_observer",
    "run_batch",
    "run_issue",
    "setup_logging",
]
