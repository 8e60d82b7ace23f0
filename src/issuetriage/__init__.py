"""issuetriage - orchestration core for issue triage pipelines.

High-level public API:

from issuetriage import Dependencies, Issue, default_registry, run_batch, run_issue

registry = default_registry()
pipeline = registry.build_from_names(["gatekeeper", "transfer_check"], Dependencies())
result = run_issue(issue, pipeline, config)

# Bulk analysis (always dry-run, input order preserved)
report = run_batch(issues, Dependencies(embedder=..., vector_store=...), config, workers=4)
print(report.to_dict()["successful"])
"""

from __future__ import annotations

from .config import ConfigError, TriageConfig, load_config
from .models import Issue, Result, SimilarIssue
from .orchestrator import BatchReport, load_issues, run_batch, run_issue
from .pipeline import Context, Outcome, Pipeline, StepFailedError
from .registry import Dependencies, Registry, default_registry, resolve_steps
from .transfer import RuleMatcher, TransferRule

__version__ = "0.2.0"

__all__ = [
    "BatchReport",
    "ConfigError",
    "Context",
    "Dependencies",
    "Issue",
    "Outcome",
    "Pipeline",
    "Registry",
    "Result",
    "RuleMatcher",
    "SimilarIssue",
    "StepFailedError",
    "TransferRule",
    "TriageConfig",
    "__version__",
    "default_registry",
    "load_config",
    "load_issues",
    "resolve_steps",
    "run_batch",
    "run_issue",
]
