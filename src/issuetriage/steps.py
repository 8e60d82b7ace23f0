"""Built-in pipeline steps.

Each step is a small class bound to the collaborators it needs. Missing
collaborators turn a step into a no-op; failing enrichment calls are
recorded on the result as diagnostics and the run carries on.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

from .config import TriageConfig
from .logging import get_logger
from .models import Issue, SimilarIssue
from .pipeline import Context, Outcome
from .registry import Dependencies, Registry
from .retry import RetryCancelledError, run_with_retries
from .transfer import RuleMatcher

RECENT_TRANSFER_WINDOW = timedelta(minutes=2)
SIMILAR_KEY = "similar_issues"
EMBEDDING_KEY = "embedding"
QUALITY_KEY = "quality_result"


class Embedder(Protocol):
    def embed(self, text: str) -> list[float]: ...


class VectorStore(Protocol):
    def search(
        self, collection: str, vector: list[float], limit: int, threshold: float
    ) -> list[SimilarIssue]: ...

    def upsert(
        self, collection: str, key: str, vector: list[float], payload: dict[str, Any]
    ) -> None: ...


@dataclass
class DuplicateVerdict:
    is_duplicate: bool
    duplicate_of: int = 0
    confidence: float = 0.0
    reason: str = ""


@dataclass
class TriageAnalysis:
    suggested_labels: list[str] = field(default_factory=list)
    quality: str = "good"
    reasoning: str = ""


@dataclass
class QualityAssessment:
    """Score in [0, 1] plus the problems the model listed."""

    score: float = 0.0
    assessment: str = ""
    issues: list[str] = field(default_factory=list)


class LLMClient(Protocol):
    def detect_duplicate(
        self, issue: Issue, candidates: list[SimilarIssue]
    ) -> DuplicateVerdict | None: ...

    def analyze_issue(self, issue: Issue) -> TriageAnalysis | None: ...

    def assess_quality(self, issue: Issue) -> QualityAssessment | None: ...


def _config(ctx: Context) -> TriageConfig:
    return ctx.config if ctx.config is not None else TriageConfig()


def _issue_text(issue: Issue) -> str:
    return f"{issue.title}\n\n{issue.body}".strip()


def _is_bot_author(author: str, bot_users: list[str]) -> bool:
    if author.endswith("[bot]"):
        return True
    return any(author.lower() == u.lower() for u in bot_users)


def _parse_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


class Gatekeeper:
    """Skips runs that should not be triaged at all."""

    name = "gatekeeper"

    def __init__(self, deps: Dependencies) -> None:
        self.tracker = deps.tracker
        self.logger = get_logger()

    def run(self, ctx: Context) -> Outcome | None:
        cfg = _config(ctx)
        issue = ctx.issue
        if issue.comment_author and _is_bot_author(issue.comment_author, cfg.bot_users):
            return Outcome.skip("event triggered by bot")
        if issue.event_action == "transferred":
            return Outcome.skip("transferred from another repository")
        if issue.event_action == "opened" and self._recently_transferred(ctx):
            return Outcome.skip("recently transferred issue")
        if not cfg.repositories:
            return None
        repo_cfg = cfg.find_repository(issue.org, issue.repo)
        if repo_cfg is None:
            return Outcome.skip("repository not configured")
        if not repo_cfg.enabled:
            return Outcome.skip("repository processing disabled")
        return None

    def _recently_transferred(self, ctx: Context) -> bool:
        if self.tracker is None:
            return False
        issue = ctx.issue
        # the client retries on its own; it only needs the run's cancel signal
        try:
            events = self.tracker.list_issue_events(
                issue.org, issue.repo, issue.number, cancel=ctx.cancel
            )
        except RetryCancelledError:
            raise
        except Exception as exc:
            self.logger.warning(f"[gatekeeper] could not fetch events for {issue.key}", error=str(exc))
            ctx.result.record_error(self.name, exc)
            return False
        cutoff = datetime.now(timezone.utc) - RECENT_TRANSFER_WINDOW
        for event in events:
            if event.get("event") != "transferred":
                continue
            created = _parse_timestamp(event.get("created_at"))
            if created is not None and created > cutoff:
                return True
        return False


class SimilaritySearch:
    name = "similarity_search"

    def __init__(self, deps: Dependencies) -> None:
        self.embedder = deps.embedder
        self.vector_store = deps.vector_store
        self.logger = get_logger()

    def run(self, ctx: Context) -> Outcome | None:
        if self.embedder is None or self.vector_store is None:
            self.logger.debug("[similarity_search] embedder or vector store missing, skipping")
            return None
        cfg = _config(ctx)
        try:
            vector = run_with_retries(
                lambda: self.embedder.embed(_issue_text(ctx.issue)),  # type: ignore[union-attr]
                cfg=cfg.retry,
                operation="embed",
                cancel=ctx.cancel,
            )
            ctx.metadata[EMBEDDING_KEY] = vector
            # one spare slot since the issue itself may come back as a hit
            hits = run_with_retries(
                lambda: self.vector_store.search(  # type: ignore[union-attr]
                    cfg.collection, vector, cfg.max_similar + 1, cfg.similarity_threshold
                ),
                cfg=cfg.retry,
                operation="vector_search",
                cancel=ctx.cancel,
            )
        except RetryCancelledError:
            raise
        except Exception as exc:
            self.logger.warning(f"[similarity_search] {ctx.issue.key} degraded", error=str(exc))
            ctx.result.record_error(self.name, exc)
            return None

        similar = sorted(
            (
                h
                for h in hits
                if h.number != ctx.issue.number and h.similarity >= cfg.similarity_threshold
            ),
            key=lambda h: h.similarity,
            reverse=True,
        )[: cfg.max_similar]
        ctx.result.similar_found = similar
        ctx.metadata[SIMILAR_KEY] = similar
        return None


class DuplicateDetector:
    name = "duplicate_detector"

    def __init__(self, deps: Dependencies) -> None:
        self.llm = deps.llm
        self.logger = get_logger()

    def run(self, ctx: Context) -> Outcome | None:
        candidates: list[SimilarIssue] = ctx.metadata.get(SIMILAR_KEY) or []
        if self.llm is None or not candidates or ctx.result.is_duplicate:
            return None
        cfg = _config(ctx)
        try:
            verdict = run_with_retries(
                lambda: self.llm.detect_duplicate(ctx.issue, candidates),  # type: ignore[union-attr]
                cfg=cfg.retry,
                operation="detect_duplicate",
                cancel=ctx.cancel,
            )
        except RetryCancelledError:
            raise
        except Exception as exc:
            self.logger.warning(f"[duplicate_detector] {ctx.issue.key} degraded", error=str(exc))
            ctx.result.record_error(self.name, exc)
            return None
        if verdict is None or not verdict.is_duplicate:
            return None
        if verdict.duplicate_of in (0, ctx.issue.number):
            return None
        if verdict.confidence < cfg.duplicate_threshold:
            return None
        ctx.result.is_duplicate = True
        ctx.result.duplicate_of = verdict.duplicate_of
        ctx.result.duplicate_confidence = verdict.confidence
        ctx.result.duplicate_reason = verdict.reason
        return None


class TransferCheck:
    name = "transfer_check"

    def __init__(self, deps: Dependencies) -> None:
        self.dry_run = deps.dry_run
        self.logger = get_logger()

    def run(self, ctx: Context) -> Outcome | None:
        if ctx.result.transfer_target:
            return None
        rules = _config(ctx).transfer_rules
        if not rules:
            return None
        match = RuleMatcher(rules).match(ctx.issue)
        if not match.matched:
            return None
        if match.target.lower() == ctx.issue.repository.lower():
            return None
        ctx.result.transfer_target = match.target
        ctx.result.transfer_confidence = 1.0
        ctx.result.transfer_reason = match.reason
        self.logger.info(
            f"[transfer_check] {ctx.issue.key} -> {match.target}" + (" [DRY]" if self.dry_run else ""),
            target=match.target,
            dry_run=self.dry_run,
        )
        return None


class Triage:
    """Records the labels the LLM suggests for the issue."""

    name = "triage"

    def __init__(self, deps: Dependencies) -> None:
        self.llm = deps.llm
        self.logger = get_logger()

    def run(self, ctx: Context) -> Outcome | None:
        if self.llm is None:
            self.logger.warning("[triage] no LLM client configured, skipping")
            return None
        if ctx.result.suggested_labels:
            return None
        try:
            analysis = run_with_retries(
                lambda: self.llm.analyze_issue(ctx.issue),  # type: ignore[union-attr]
                cfg=_config(ctx).retry,
                operation="analyze_issue",
                cancel=ctx.cancel,
            )
        except RetryCancelledError:
            raise
        except Exception as exc:
            self.logger.warning(f"[triage] {ctx.issue.key} degraded", error=str(exc))
            ctx.result.record_error(self.name, exc)
            return None
        if analysis is None:
            return None
        ctx.result.suggested_labels = list(analysis.suggested_labels)
        self.logger.debug(
            f"[triage] {ctx.issue.key} labels: {analysis.suggested_labels}",
            quality=analysis.quality,
        )
        return None


class QualityChecker:
    name = "quality_checker"

    def __init__(self, deps: Dependencies) -> None:
        self.llm = deps.llm
        self.logger = get_logger()

    def run(self, ctx: Context) -> Outcome | None:
        if self.llm is None:
            self.logger.debug("[quality_checker] no LLM client, skipping")
            return None
        try:
            assessment = run_with_retries(
                lambda: self.llm.assess_quality(ctx.issue),  # type: ignore[union-attr]
                cfg=_config(ctx).retry,
                operation="assess_quality",
                cancel=ctx.cancel,
            )
        except RetryCancelledError:
            raise
        except Exception as exc:
            self.logger.warning(f"[quality_checker] {ctx.issue.key} degraded", error=str(exc))
            ctx.result.record_error(self.name, exc)
            return None
        if assessment is None:
            return None
        ctx.result.quality_score = assessment.score
        ctx.result.quality_issues = list(assessment.issues)
        ctx.metadata[QUALITY_KEY] = assessment
        return None


class Indexer:
    name = "indexer"

    def __init__(self, deps: Dependencies) -> None:
        self.embedder = deps.embedder
        self.vector_store = deps.vector_store
        self.dry_run = deps.dry_run
        self.logger = get_logger()

    def run(self, ctx: Context) -> Outcome | None:
        if self.dry_run:
            self.logger.info(f"[indexer] would index {ctx.issue.key} [DRY]", dry_run=True)
            return None
        if self.embedder is None or self.vector_store is None:
            return None
        cfg = _config(ctx)
        issue = ctx.issue
        try:
            vector = ctx.metadata.get(EMBEDDING_KEY) or run_with_retries(
                lambda: self.embedder.embed(_issue_text(issue)),  # type: ignore[union-attr]
                cfg=cfg.retry,
                operation="embed",
                cancel=ctx.cancel,
            )
            payload = {
                "number": issue.number,
                "title": issue.title,
                "url": issue.url,
                "state": issue.state,
                "org": issue.org,
                "repo": issue.repo,
            }
            run_with_retries(
                lambda: self.vector_store.upsert(cfg.collection, issue.key, vector, payload),  # type: ignore[union-attr]
                cfg=cfg.retry,
                operation="vector_upsert",
                cancel=ctx.cancel,
            )
        except RetryCancelledError:
            raise
        except Exception as exc:
            self.logger.warning(f"[indexer] {issue.key} not indexed", error=str(exc))
            ctx.result.record_error(self.name, exc)
            return None
        ctx.result.indexed = True
        return None


def register_all(registry: Registry) -> None:
    """Register all built-in steps with ``registry``."""
    registry.register(Gatekeeper.name, Gatekeeper)
    registry.register(SimilaritySearch.name, SimilaritySearch)
    registry.register(DuplicateDetector.name, DuplicateDetector)
    registry.register(TransferCheck.name, TransferCheck)
    registry.register(Triage.name, Triage)
    registry.register(QualityChecker.name, QualityChecker)
    registry.register(Indexer.name, Indexer)


__all__ = [
    "DuplicateDetector",
    "DuplicateVerdict",
    "Embedder",
    "Gatekeeper",
    "Indexer",
    "LLMClient",
    "QualityAssessment",
    "QualityChecker",
    "SimilaritySearch",
    "TransferCheck",
    "Triage",
    "TriageAnalysis",
    "VectorStore",
    "register_all",
]
