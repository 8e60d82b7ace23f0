from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

from .errors import redact


@dataclass
class Issue:
    """Snapshot of a tracker issue taken before a run.

    Steps read it; nothing in the pipeline mutates it. ``event_*`` and
    ``comment_author`` describe the webhook event that triggered the run and
    are empty for bulk runs.
    """

    org: str
    repo: str
    number: int
    title: str
    body: str = ""
    state: str = "open"
    labels: list[str] = field(default_factory=list)
    author: str = ""
    url: str = ""
    event_type: str = ""
    event_action: str = ""
    comment_author: str = ""

    @property
    def key(self) -> str:
        return f"{self.org}/{self.repo}#{self.number}"

    @property
    def repository(self) -> str:
        return f"{self.org}/{self.repo}"

    @classmethod
    def from_mapping(cls, raw: dict[str, Any]) -> Issue:
        labels: list[str] = []
        for label in raw.get("labels") or []:
            if isinstance(label, dict):
                name = label.get("name")
                if isinstance(name, str):
                    labels.append(name)
            elif isinstance(label, str):
                labels.append(label)
        author = raw.get("author") or ""
        user = raw.get("user")
        if not author and isinstance(user, dict):
            author = user.get("login") or ""
        return cls(
            org=str(raw.get("org") or ""),
            repo=str(raw.get("repo") or ""),
            number=int(raw.get("number") or 0),
            title=str(raw.get("title") or ""),
            body=str(raw.get("body") or ""),
            state=str(raw.get("state") or "open"),
            labels=labels,
            author=str(author),
            url=str(raw.get("url") or raw.get("html_url") or ""),
            event_type=str(raw.get("event_type") or ""),
            event_action=str(raw.get("event_action") or ""),
            comment_author=str(raw.get("comment_author") or ""),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class SimilarIssue:
    number: int
    title: str
    similarity: float
    state: str = "open"
    url: str = ""


@dataclass
class Result:
    """Accumulator filled in by the steps of one run.

    Fields are meant to be additive: a step that reaches a conclusion sets it
    once and later steps leave it alone unless they mean to override it.
    """

    issue_number: int = 0
    skipped: bool = False
    skip_reason: str = ""
    similar_found: list[SimilarIssue] = field(default_factory=list)
    is_duplicate: bool = False
    duplicate_of: int = 0
    duplicate_confidence: float = 0.0
    duplicate_reason: str = ""
    transfer_target: str = ""
    transfer_confidence: float = 0.0
    transfer_reason: str = ""
    suggested_labels: list[str] = field(default_factory=list)
    quality_score: float = 0.0
    quality_issues: list[str] = field(default_factory=list)
    indexed: bool = False
    errors: list[str] = field(default_factory=list)

    def record_error(self, step: str, exc: BaseException | str) -> None:
        self.errors.append(f"{step}: {redact(str(exc))}")

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


__all__ = ["Issue", "Result", "SimilarIssue"]
