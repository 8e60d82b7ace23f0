"""Transfer rule matching.

Rules are declarative predicate sets with a destination repository. The
matcher drops disabled rules, orders the rest by priority (highest first,
ties keep their declared order) and returns the first rule whose specified
predicate groups all hold. Predicate groups left empty are ignored, so a
rule with none at all matches everything.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from .models import Issue


@dataclass(frozen=True)
class TransferRule:
    name: str
    target: str
    priority: int = 0
    enabled: bool = True
    labels: tuple[str, ...] = ()  # all must be present
    labels_any: tuple[str, ...] = ()
    title_contains: tuple[str, ...] = ()
    body_contains: tuple[str, ...] = ()
    authors: tuple[str, ...] = ()

    @classmethod
    def from_mapping(cls, raw: dict[str, Any]) -> TransferRule:
        def _strings(key: str, *aliases: str) -> tuple[str, ...]:
            for k in (key, *aliases):
                value = raw.get(k)
                if value is None:
                    continue
                if isinstance(value, str):
                    return (value,)
                return tuple(str(v) for v in value)
            return ()

        enabled = raw.get("enabled")
        return cls(
            name=str(raw.get("name") or raw.get("target") or "unnamed"),
            target=str(raw.get("target") or ""),
            priority=int(raw.get("priority") or 0),
            enabled=True if enabled is None else bool(enabled),
            labels=_strings("labels", "exact_labels"),
            labels_any=_strings("labels_any", "any_labels"),
            title_contains=_strings("title_contains", "title_substrings"),
            body_contains=_strings("body_contains", "body_substrings"),
            authors=_strings("authors", "author"),
        )


@dataclass(frozen=True)
class MatchResult:
    matched: bool
    rule: TransferRule | None = None
    target: str = ""
    reason: str = ""


NO_MATCH = MatchResult(matched=False)


def _lowered(values: Iterable[str]) -> set[str]:
    return {v.lower() for v in values}


def _labels_all(issue_labels: set[str], required: Sequence[str]) -> bool:
    return all(r.lower() in issue_labels for r in required)


def _labels_any(issue_labels: set[str], wanted: Sequence[str]) -> bool:
    return any(w.lower() in issue_labels for w in wanted)


def _contains_any(text: str, patterns: Sequence[str]) -> bool:
    low = text.lower()
    return any(p.lower() in low for p in patterns)


class RuleMatcher:
    def __init__(self, rules: Iterable[TransferRule]) -> None:
        enabled = [r for r in rules if r.enabled]
        # sorted() is stable, equal priorities keep config order
        self._rules: tuple[TransferRule, ...] = tuple(
            sorted(enabled, key=lambda r: r.priority, reverse=True)
        )

    @property
    def rules(self) -> tuple[TransferRule, ...]:
        return self._rules

    def match(self, issue: Issue) -> MatchResult:
        labels = _lowered(issue.labels)
        for rule in self._rules:
            if self._evaluate(rule, issue, labels):
                return MatchResult(
                    matched=True,
                    rule=rule,
                    target=rule.target,
                    reason=f"Matched rule: {rule.name}",
                )
        return NO_MATCH

    @staticmethod
    def _evaluate(rule: TransferRule, issue: Issue, labels: set[str]) -> bool:
        if rule.labels and not _labels_all(labels, rule.labels):
            return False
        if rule.labels_any and not _labels_any(labels, rule.labels_any):
            return False
        if rule.title_contains and not _contains_any(issue.title, rule.title_contains):
            return False
        if rule.body_contains and not _contains_any(issue.body, rule.body_contains):
            return False
        if rule.authors and issue.author.lower() not in _lowered(rule.authors):
            return False
        return True


def load_rules(raw_rules: Iterable[dict[str, Any]] | None) -> list[TransferRule]:
    return [TransferRule.from_mapping(r) for r in raw_rules or [] if isinstance(r, dict)]


__all__ = ["MatchResult", "NO_MATCH", "RuleMatcher", "TransferRule", "load_rules"]
