"""Post-batch duplicate chain resolution.

After a batch finishes, each duplicate-flagged result points at the issue
it duplicates directly. Chains such as ``#10 -> #20 -> #30`` are collapsed so
every member points at the root (``#30``). Cycles and overly long chains stop
the walk safely and are reported, never raised.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Protocol

from .logging import get_logger
from .models import Issue, Result

MAX_CHAIN_DEPTH = 10


class _Record(Protocol):
    issue: Issue
    result: Result | None


@dataclass
class ChainAnomaly:
    issue_number: int
    stopped_at: int
    kind: str  # "cycle" or "max_depth"


@dataclass
class ChainResolution:
    links: int = 0
    resolved: int = 0
    anomalies: list[ChainAnomaly] = field(default_factory=list)

    @property
    def cycles(self) -> list[ChainAnomaly]:
        return [a for a in self.anomalies if a.kind == "cycle"]

    def to_dict(self) -> dict[str, object]:
        return {
            "links": self.links,
            "resolved": self.resolved,
            "anomalies": [
                {"issue_number": a.issue_number, "stopped_at": a.stopped_at, "kind": a.kind}
                for a in self.anomalies
            ],
        }


def find_duplicate_root(
    start: int, links: Mapping[int, int], max_depth: int = MAX_CHAIN_DEPTH
) -> tuple[int, str | None]:
    """Follow ``links`` from ``start``; return ``(root, anomaly_kind_or_None)``."""
    visited: set[int] = set()
    current = start
    for _ in range(max_depth):
        if current in visited:
            return current, "cycle"
        visited.add(current)
        nxt = links.get(current)
        if not nxt:
            return current, None
        current = nxt
    return current, "max_depth"


def resolve_duplicate_chains(records: Sequence[_Record]) -> ChainResolution:
    links: dict[int, int] = {}
    for rec in records:
        res = rec.result
        if res is not None and res.is_duplicate and res.duplicate_of:
            links[rec.issue.number] = res.duplicate_of

    report = ChainResolution(links=len(links))
    if not links:
        return report

    logger = get_logger()
    for rec in records:
        res = rec.result
        if res is None or not res.is_duplicate or not res.duplicate_of:
            continue
        original = res.duplicate_of
        root, anomaly = find_duplicate_root(original, links)
        if anomaly is not None:
            report.anomalies.append(ChainAnomaly(rec.issue.number, root, anomaly))
            logger.warning(
                f"duplicate chain {anomaly} for #{rec.issue.number}, stopped at #{root}",
                issue_number=rec.issue.number,
                stopped_at=root,
                anomaly=anomaly,
            )
        if root != original:
            res.duplicate_of = root
            report.resolved += 1
            logger.debug(
                f"issue #{rec.issue.number}: resolved chain {original} -> {root}",
                issue_number=rec.issue.number,
            )

    if report.resolved:
        logger.log_operation("duplicate_chains_resolved", resolved=report.resolved)
    return report


__all__ = [
    "ChainAnomaly",
    "ChainResolution",
    "MAX_CHAIN_DEPTH",
    "find_duplicate_root",
    "resolve_duplicate_chains",
]
