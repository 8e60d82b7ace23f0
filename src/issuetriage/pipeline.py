"""Step contract and the sequential pipeline executor.

A step is anything with a ``name`` and a ``run(ctx)`` method. ``run`` returns
an :class:`Outcome` (or ``None`` for "carry on") and may raise; the executor
treats a raised exception exactly like ``Outcome.fail``. Skips are explicit
outcomes, never exceptions, so generic error handling cannot swallow them.
"""

from __future__ import annotations

import enum
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from .errors import TriageError
from .models import Issue, Result

if TYPE_CHECKING:  # pragma: no cover
    from .config import TriageConfig


class OutcomeKind(enum.Enum):
    CONTINUE = "continue"
    SKIP = "skip"
    FAILURE = "failure"


@dataclass(frozen=True)
class Outcome:
    kind: OutcomeKind
    reason: str = ""
    cause: BaseException | None = None

    @classmethod
    def proceed(cls) -> Outcome:
        return _CONTINUE

    @classmethod
    def skip(cls, reason: str) -> Outcome:
        return cls(OutcomeKind.SKIP, reason=reason)

    @classmethod
    def fail(cls, cause: BaseException | str) -> Outcome:
        if isinstance(cause, str):
            cause = TriageError(cause)
        return cls(OutcomeKind.FAILURE, reason=str(cause), cause=cause)

    @property
    def is_skip(self) -> bool:
        return self.kind is OutcomeKind.SKIP

    @property
    def is_failure(self) -> bool:
        return self.kind is OutcomeKind.FAILURE


_CONTINUE = Outcome(OutcomeKind.CONTINUE)


@runtime_checkable
class Step(Protocol):
    name: str

    def run(self, ctx: Context) -> Outcome | None: ...


class StepFailedError(TriageError):
    """A step failed; the run stopped at ``step``."""

    def __init__(self, step: str, cause: BaseException | None):
        super().__init__(f"step '{step}' failed: {cause}")
        self.step = step
        self.cause = cause


@dataclass
class Context:
    """Per-run state. Owned by exactly one worker; never shared across runs."""

    issue: Issue
    config: TriageConfig | None = None
    result: Result = field(default_factory=Result)
    metadata: dict[str, Any] = field(default_factory=dict)
    cancel: threading.Event = field(default_factory=threading.Event)

    def __post_init__(self) -> None:
        if not self.result.issue_number:
            self.result.issue_number = self.issue.number

    @property
    def cancelled(self) -> bool:
        return self.cancel.is_set()


def _invoke(step: Step, ctx: Context) -> Outcome:
    try:
        outcome = step.run(ctx)
    except Exception as exc:
        return Outcome.fail(exc)
    return outcome if outcome is not None else _CONTINUE


class Pipeline:
    """Runs steps strictly in order until one skips or fails."""

    def __init__(self, steps: Iterable[Step] = ()) -> None:
        self._steps: list[Step] = list(steps)

    @property
    def steps(self) -> list[Step]:
        return list(self._steps)

    @property
    def step_names(self) -> list[str]:
        return [s.name for s in self._steps]

    def add_step(self, step: Step) -> None:
        self._steps.append(step)

    def run(self, ctx: Context) -> None:
        for step in self._steps:
            outcome = _invoke(step, ctx)
            if outcome.is_skip:
                if not ctx.result.skipped:
                    ctx.result.skipped = True
                    ctx.result.skip_reason = outcome.reason
                return
            if outcome.is_failure:
                raise StepFailedError(step.name, outcome.cause) from outcome.cause

    def observed(self, observer: StepObserver) -> Pipeline:
        return Pipeline(ObservedStep(step, observer) for step in self._steps)

    def __len__(self) -> int:
        return len(self._steps)


StepObserver = Callable[[str, str, str], None]


class ObservedStep:
    """Reports started / success / skipped / error around an inner step.

    The inner outcome is returned unchanged.
    """

    def __init__(self, inner: Step, observer: StepObserver) -> None:
        self.inner = inner
        self.observer = observer

    @property
    def name(self) -> str:
        return self.inner.name

    def run(self, ctx: Context) -> Outcome:
        self.observer(self.name, "started", "Starting...")
        outcome = _invoke(self.inner, ctx)
        if outcome.is_skip:
            self.observer(self.name, "skipped", outcome.reason)
        elif outcome.is_failure:
            self.observer(self.name, "error", outcome.reason)
        else:
            self.observer(self.name, "success", "Completed")
        return outcome


__all__ = [
    "Context",
    "ObservedStep",
    "Outcome",
    "OutcomeKind",
    "Pipeline",
    "Step",
    "StepFailedError",
    "StepObserver",
]
