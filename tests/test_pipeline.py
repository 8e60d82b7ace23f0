from __future__ import annotations

from typing import Any

import pytest

from issuetriage.models import Issue
from issuetriage.pipeline import Context, ObservedStep, Outcome, Pipeline, StepFailedError


class RecordingStep:
    def __init__(self, name: str, log: list[str], outcome: Any = None, exc: Exception | None = None):
        self.name = name
        self.log = log
        self.outcome = outcome
        self.exc = exc

    def run(self, ctx: Context) -> Outcome | None:
        self.log.append(self.name)
        ctx.metadata.setdefault("seen", []).append(self.name)
        if self.exc is not None:
            raise self.exc
        return self.outcome


def _ctx() -> Context:
    return Context(issue=Issue(org="acme", repo="widgets", number=7, title="Crash on save"))


def test_all_steps_run_in_order():
    log: list[str] = []
    pipeline = Pipeline([RecordingStep(n, log) for n in ("a", "b", "c")])
    ctx = _ctx()
    pipeline.run(ctx)
    assert log == ["a", "b", "c"]
    assert ctx.result.skipped is False
    assert ctx.result.issue_number == 7


def test_skip_stops_remaining_steps_and_is_success():
    log: list[str] = []
    pipeline = Pipeline(
        [
            RecordingStep("a", log),
            RecordingStep("b", log, outcome=Outcome.skip("repository disabled")),
            RecordingStep("c", log),
        ]
    )
    ctx = _ctx()
    pipeline.run(ctx)  # no exception
    assert log == ["a", "b"]
    assert ctx.result.skipped is True
    assert ctx.result.skip_reason == "repository disabled"


def test_failure_outcome_names_step_and_stops():
    log: list[str] = []
    cause = ValueError("embedding dimension mismatch")
    pipeline = Pipeline(
        [
            RecordingStep("a", log),
            RecordingStep("b", log, outcome=Outcome.fail(cause)),
            RecordingStep("c", log),
        ]
    )
    with pytest.raises(StepFailedError) as excinfo:
        pipeline.run(_ctx())
    assert log == ["a", "b"]
    assert excinfo.value.step == "b"
    assert excinfo.value.cause is cause
    assert "'b'" in str(excinfo.value)


def test_raised_exception_is_a_failure():
    log: list[str] = []
    pipeline = Pipeline([RecordingStep("boom", log, exc=RuntimeError("x")), RecordingStep("z", log)])
    with pytest.raises(StepFailedError) as excinfo:
        pipeline.run(_ctx())
    assert excinfo.value.step == "boom"
    assert log == ["boom"]


def test_fail_with_string_builds_error():
    outcome = Outcome.fail("no vectors")
    assert outcome.is_failure
    assert isinstance(outcome.cause, Exception)


def test_metadata_is_per_context():
    log: list[str] = []
    pipeline = Pipeline([RecordingStep("a", log)])
    first, second = _ctx(), _ctx()
    pipeline.run(first)
    assert "seen" not in second.metadata
    assert first.metadata["seen"] == ["a"]


def test_observed_steps_report_and_forward_outcome():
    events: list[tuple[str, str]] = []
    log: list[str] = []
    pipeline = Pipeline(
        [RecordingStep("a", log), RecordingStep("b", log, outcome=Outcome.skip("cooldown"))]
    ).observed(lambda step, status, _msg: events.append((step, status)))
    ctx = _ctx()
    pipeline.run(ctx)
    assert events == [("a", "started"), ("a", "success"), ("b", "started"), ("b", "skipped")]
    assert ctx.result.skip_reason == "cooldown"
    assert pipeline.step_names == ["a", "b"]


def test_observed_step_reports_error_and_pipeline_still_fails():
    events: list[tuple[str, str, str]] = []
    step = ObservedStep(
        RecordingStep("x", [], exc=RuntimeError("bad")),
        lambda s, status, msg: events.append((s, status, msg)),
    )
    with pytest.raises(StepFailedError) as excinfo:
        Pipeline([step]).run(_ctx())
    assert excinfo.value.step == "x"
    assert events[-1] == ("x", "error", "bad")


def test_step_preset_skip_reason_is_preserved():
    class Presetting:
        name = "gate"

        def run(self, ctx: Context) -> Outcome:
            ctx.result.skipped = True
            ctx.result.skip_reason = "explicit reason"
            return Outcome.skip("other")

    ctx = _ctx()
    Pipeline([Presetting()]).run(ctx)
    assert ctx.result.skip_reason == "explicit reason"
