"""Step registry, dependency injection and workflow presets."""

from __future__ import annotations

import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .errors import TriageError
from .logging import get_logger
from .pipeline import Pipeline, Step

if TYPE_CHECKING:  # pragma: no cover
    from .github_rest import GitHubRestClient
    from .steps import Embedder, LLMClient, VectorStore


class PipelineBuildError(TriageError):
    """The requested step list could not be turned into a pipeline."""


class UnknownStepError(PipelineBuildError):
    def __init__(self, name: str):
        super().__init__(f"unknown step: {name}")
        self.step = name


class StepBuildError(PipelineBuildError):
    def __init__(self, name: str, cause: BaseException):
        super().__init__(f"failed to create step '{name}': {cause}")
        self.step = name
        self.cause = cause


@dataclass
class Dependencies:
    """Collaborators handed to every step factory.

    All of them are optional; steps that need a missing collaborator skip
    their contribution instead of failing the run. Handles are shared by all
    batch workers and must tolerate concurrent use.
    """

    embedder: Embedder | None = None
    vector_store: VectorStore | None = None
    tracker: GitHubRestClient | None = None
    llm: LLMClient | None = None
    dry_run: bool = False

    def close(self) -> None:
        for handle in (self.embedder, self.vector_store, self.tracker, self.llm):
            closer = getattr(handle, "close", None)
            if callable(closer):
                try:
                    closer()
                except Exception as exc:  # pragma: no cover - shutdown best effort
                    get_logger().warning("collaborator close failed", error=str(exc))


StepFactory = Callable[[Dependencies], Step]


class Registry:
    """Maps step names to factories. Imposes no ordering of its own."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._factories: dict[str, StepFactory] = {}

    def register(self, name: str, factory: StepFactory) -> None:
        with self._lock:
            self._factories[name] = factory

    def get(self, name: str) -> StepFactory | None:
        with self._lock:
            return self._factories.get(name)

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._factories)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._factories

    def build_from_names(self, names: Sequence[str], deps: Dependencies | None = None) -> Pipeline:
        """Build every step before returning; any failure aborts the whole build."""
        deps = deps if deps is not None else Dependencies()
        with self._lock:
            factories = []
            for name in names:
                factory = self._factories.get(name)
                if factory is None:
                    raise UnknownStepError(name)
                factories.append((name, factory))
        steps: list[Step] = []
        for name, factory in factories:
            try:
                steps.append(factory(deps))
            except Exception as exc:
                raise StepBuildError(name, exc) from exc
        return Pipeline(steps)


PRESETS: dict[str, list[str]] = {
    "issue-triage": [
        "gatekeeper",
        "similarity_search",
        "duplicate_detector",
        "transfer_check",
        "triage",
        "indexer",
    ],
    "similarity-only": [
        "gatekeeper",
        "similarity_search",
        "indexer",
    ],
    "index-only": [
        "gatekeeper",
        "indexer",
    ],
}

DEFAULT_WORKFLOW = "issue-triage"


def get_preset(name: str) -> list[str] | None:
    preset = PRESETS.get(name)
    return list(preset) if preset is not None else None


def resolve_steps(explicit: Sequence[str] | None = None, workflow: str | None = None) -> list[str]:
    """Explicit steps win, then a known preset, then the default workflow."""
    if explicit:
        return list(explicit)
    if workflow:
        preset = get_preset(workflow)
        if preset is not None:
            return preset
    return list(PRESETS[DEFAULT_WORKFLOW])


def default_registry() -> Registry:
    from .steps import register_all

    registry = Registry()
    register_all(registry)
    return registry


__all__ = [
    "DEFAULT_WORKFLOW",
    "Dependencies",
    "PRESETS",
    "PipelineBuildError",
    "Registry",
    "StepBuildError",
    "StepFactory",
    "UnknownStepError",
    "default_registry",
    "get_preset",
    "resolve_steps",
]
