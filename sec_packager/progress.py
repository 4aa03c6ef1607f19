"""Progress reporting for multi-stage workflows.

A workflow declares its stages with relative weights; the reported fraction
is a pure function of the current stage and how much of it is done.
"""

import logging
from dataclasses import dataclass
from typing import Callable

log = logging.getLogger(__name__)

ProgressSink = Callable[[float, str], None]


@dataclass(frozen=True)
class Stage:
    name: str
    weight: float


class StagePlan:
    def __init__(self, stages: tuple[Stage, ...]):
        if not stages:
            raise ValueError("A plan needs at least one stage")
        self.stages = stages
        self._total = sum(stage.weight for stage in stages)
        names = [stage.name for stage in stages]
        if len(set(names)) != len(names):
            raise ValueError("Stage names must be unique")
        self._names = names

    def fraction(self, stage: str, completed: int = 0, total: int = 1) -> float:
        """Overall fraction in [0, 1] when `completed` of `total` units of `stage` are done."""
        index = self._names.index(stage)
        before = sum(s.weight for s in self.stages[:index])
        within = completed / total if total > 0 else 1.0
        within = min(max(within, 0.0), 1.0)
        return min((before + self.stages[index].weight * within) / self._total, 1.0)


PACKAGE_PLAN = StagePlan((
    Stage("resolve", 0.05),
    Stage("market_data", 0.10),
    Stage("short_interest", 0.05),
    Stage("filings", 0.15),
    Stage("download", 0.55),
    Stage("manifest", 0.10),
))

DOWNLOAD_PLAN = StagePlan((
    Stage("resolve", 0.10),
    Stage("filter", 0.10),
    Stage("download", 0.80),
))


class ProgressReporter:
    """Forwards (fraction, message) pairs to an optional sink and the log."""

    def __init__(self, plan: StagePlan, sink: ProgressSink | None = None):
        self.plan = plan
        self._sink = sink

    def report(self, stage: str, message: str, completed: int = 0, total: int = 1) -> None:
        self._emit(self.plan.fraction(stage, completed, total), message)

    def finish(self, message: str) -> None:
        self._emit(1.0, message)

    def _emit(self, fraction: float, message: str) -> None:
        log.info("[%3.0f%%] %s", fraction * 100, message)
        if self._sink is not None:
            self._sink(fraction, message)
