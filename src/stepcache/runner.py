from __future__ import annotations
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Sequence

from .context import StepContext
from .executor import Executor
from .hashing import hash_step
from .model import BuildStep, check_unique_names
from .store import CacheStore

logger = logging.getLogger(__name__)

RESTORED = "restored"
BUILT = "built"
FAILED = "failed"


@dataclass(frozen=True)
class StepReport:
    name: str
    fingerprint: str
    action: str  # RESTORED | BUILT | FAILED


@dataclass
class RunResult:
    """
    Outcome of one orchestrator run. failed_step is None on success.
    """
    reports: list[StepReport] = field(default_factory=list)
    failed_step: str | None = None
    reason: str = ""
    output: str = ""

    @property
    def ok(self) -> bool:
        return self.failed_step is None

    def names(self, action: str) -> list[str]:
        return [r.name for r in self.reports if r.action == action]


@dataclass(frozen=True)
class PlanEntry:
    name: str
    fingerprint: str
    cached_fingerprint: str | None

    @property
    def hit(self) -> bool:
        return self.cached_fingerprint == self.fingerprint


class Orchestrator:
    """
    Runs steps strictly in order, restoring cache hits and rebuilding misses.
    Stops at the first failing step.

    Usage:
        orch = Orchestrator(CacheStore(root), ShellExecutor(), workspace=Path("."))
        result = orch.run(steps)
    """

    def __init__(self, store: CacheStore, executor: Executor, workspace: Path | str = ".") -> None:
        self.store = store
        self.executor = executor
        self.workspace = Path(workspace).resolve()

    def context(self, step: BuildStep) -> StepContext:
        return StepContext.for_step(self.workspace, step.name)

    def fingerprint(self, step: BuildStep) -> str:
        return hash_step(step, self.workspace)

    def plan(self, steps: Sequence[BuildStep]) -> list[PlanEntry]:
        """
        Dry run: fingerprint every step against the current workspace and
        compare with the cache. Nothing is executed or written. Steps that
        consume an earlier step's result see it as it is on disk right now.
        """
        check_unique_names(list(steps))
        return [
            PlanEntry(s.name, self.fingerprint(s), self.store.get_fingerprint(s.name))
            for s in steps
        ]

    def run(self, steps: Sequence[BuildStep]) -> RunResult:
        check_unique_names(list(steps))
        self.store.init()
        result = RunResult()
        for step in steps:
            report, reason, output = self.build_step(step)
            result.reports.append(report)
            if report.action == FAILED:
                result.failed_step = step.name
                result.reason = reason
                result.output = output
                break
        return result

    def build_step(self, step: BuildStep) -> tuple[StepReport, str, str]:
        ctx = self.context(step)
        current = self.fingerprint(step)
        cached = self.store.get_fingerprint(step.name)

        if cached == current:
            logger.info("Restoring cached step: %s", step.name)
            if self.store.restore(step.name, ctx.artifact_dir):
                return StepReport(step.name, current, RESTORED), "", ""
            logger.warning("Fingerprint for %s matches but no artifact is cached; rebuilding", step.name)

        logger.info("Building step: %s", step.name)
        outcome = self.executor.execute(step, ctx)
        if not outcome.success:
            return StepReport(step.name, current, FAILED), outcome.reason, outcome.output
        artifact = outcome.artifact or ctx.artifact_dir
        if not (artifact.exists() or artifact.is_symlink()):
            return StepReport(step.name, current, FAILED), f"produced no artifact at {artifact}", outcome.output

        # artifact first: the sidecar is only written once the new artifact is in place
        self.store.store(step.name, artifact)
        self.store.set_fingerprint(step.name, current)
        if artifact.resolve() != ctx.artifact_dir.resolve():
            self.store.restore(step.name, ctx.artifact_dir)
        return StepReport(step.name, current, BUILT), "", outcome.output
