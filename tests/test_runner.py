"""Tests for the orchestrator: hit/miss decisions and fail-fast behaviour."""
import shutil

import pytest

from stepcache.errors import CacheIOError, StepDefinitionError
from stepcache.executor import ExecutionResult
from stepcache.model import BuildStep
from stepcache.runner import BUILT, FAILED, RESTORED, Orchestrator
from stepcache.store import CacheStore


class FakeExecutor:
    """Writes an artifact whose content depends on the step's input files."""

    def __init__(self, fail=()):
        self.calls = []
        self.fail = set(fail)

    def execute(self, step, ctx):
        self.calls.append(step.name)
        if step.name in self.fail:
            return ExecutionResult.failed("boom", "diagnostic output")
        ctx.artifact_dir.mkdir(parents=True, exist_ok=True)
        parts = [step.name]
        for spec in step.inputs:
            p = ctx.resolve(spec)
            if p.is_file():
                parts.append(p.read_text())
            elif p.is_dir():
                parts.extend(f.read_text() for f in sorted(p.rglob("*")) if f.is_file())
        (ctx.artifact_dir / "out.txt").write_text("|".join(parts))
        return ExecutionResult.ok(ctx.artifact_dir)


@pytest.fixture
def workspace(tmp_path):
    ws = tmp_path / "ws"
    ws.mkdir()
    (ws / "f1").write_text("v1")
    return ws


@pytest.fixture
def store(tmp_path):
    return CacheStore(tmp_path / "cache")


def _pipeline():
    return [
        BuildStep(name="A", command="make a", inputs=["f1"], outputs=["a.out"]),
        BuildStep(name="B", command="make b", inputs=["f1", "result-A"], outputs=["b.out"]),
        BuildStep(name="C", command="make c", inputs=["result-B"], outputs=["c.out"]),
    ]


class TestCaching:
    def test_second_run_rebuilds_nothing(self, workspace, store):
        first = FakeExecutor()
        r1 = Orchestrator(store, first, workspace).run(_pipeline())
        assert r1.ok
        assert first.calls == ["A", "B", "C"]
        assert r1.names(BUILT) == ["A", "B", "C"]

        second = FakeExecutor()
        r2 = Orchestrator(store, second, workspace).run(_pipeline())
        assert r2.ok
        assert second.calls == []
        assert r2.names(RESTORED) == ["A", "B", "C"]

    def test_input_change_cascades_through_results(self, workspace, store):
        Orchestrator(store, FakeExecutor(), workspace).run(_pipeline()[:2])
        (workspace / "f1").write_text("v2")

        ex = FakeExecutor()
        result = Orchestrator(store, ex, workspace).run(_pipeline()[:2])
        assert result.ok
        assert ex.calls == ["A", "B"]
        assert (workspace / "result-B" / "out.txt").read_text() == "B|v2|A|v2"

    def test_definition_change_rebuilds_only_that_step(self, workspace, store):
        steps = _pipeline()
        Orchestrator(store, FakeExecutor(), workspace).run(steps)
        steps[2] = BuildStep(name="C", command="make c --fast", inputs=["result-B"], outputs=["c.out"])
        ex = FakeExecutor()
        Orchestrator(store, ex, workspace).run(steps)
        assert ex.calls == ["C"]

    def test_restores_artifacts_into_workspace(self, workspace, store):
        Orchestrator(store, FakeExecutor(), workspace).run(_pipeline())
        shutil.rmtree(workspace / "result-A")
        # result-A is only an input of B, so A's fingerprint is unaffected
        ex = FakeExecutor()
        Orchestrator(store, ex, workspace).run(_pipeline())
        assert ex.calls == []
        assert (workspace / "result-A" / "out.txt").read_text() == "A|v1"

    def test_missing_only_input_is_cacheable(self, workspace, store):
        steps = [BuildStep(name="gen", command="generate", inputs=["not-there.cfg"])]
        Orchestrator(store, FakeExecutor(), workspace).run(steps)
        ex = FakeExecutor()
        result = Orchestrator(store, ex, workspace).run(steps)
        assert ex.calls == []
        assert result.names(RESTORED) == ["gen"]

    def test_matching_fingerprint_without_artifact_rebuilds(self, workspace, store):
        steps = _pipeline()[:1]
        Orchestrator(store, FakeExecutor(), workspace).run(steps)
        shutil.rmtree(store.paths.artifact("A"))
        ex = FakeExecutor()
        result = Orchestrator(store, ex, workspace).run(steps)
        assert ex.calls == ["A"]
        assert result.names(BUILT) == ["A"]
        assert store.paths.artifact("A").is_dir()

    def test_stored_fingerprint_matches_report(self, workspace, store):
        result = Orchestrator(store, FakeExecutor(), workspace).run(_pipeline())
        for report in result.reports:
            assert store.get_fingerprint(report.name) == report.fingerprint


class TestFailFast:
    def test_failure_stops_pipeline_and_keeps_cache(self, workspace, store):
        steps = _pipeline()
        Orchestrator(store, FakeExecutor(), workspace).run(steps)
        before = {s.name: store.get_fingerprint(s.name) for s in steps}
        b_artifact = (store.paths.artifact("B") / "out.txt").read_text()

        steps[1] = BuildStep(name="B", command="make b --broken", inputs=["f1", "result-A"], outputs=["b.out"])
        ex = FakeExecutor(fail={"B"})
        result = Orchestrator(store, ex, workspace).run(steps)

        assert not result.ok
        assert result.failed_step == "B"
        assert result.reason == "boom"
        assert result.output == "diagnostic output"
        assert ex.calls == ["B"]
        assert [r.action for r in result.reports] == [RESTORED, FAILED]
        assert {s.name: store.get_fingerprint(s.name) for s in steps} == before
        assert (store.paths.artifact("B") / "out.txt").read_text() == b_artifact

    def test_first_failure_leaves_no_entry(self, workspace, store):
        ex = FakeExecutor(fail={"B"})
        result = Orchestrator(store, ex, workspace).run(_pipeline())
        assert result.failed_step == "B"
        assert ex.calls == ["A", "B"]
        assert store.get_fingerprint("A") is not None
        assert store.get_fingerprint("B") is None
        assert store.get_fingerprint("C") is None

    def test_success_without_artifact_is_failure(self, workspace, store, tmp_path):
        class NoArtifact:
            def execute(self, step, ctx):
                return ExecutionResult.ok(tmp_path / "vanished")

        result = Orchestrator(store, NoArtifact(), workspace).run(_pipeline())
        assert result.failed_step == "A"
        assert "produced no artifact" in result.reason
        assert store.get_fingerprint("A") is None

    def test_duplicate_names_rejected_before_running(self, workspace, store):
        steps = [BuildStep(name="A", command="x"), BuildStep(name="A", command="y")]
        ex = FakeExecutor()
        with pytest.raises(StepDefinitionError):
            Orchestrator(store, ex, workspace).run(steps)
        assert ex.calls == []

    def test_cache_io_error_propagates(self, workspace, store):
        store.init()
        (store.root / "A.hash").mkdir()
        with pytest.raises(CacheIOError):
            Orchestrator(store, FakeExecutor(), workspace).run(_pipeline())


class TestPlan:
    def test_plan_reports_hits_without_executing(self, workspace, store):
        ex = FakeExecutor()
        orch = Orchestrator(store, ex, workspace)
        assert [e.hit for e in orch.plan(_pipeline())] == [False, False, False]
        orch.run(_pipeline())
        ex.calls.clear()
        entries = orch.plan(_pipeline())
        assert [e.hit for e in entries] == [True, True, True]
        assert ex.calls == []

    def test_plan_shows_changed_input(self, workspace, store):
        orch = Orchestrator(store, FakeExecutor(), workspace)
        orch.run(_pipeline())
        (workspace / "f1").write_text("v2")
        # C only sees result-B, which has not been rebuilt yet
        assert [e.hit for e in orch.plan(_pipeline())] == [False, False, True]
