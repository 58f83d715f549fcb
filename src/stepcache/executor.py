"""
Executor interface and the default shell implementation.

The orchestrator only needs to know whether a step succeeded and where its
artifact is; how the command runs is up to the executor.
"""
from __future__ import annotations
import logging, os, shutil, subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Protocol

from .context import StepContext
from .hashing import expand_spec
from .model import BuildStep
from .util import prefer_link, remove_path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExecutionResult:
    success: bool
    artifact: Path | None = None
    reason: str = ""
    output: str = ""

    @classmethod
    def ok(cls, artifact: Path, output: str = "") -> "ExecutionResult":
        return cls(True, artifact, "", output)

    @classmethod
    def failed(cls, reason: str, output: str = "") -> "ExecutionResult":
        return cls(False, None, reason, output)


class Executor(Protocol):
    def execute(self, step: BuildStep, ctx: StepContext) -> ExecutionResult:
        ...


class ShellExecutor:
    """
    Run step.command through the shell inside the workspace.

    Inputs are linked by basename into ctx.input_dir; declared outputs that
    exist after a successful run (glob outputs expanded to their matches) are
    copied by basename into ctx.artifact_dir, which is always created. The
    command sees STEPCACHE_STEP, STEPCACHE_OUT and STEPCACHE_INPUTS on top of
    the process environment and step.env.
    """

    def __init__(self, timeout: float | None = None, base_env: Mapping[str, str] | None = None) -> None:
        self.timeout = timeout
        self.base_env = dict(os.environ if base_env is None else base_env)

    def materialize_inputs(self, step: BuildStep, ctx: StepContext) -> dict[str, str]:
        """
        Link every existing input into ctx.input_dir. Returns {basename: method}.
        Missing inputs are skipped; the command fails on its own if it needs them.
        """
        remove_path(ctx.input_dir)
        ctx.input_dir.mkdir(parents=True, exist_ok=True)
        used = {}
        for spec in step.inputs:
            for m in expand_spec(spec, ctx.workspace):
                src = ctx.resolve(m)
                if not src.exists():
                    continue
                name = Path(m).name
                used[name] = prefer_link(src, ctx.input_dir / name)
        return used

    def collect_outputs(self, step: BuildStep, ctx: StepContext) -> None:
        ctx.artifact_dir.mkdir(parents=True, exist_ok=True)
        for spec in step.outputs:
            produced = [m for m in expand_spec(spec, ctx.workspace) if ctx.resolve(m).exists()]
            if not produced:
                logger.debug("Declared output %s of %s was not produced", spec, step.name)
            for m in produced:
                src = ctx.resolve(m)
                dst = ctx.artifact_dir / Path(m).name
                if src.resolve() == dst.resolve():
                    continue
                remove_path(dst)
                if src.is_dir():
                    shutil.copytree(src, dst)
                else:
                    shutil.copy2(src, dst)

    def execute(self, step: BuildStep, ctx: StepContext) -> ExecutionResult:
        # a stale artifact from an earlier run must not leak into this one
        remove_path(ctx.artifact_dir)
        ctx.artifact_dir.mkdir(parents=True, exist_ok=True)
        linked = self.materialize_inputs(step, ctx)
        logger.debug("Materialized inputs for %s: %s", step.name, linked)
        env = dict(self.base_env)
        env.update(step.env)
        env.update({
            "STEPCACHE_STEP": step.name,
            "STEPCACHE_OUT": str(ctx.artifact_dir),
            "STEPCACHE_INPUTS": str(ctx.input_dir),
        })
        logger.debug("Running %s: %s", step.name, step.command)
        try:
            proc = subprocess.run(
                step.command,
                shell=True,
                cwd=ctx.workspace,
                env=env,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            out = e.output or ""
            if isinstance(out, bytes):
                out = out.decode("utf-8", errors="replace")
            return ExecutionResult.failed(f"command timed out after {self.timeout}s", out)
        except OSError as e:
            return ExecutionResult.failed(f"command could not be started: {e}")

        if proc.returncode != 0:
            return ExecutionResult.failed(f"command exited with code {proc.returncode}", proc.stdout)
        self.collect_outputs(step, ctx)
        return ExecutionResult.ok(ctx.artifact_dir, proc.stdout)
