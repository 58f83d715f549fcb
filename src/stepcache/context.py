from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class StepContext:
    """
    Locations handed to an executor for one step.
    - workspace: directory relative input/output specs resolve against
    - artifact_dir: where the step's artifact must end up (result-<name>)
    - input_dir: where inputs are materialized by basename
    """
    workspace: Path
    artifact_dir: Path
    input_dir: Path

    @classmethod
    def for_step(cls, workspace: Path, step_name: str) -> "StepContext":
        return cls(
            workspace=workspace,
            artifact_dir=workspace / f"result-{step_name}",
            input_dir=workspace / ".stepcache" / step_name / "inputs",
        )

    def resolve(self, spec: str) -> Path:
        """
        Helper: resolve a declared input/output spec against the workspace.
        """
        return self.workspace / spec

    def output_path(self, logical_name: str) -> Path:
        """
        Helper: return a path inside artifact_dir, creating parents as needed.
        """
        p = self.artifact_dir / logical_name
        p.parent.mkdir(parents=True, exist_ok=True)
        return p
