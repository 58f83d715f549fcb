"""
Typed step descriptors.

Step lists arrive loosely typed (TOML, JSON, an environment variable) and are
validated here, once, into immutable BuildStep records. Nothing past this
module handles raw dictionaries.
"""
from __future__ import annotations
import re
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import StepDefinitionError
from .paths import HASH_SUFFIX

_NAME_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]*$")


class BuildStep(BaseModel):
    """A named unit of work: command, declared inputs/outputs, environment."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(description="Unique within a run; also the cache key")
    command: str = Field(min_length=1, description="Opaque instruction for the executor")
    inputs: tuple[str, ...] = Field(default=(), description="Files, directories or glob patterns")
    outputs: tuple[str, ...] = Field(default=(), description="Paths copied into the artifact")
    env: dict[str, str] = Field(default_factory=dict)

    @field_validator("name")
    @classmethod
    def _safe_name(cls, v: str) -> str:
        if not _NAME_RE.match(v):
            raise ValueError("must be a single path component of letters, digits, '_', '-' or '.'")
        if v.endswith(HASH_SUFFIX):
            raise ValueError(f"must not end with {HASH_SUFFIX!r}")
        return v

    @field_validator("inputs", "outputs")
    @classmethod
    def _non_empty_paths(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        for p in v:
            if not p:
                raise ValueError("path specifications must be non-empty")
        return v

    def __hash__(self) -> int:
        # env is a dict, which the generated frozen hash cannot handle
        return hash((self.name, self.command, self.inputs, self.outputs, tuple(sorted(self.env.items()))))


def _describe(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(x) for x in err["loc"]) or "<step>"
        parts.append(f"{loc}: {err['msg']}")
    return "; ".join(parts)


def check_unique_names(steps: list[BuildStep]) -> None:
    seen: set[str] = set()
    for step in steps:
        if step.name in seen:
            raise StepDefinitionError(f"duplicate step name: {step.name!r}")
        seen.add(step.name)


def parse_steps(data: Any) -> list[BuildStep]:
    """
    Turn a decoded step list into BuildSteps, in declaration order.

    Accepted shapes:
      - [{"name": ..., "command": ...}, ...]
      - {"steps": [...]}               (the TOML [[steps]] form)
      - {"<name>": {"command": ...}}   (name -> descriptor mapping)
    """
    if isinstance(data, Mapping) and "steps" in data:
        data = data["steps"]
    if isinstance(data, Mapping):
        items = []
        for name, desc in data.items():
            if not isinstance(desc, Mapping):
                raise StepDefinitionError(f"step {name!r}: descriptor must be a table/object")
            items.append({"name": name, **desc})
        data = items
    if not isinstance(data, list):
        raise StepDefinitionError("step list must be a list of step descriptors")

    steps = []
    for i, desc in enumerate(data):
        label = desc.get("name", f"#{i}") if isinstance(desc, Mapping) else f"#{i}"
        if not isinstance(desc, Mapping):
            raise StepDefinitionError(f"step {label}: descriptor must be a table/object")
        try:
            steps.append(BuildStep.model_validate(dict(desc)))
        except ValidationError as e:
            raise StepDefinitionError(f"step {label!r}: {_describe(e)}") from e
    check_unique_names(steps)
    return steps
