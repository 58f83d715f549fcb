"""
Exception hierarchy. Library layers raise these; only the CLI turns them
into exit codes.
"""
from __future__ import annotations
from pathlib import Path


class StepCacheError(Exception):
    """Base class for every error raised by stepcache."""


class ConfigError(StepCacheError):
    pass


class StepDefinitionError(StepCacheError):
    """A step descriptor was malformed or the step list is inconsistent."""


class FingerprintError(StepCacheError):
    """
    An existing input could not be read while computing a fingerprint.
    Missing inputs are not errors; they hash to a sentinel.
    """

    def __init__(self, spec: str, cause: OSError) -> None:
        self.spec = spec
        self.cause = cause
        super().__init__(f"cannot fingerprint input {spec!r}: {cause}")


class CacheIOError(StepCacheError):
    """The cache store could not read or write an entry."""

    def __init__(self, operation: str, step: str | None, path: Path, cause: OSError) -> None:
        self.operation = operation
        self.step = step
        self.path = path
        self.cause = cause
        where = f" for step {step!r}" if step else ""
        super().__init__(f"cache {operation} failed{where} at {path}: {cause}")
