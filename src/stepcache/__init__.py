"""
Incremental step runner: fingerprints each step's inputs and definition and
restores the previous artifact when nothing changed.
"""
from .model import BuildStep, parse_steps
from .hashing import hash_path, hash_step
from .store import CacheStore
from .executor import ExecutionResult, ShellExecutor
from .runner import Orchestrator, RunResult
__all__ = ["BuildStep", "parse_steps", "hash_path", "hash_step", "CacheStore",
           "ExecutionResult", "ShellExecutor", "Orchestrator", "RunResult"]
__version__ = "0.1.0"
