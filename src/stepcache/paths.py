"""

Naming of paths inside a cache root.

"""

from __future__ import annotations
from pathlib import Path

HASH_SUFFIX = ".hash"


class CachePaths:
    """ On-disk layout of one cache root. """

    def __init__(self, root: Path) -> None:
        """ Initialize with the cache root path. """
        self.root = root
        self.TMP = self.root / ".tmp"

    def artifact(self, step_name: str) -> Path:
        """ Artifact tree (or file) for a step. """
        return self.root / step_name

    def fingerprint(self, step_name: str) -> Path:
        """ Plain-text sidecar holding the hex fingerprint. """
        return self.root / f"{step_name}{HASH_SUFFIX}"

    def ensure_existence(self) -> None:
        """ Ensure all necessary directories exist. """
        for path in [self.root, self.TMP]:
            path.mkdir(parents=True, exist_ok=True)
