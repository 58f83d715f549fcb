from __future__ import annotations
from pathlib import Path
import logging, os, shutil, time
from .errors import CacheIOError
from .paths import CachePaths, HASH_SUFFIX
from .util import remove_path

"""
Persistent step cache, one entry per step name:

cache_root/
  <step>            # artifact: file or directory tree, replaced wholly on store
  <step>.hash       # hex fingerprint of the step when <step> was stored
  .tmp/             # staging area; entries only become visible by rename
"""

logger = logging.getLogger(__name__)


def _unique(path: Path, tag: str) -> Path:
    return path.with_name(f"{path.name}.{tag}-{os.getpid()}-{time.time_ns()}")

def _copy(src: Path, dst: Path) -> None:
    if src.is_dir():
        shutil.copytree(src, dst, symlinks=False)
    else:
        shutil.copy2(src, dst)

def _atomic_write_bytes(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = _unique(path, "tmp")
    with open(tmp, "wb") as f:
        f.write(data)
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp, path)

def _swap_into_place(staged: Path, target: Path, trash_dir: Path) -> None:
    """
    Move staged to target, replacing whatever was there. The prior entry is
    renamed aside first, so target is never a partially-written tree.
    """
    old = None
    if target.exists() or target.is_symlink():
        old = _unique(trash_dir / target.name, "old")
        os.rename(target, old)
    os.rename(staged, target)
    if old is not None:
        remove_path(old)


class CacheStore:
    """
    Artifact and fingerprint storage under a single cache root.
    The root is injected; the store never consults the environment.
    """

    def __init__(self, root: Path | str) -> None:
        self.paths = CachePaths(Path(root).expanduser().resolve())

    @property
    def root(self) -> Path:
        return self.paths.root

    def init(self) -> Path:
        """
        Ensure the cache root exists (idempotent) and return it.
        """
        try:
            self.paths.ensure_existence()
        except OSError as e:
            raise CacheIOError("init", None, self.root, e) from e
        return self.root

    # ---- Artifacts ----
    def store(self, step_name: str, source: Path) -> None:
        """
        Copy the artifact at source into the cache under step_name,
        replacing any prior artifact for that name. The prior fingerprint is
        dropped before the swap; call set_fingerprint afterwards.
        """
        target = self.paths.artifact(step_name)
        sidecar = self.paths.fingerprint(step_name)
        staged = _unique(self.paths.TMP / step_name, "new")
        try:
            self.paths.TMP.mkdir(parents=True, exist_ok=True)
            _copy(Path(source), staged)
            if sidecar.exists():
                sidecar.unlink()
            _swap_into_place(staged, target, self.paths.TMP)
        except OSError as e:
            if staged.exists():
                remove_path(staged)
            raise CacheIOError("store", step_name, target, e) from e
        logger.debug("Stored artifact for %s at %s", step_name, target)

    def restore(self, step_name: str, dest: Path) -> bool:
        """
        Copy the cached artifact for step_name to dest, replacing dest.
        Returns False, touching nothing, when no artifact is cached.
        """
        src = self.paths.artifact(step_name)
        if not (src.exists() or src.is_symlink()):
            return False
        dest = Path(dest)
        staged = _unique(dest, "restore")
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            _copy(src, staged)
            _swap_into_place(staged, dest, dest.parent)
        except OSError as e:
            if staged.exists():
                remove_path(staged)
            raise CacheIOError("restore", step_name, src, e) from e
        logger.debug("Restored artifact for %s into %s", step_name, dest)
        return True

    # ---- Fingerprints ----
    def get_fingerprint(self, step_name: str) -> str | None:
        p = self.paths.fingerprint(step_name)
        try:
            return p.read_text(encoding="utf-8").strip() or None
        except FileNotFoundError:
            return None
        except OSError as e:
            raise CacheIOError("read fingerprint", step_name, p, e) from e

    def set_fingerprint(self, step_name: str, digest: str) -> None:
        p = self.paths.fingerprint(step_name)
        try:
            _atomic_write_bytes(p, digest.encode("ascii"))
        except OSError as e:
            raise CacheIOError("write fingerprint", step_name, p, e) from e

    # ---- Maintenance ----
    def invalidate(self, step_name: str) -> bool:
        """
        Drop the entry for step_name. The sidecar goes first so an
        interrupted invalidate leaves a miss, never a stale hit.
        Returns whether anything was removed.
        """
        removed = False
        for p in (self.paths.fingerprint(step_name), self.paths.artifact(step_name)):
            if not (p.exists() or p.is_symlink()):
                continue
            try:
                remove_path(p)
                removed = True
            except OSError as e:
                raise CacheIOError("invalidate", step_name, p, e) from e
        if removed:
            logger.debug("Invalidated cache entry for %s", step_name)
        return removed

    def entries(self) -> list[str]:
        """
        Step names that currently have a fingerprint sidecar, sorted.
        """
        try:
            names = [p.name[:-len(HASH_SUFFIX)] for p in self.root.iterdir()
                     if p.name.endswith(HASH_SUFFIX) and p.is_file()]
        except FileNotFoundError:
            return []
        except OSError as e:
            raise CacheIOError("list", None, self.root, e) from e
        return sorted(names)
