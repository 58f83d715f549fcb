from __future__ import annotations
import glob, hashlib, json, os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

from .errors import FingerprintError
from .model import BuildStep

CHUNK = 1024 * 1024 * 8  # 8MB streaming chunks
GLOB_CHARS = ("*", "?", "[")


@dataclass(frozen=True)
class PathDigest:
    """
    Digest of one input specification.
    kind is 'file', 'dir', 'glob' or 'missing'; digest is always 64 hex chars.
    """
    kind: str
    spec: str
    digest: str


def sha256_file(path: Path) -> str:
    """
    Stream a file and return its hex sha256.
    """
    h = hashlib.sha256()
    with open(path, "rb") as f:
        while True:
            b = f.read(CHUNK)
            if not b:
                break
            h.update(b)
    return h.hexdigest()

def sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()

def canonical_json(obj) -> bytes:
    """
    Canonical JSON for hashing: UTF-8, sorted keys, no whitespace.
    """
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")

def is_glob(spec: str) -> bool:
    return any(c in spec for c in GLOB_CHARS)

def missing_digest(spec: str) -> str:
    return sha256_bytes(("missing:" + spec).encode("utf-8"))

def expand_spec(spec: str, base: Path) -> list[str]:
    """
    Paths a spec names, relative to base. A spec that exists literally names
    itself, even if it contains glob characters; otherwise globs expand to
    their sorted matches.
    """
    p = base / spec
    if p.exists() or p.is_symlink() or not is_glob(spec):
        return [spec]
    return sorted(glob.glob(spec, root_dir=base, recursive=True))

# ---- Directory hashing (Merkle-like) ----
def iter_files(root: Path) -> Iterator[str]:
    """
    Yield relative file paths (as POSIX strings) under root, sorted.
    Follows symlinks; skips non-regular files.
    """
    files = []
    for base, dirs, filenames in os.walk(root, followlinks=True):
        base_p = Path(base)
        for name in filenames:
            fp = base_p / name
            if not fp.is_file():
                continue
            files.append(fp.relative_to(root).as_posix())
    yield from sorted(files)

def tree_digest(root: Path) -> str:
    """
    sha256 over "dir:" + canonical JSON of sorted [relative_path, file_digest] pairs.
    """
    pairs = [[rel, sha256_file(root / rel)] for rel in iter_files(root)]
    return sha256_bytes(b"dir:" + canonical_json(pairs))

def glob_digest(pattern: str, base: Path) -> str:
    """
    Expand pattern relative to base, sort matches and hash each one.
    Matched entries that are not regular files contribute a 'nonfile:' marker.
    A pattern with no matches hashes like a missing path.
    """
    matches = sorted(glob.glob(pattern, root_dir=base, recursive=True))
    if not matches:
        return missing_digest(pattern)
    pairs = []
    for match in matches:
        p = base / match
        if p.is_file():
            pairs.append([match, sha256_file(p)])
        else:
            pairs.append([match, "nonfile:" + match])
    return sha256_bytes(b"glob:" + canonical_json(pairs))

# ---- Public entry points ----
def hash_path(spec: str, base: Path | None = None) -> PathDigest:
    """
    Digest a single input specification: exact file, directory, glob or missing path.
    Relative specs resolve against base (default: current directory). A path
    that exists is hashed as itself before any glob expansion is tried.
    """
    base = Path.cwd() if base is None else base
    p = base / spec
    try:
        if p.is_file():
            return PathDigest("file", spec, sha256_file(p))
        if p.exists():
            return PathDigest("dir", spec, tree_digest(p))
        if is_glob(spec):
            return PathDigest("glob", spec, glob_digest(spec, base))
    except OSError as e:
        raise FingerprintError(spec, e) from e
    return PathDigest("missing", spec, missing_digest(spec))

def hash_step(step: BuildStep, base: Path | None = None) -> str:
    """
    Fingerprint a whole step: kind-tagged input digests in declared order,
    followed by the canonical serialization of command, env and outputs.
    """
    h = hashlib.sha256()
    for spec in step.inputs:
        d = hash_path(spec, base)
        h.update(f"{d.kind}:{d.digest};".encode("ascii"))
    h.update(canonical_json({
        "command": step.command,
        "env": dict(step.env),
        "outputs": list(step.outputs),
    }))
    return h.hexdigest()
