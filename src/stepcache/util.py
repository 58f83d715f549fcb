from __future__ import annotations
import shutil, os
from pathlib import Path

def remove_path(p: Path) -> None:
    if p.is_dir() and not p.is_symlink():
        shutil.rmtree(p)
    elif p.exists() or p.is_symlink():
        p.unlink()

def prefer_link(src: Path, dst: Path) -> str:
    """
    Try symlink > hardlink > copy. Returns the method used.
    """
    dst.parent.mkdir(parents=True, exist_ok=True)
    remove_path(dst)
    try:
        os.symlink(src.resolve(), dst, target_is_directory=src.is_dir())
        return "symlink"
    except OSError:
        pass
    if not src.is_dir():
        try:
            os.link(src, dst)
            return "hardlink"
        except OSError:
            pass
    if src.is_dir():
        shutil.copytree(src, dst)
    else:
        shutil.copy2(src, dst)
    return "copy"
