from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Iterable, List

logger = logging.getLogger(__name__)


class PathEscape(ValueError):
    pass


def resolve_inside(root: Path, rel: str) -> Path:
    """Resolve a root-relative path (leading '/' allowed) without leaving root."""

    base = root.resolve()
    candidate = base / rel.lstrip("/")
    # resolve the parent only: the leaf may be a dangling symlink we want to delete
    resolved = candidate.parent.resolve() / candidate.name
    try:
        resolved.relative_to(base)
    except ValueError as e:
        raise PathEscape(f"Path escapes {root}: {rel}") from e
    return resolved


def remove_paths(root: Path, patterns: Iterable[str]) -> List[str]:
    """Delete files/trees matching root-relative glob patterns; return what was removed."""

    removed: List[str] = []
    base = root.resolve()
    for pattern in patterns:
        rel = pattern.lstrip("/")
        for match in sorted(base.glob(rel)) if any(c in rel for c in "*?[") else [resolve_inside(root, rel)]:
            if not (match.exists() or match.is_symlink()):
                continue
            resolve_inside(root, str(match.relative_to(base)))
            if match.is_dir() and not match.is_symlink():
                shutil.rmtree(match)
            else:
                match.unlink()
            removed.append("/" + str(match.relative_to(base)))
    for p in removed:
        logger.debug("Removed %s", p)
    return removed


def copy_file(src: Path, dst: Path, *, mode: int | None = None) -> Path:
    dst.parent.mkdir(parents=True, exist_ok=True)
    shutil.copy2(src, dst)
    if mode is not None:
        dst.chmod(mode)
    return dst
