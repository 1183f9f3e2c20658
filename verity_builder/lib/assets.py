from __future__ import annotations

import logging
import shutil
from pathlib import Path

logger = logging.getLogger(__name__)

ASSETS_DIR = Path(__file__).resolve().parents[1] / "assets"


def asset_path(name: str) -> Path:
    p = ASSETS_DIR / name
    if not p.is_file():
        raise FileNotFoundError(str(p))
    return p


def copy_tree(src: str | Path, dst: str | Path) -> int:
    """Copy the contents of src into dst; returns the number of files copied."""

    s = Path(src)
    d = Path(dst)
    if not s.exists():
        raise FileNotFoundError(str(src))

    d.mkdir(parents=True, exist_ok=True)
    count = 0
    for item in sorted(s.rglob("*")):
        rel = item.relative_to(s)
        out = d / rel
        if item.is_dir():
            out.mkdir(parents=True, exist_ok=True)
        else:
            out.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(item, out)
            count += 1
    logger.info("Copied %d files %s -> %s", count, s, d)
    return count
