from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterable, List

from .fs import copy_file

logger = logging.getLogger(__name__)

METADATA_FILES = ("modules.dep", "modules.alias", "modules.symbols", "modules.builtin")


def module_name(path: str) -> str:
    """kernel/fs/squashfs/squashfs.ko.gz -> squashfs (dashes normalised to underscores)."""
    name = path.rsplit("/", 1)[-1]
    name = name.split(".ko", 1)[0]
    return name.replace("-", "_")


def parse_modules_dep(text: str) -> Dict[str, List[str]]:
    """Map each module's relative path to the relative paths it depends on."""

    deps: Dict[str, List[str]] = {}
    for line in text.splitlines():
        if ":" not in line:
            continue
        mod, _, rest = line.partition(":")
        deps[mod.strip()] = rest.split()
    return deps


def resolve_closure(deps: Dict[str, List[str]], wanted: Iterable[str]) -> List[str]:
    """Relative paths of the wanted modules plus everything they depend on, sorted.

    Wanted modules absent from modules.dep are assumed built in.
    """

    by_name = {module_name(path): path for path in deps}
    selected: set[str] = set()
    stack = [by_name[module_name(w)] for w in wanted if module_name(w) in by_name]
    while stack:
        path = stack.pop()
        if path in selected:
            continue
        selected.add(path)
        stack.extend(d for d in deps.get(path, []) if d not in selected)
    return sorted(selected)


def kernel_version(rootfs: Path) -> str | None:
    moddir = rootfs / "lib/modules"
    if not moddir.is_dir():
        return None
    versions = sorted(p.name for p in moddir.iterdir() if p.is_dir())
    return versions[0] if versions else None


def copy_module_subset(src_moddir: Path, dst_moddir: Path, wanted: Iterable[str]) -> List[str]:
    """Copy the wanted modules (with dependencies) and the modprobe metadata."""

    wanted = list(wanted)
    dep_file = src_moddir / "modules.dep"
    deps = parse_modules_dep(dep_file.read_text(encoding="utf-8")) if dep_file.exists() else {}
    selected = resolve_closure(deps, wanted)

    found = {module_name(p) for p in selected}
    for w in wanted:
        if module_name(w) not in found:
            logger.info("Module %s not in modules.dep (built in?)", w)

    for rel in selected:
        src = src_moddir / rel
        if src.exists():
            copy_file(src, dst_moddir / rel)
        else:
            logger.warning("modules.dep lists missing file %s", rel)

    for meta in METADATA_FILES:
        if (src_moddir / meta).exists():
            copy_file(src_moddir / meta, dst_moddir / meta)

    return selected
