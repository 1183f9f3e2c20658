from __future__ import annotations

import errno
import fcntl
import logging
import shutil
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

from .errors import ResourceError
from .lib.chroot import active_mounts_under
from .logging_utils import BUILD_LOG_NAME

logger = logging.getLogger(__name__)

INITRAMFS_SKELETON = ("bin", "dev", "proc", "sys", "tmp", "newroot", "media", "lib/modules")


@dataclass(frozen=True)
class Workspace:
    """Build-owned staging area. One build at a time; see lock()."""

    root: Path

    @classmethod
    def from_path(cls, root: str | Path) -> "Workspace":
        return cls(root=Path(root).expanduser().absolute())

    @property
    def rootfs_dir(self) -> Path:
        return self.root / "rootfs"

    @property
    def iso_dir(self) -> Path:
        return self.root / "iso"

    @property
    def boot_dir(self) -> Path:
        return self.iso_dir / "boot"

    @property
    def isolinux_dir(self) -> Path:
        return self.boot_dir / "isolinux"

    @property
    def initramfs_dir(self) -> Path:
        return self.root / "initramfs"

    @property
    def cache_dir(self) -> Path:
        return self.root / "cache"

    @property
    def state_path(self) -> Path:
        return self.root / "build_state.json"

    @property
    def log_path(self) -> Path:
        return self.root / BUILD_LOG_NAME

    @property
    def staging_dirs(self) -> tuple[Path, ...]:
        return (self.rootfs_dir, self.iso_dir, self.initramfs_dir)

    def create(self) -> "Workspace":
        self.rootfs_dir.mkdir(parents=True, exist_ok=True)
        self.isolinux_dir.mkdir(parents=True, exist_ok=True)
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        for rel in INITRAMFS_SKELETON:
            (self.initramfs_dir / rel).mkdir(parents=True, exist_ok=True)
        return self

    def reset(self) -> "Workspace":
        """Destroy the staging trees (the download cache survives) and recreate them."""

        leftover = active_mounts_under(self.root)
        if leftover:
            raise ResourceError(f"Refusing to reset workspace with active mounts: {', '.join(leftover)}")

        for d in self.staging_dirs:
            if d.exists():
                logger.info("Removing %s", d)
                shutil.rmtree(d)
        return self.create()

    @contextmanager
    def lock(self) -> Iterator["Workspace"]:
        self.root.mkdir(parents=True, exist_ok=True)
        with open(self.root / ".lock", "w") as fh:
            try:
                fcntl.flock(fh, fcntl.LOCK_EX | fcntl.LOCK_NB)
            except OSError as e:
                if e.errno in (errno.EAGAIN, errno.EACCES):
                    raise ResourceError(f"Another build holds the workspace lock: {self.root}") from e
                raise
            try:
                yield self
            finally:
                fcntl.flock(fh, fcntl.LOCK_UN)
