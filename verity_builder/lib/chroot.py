from __future__ import annotations

import atexit
import logging
import signal
import threading
from pathlib import Path
from typing import Any, Dict, List, Sequence

from ..errors import ResourceError
from .command import CmdResult, run_cmd

logger = logging.getLogger(__name__)

# (mount point below the target root, mount argv without the target)
PSEUDO_MOUNTS = (
    ("proc", ["mount", "-t", "proc", "none"]),
    ("sys", ["mount", "-t", "sysfs", "none"]),
    ("dev", ["mount", "-o", "bind", "/dev"]),
)

_TRAPPED_SIGNALS = (signal.SIGTERM, signal.SIGHUP, signal.SIGINT)


def chroot_cmd(target_root: str | Path, argv: Sequence[str], *, check: bool = True) -> CmdResult:
    """Run a command inside target root."""

    return run_cmd(["chroot", str(target_root), *argv], check=check)


def chroot_shell(target_root: str | Path, script: str) -> CmdResult:
    return chroot_cmd(target_root, ["/bin/sh", "-c", script])


def active_mounts_under(path: str | Path, *, mounts_file: str = "/proc/self/mounts") -> List[str]:
    """Mount points at or below path, according to the kernel mount table."""

    base = str(Path(path).resolve())
    try:
        lines = Path(mounts_file).read_text(encoding="utf-8").splitlines()
    except OSError:
        return []
    found = []
    for line in lines:
        fields = line.split()
        if len(fields) < 2:
            continue
        mnt = fields[1].replace("\\040", " ")
        if mnt == base or mnt.startswith(base + "/"):
            found.append(mnt)
    return found


class ChrootMounts:
    """Scoped proc/sys/dev mounts for a chroot.

    Mounts are released in reverse order on every exit path. A cleanup
    handler (atexit + termination signals) is armed before the first mount
    and disarmed only once every unmount succeeded.
    """

    def __init__(self, target_root: str | Path) -> None:
        self.target_root = Path(target_root)
        self.active: List[str] = []
        self.released: List[str] = []
        self._armed = False
        self._saved_handlers: Dict[int, Any] = {}

    def __enter__(self) -> "ChrootMounts":
        self._arm()
        try:
            for rel, argv in PSEUDO_MOUNTS:
                target = str(self.target_root / rel)
                run_cmd([*argv, target])
                self.active.append(target)
        except BaseException:
            self.release(raise_errors=False)
            raise
        logger.info("Chroot mounts established under %s", self.target_root)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release(raise_errors=exc_type is None)

    def _on_signal(self, signum: int, frame: Any) -> None:
        # unwind through __exit__ so the ordered release runs
        raise SystemExit(128 + signum)

    def _arm(self) -> None:
        atexit.register(self._emergency_release)
        if threading.current_thread() is threading.main_thread():
            for sig in _TRAPPED_SIGNALS:
                self._saved_handlers[sig] = signal.signal(sig, self._on_signal)
        self._armed = True

    def _disarm(self) -> None:
        atexit.unregister(self._emergency_release)
        for sig, handler in self._saved_handlers.items():
            signal.signal(sig, handler)
        self._saved_handlers.clear()
        self._armed = False

    def _emergency_release(self) -> None:
        for target in reversed(list(self.active)):
            run_cmd(["umount", "-lf", target], check=False)
            self.active.remove(target)
            self.released.append(target)

    def release(self, *, raise_errors: bool = True) -> None:
        for target in reversed(list(self.active)):
            r = run_cmd(["umount", target], check=False)
            if r.returncode != 0:
                logger.warning("umount %s failed, retrying lazily", target)
                r = run_cmd(["umount", "-lf", target], check=False)
            if r.returncode == 0:
                self.active.remove(target)
                self.released.append(target)

        if self.active:
            # stay armed: the atexit handler retries the remaining ones
            logger.error("Mounts still active after release: %s", ", ".join(self.active))
            if raise_errors:
                raise ResourceError(f"Could not unmount: {', '.join(self.active)}")
            return

        if self._armed:
            self._disarm()
        logger.info("Chroot mounts released under %s", self.target_root)
