from __future__ import annotations

import logging
from pathlib import Path
from typing import Sequence

from .chroot import chroot_cmd, chroot_shell

logger = logging.getLogger(__name__)


def apk_update(target_root: str | Path) -> None:
    chroot_cmd(target_root, ["apk", "update"])


def apk_add(target_root: str | Path, packages: Sequence[str]) -> None:
    if not packages:
        return
    chroot_cmd(target_root, ["apk", "add", "--no-cache", *packages])
    logger.info("Installed %d packages: %s", len(packages), " ".join(packages))


def add_service_account(target_root: str | Path, name: str, dirs: Sequence[str]) -> None:
    """Create a nologin system account owning dirs (created if missing).

    The account may already exist (e.g. created by the package).
    """

    quoted = " ".join(dirs)
    chroot_shell(
        target_root,
        f"id -u {name} >/dev/null 2>&1 || adduser -D -H -s /sbin/nologin {name}\n"
        f"mkdir -p {quoted}\n"
        f"chown -R {name}:{name} {quoted}",
    )


def npm_install_production(target_root: str | Path, app_dir: str) -> None:
    chroot_shell(
        target_root,
        f"cd {app_dir} && npm install --production\nrm -rf /root/.npm /tmp/.npm",
    )
