from __future__ import annotations

import logging
from typing import Any, Dict

from ..lib.fs import remove_paths

logger = logging.getLogger(__name__)

HARDEN_PATHS = (
    # package manager: no runtime install path remains
    "/sbin/apk",
    "/usr/bin/apk",
    # kernel payload and modules, already copied into the initramfs
    "/boot",
    "/lib/modules",
    "/usr/bin/wget",
    "/usr/bin/curl",
    "/usr/bin/vi",
    "/usr/bin/nano",
    "/usr/bin/strace",
    "/usr/bin/gdb",
    "/usr/share/man",
    "/usr/share/doc",
    "/var/cache/apk/*",
    "/tmp/*",
)

# node stays, its package manager does not
RUNTIME_TOOLING_PATHS = (
    "/usr/bin/npm",
    "/usr/bin/npx",
    "/usr/lib/node_modules",
)


class HardenStep:
    step_id = "50_harden"
    requires = ("30_build_initramfs", "40_generate_init")

    def run(self, ctx, state: Dict[str, Any]) -> None:
        removed = remove_paths(ctx.rootfs_dir, HARDEN_PATHS + RUNTIME_TOOLING_PATHS)
        state["harden"] = {"removed": removed}
        logger.info("Hardened rootfs (%d paths removed)", len(removed))
