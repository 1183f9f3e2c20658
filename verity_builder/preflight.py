from __future__ import annotations

import logging
import os
import shutil
from typing import Callable, Optional, Sequence

from .errors import ResourceError

logger = logging.getLogger(__name__)

REQUIRED_TOOLS = ("tar", "chroot", "mount", "umount", "mksquashfs", "xorriso", "cpio", "gzip", "depmod")


def check_host(
    *,
    tools: Sequence[str] = REQUIRED_TOOLS,
    geteuid: Callable[[], int] = os.geteuid,
    which: Callable[[str], Optional[str]] = shutil.which,
) -> None:
    """Fail before any side effect when the host cannot run a build."""

    if geteuid() != 0:
        raise ResourceError("Must run as root (chroot, mounts and device nodes need it)")

    missing = [t for t in tools if which(t) is None]
    if missing:
        raise ResourceError(f"Missing host tools: {', '.join(missing)}")
    logger.info("Host preflight ok (%d tools)", len(tools))
