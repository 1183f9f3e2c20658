from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict

from ..errors import VerificationError
from ..lib.command import run_cmd
from ..lib.download import fetch, verify_sha256

logger = logging.getLogger(__name__)


class AcquireBaseStep:
    step_id = "10_acquire_base"
    requires = ()

    def run(self, ctx, state: Dict[str, Any]) -> None:
        settings = ctx.settings
        cache = ctx.workspace.cache_dir
        archive = cache / settings.rootfs_archive_name
        checksum = cache / f"{settings.rootfs_archive_name}.sha256"

        if archive.exists():
            logger.info("Reusing downloaded %s", archive.name)
        else:
            fetch(settings.rootfs_url, archive)
        if not checksum.exists():
            fetch(settings.checksum_url, checksum)

        # hard boundary: nothing is extracted from an unverified archive
        try:
            digest = verify_sha256(archive, checksum)
        except VerificationError:
            rejected = archive.with_name(archive.name + ".rejected")
            archive.replace(rejected)
            checksum.unlink(missing_ok=True)
            logger.error("Rejected %s (kept as %s)", archive.name, rejected.name)
            raise

        extract_rootfs(archive, ctx.rootfs_dir)
        state["base"] = {"archive": archive.name, "sha256": digest, "url": settings.rootfs_url}


def extract_rootfs(archive: Path, rootfs: Path) -> None:
    rootfs.mkdir(parents=True, exist_ok=True)
    run_cmd(["tar", "xzf", str(archive), "-C", str(rootfs)])
    logger.info("Extracted %s into %s", archive.name, rootfs)
