from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict

from ..artifact import BootProfile, ImageArtifact
from ..errors import PackagingError
from ..lib.bootloader import install_isolinux, make_iso
from ..lib.command import run_cmd
from ..lib.download import sha256_file

logger = logging.getLogger(__name__)

SQUASHFS_NAME = "rootfs.squashfs"


class PackageImageStep:
    step_id = "60_package_image"
    requires = ("50_harden",)

    def run(self, ctx, state: Dict[str, Any]) -> None:
        iso_dir: Path = ctx.workspace.iso_dir
        squashfs = iso_dir / SQUASHFS_NAME
        if squashfs.exists():
            squashfs.unlink()
        run_cmd(["mksquashfs", str(ctx.rootfs_dir), str(squashfs), "-comp", "xz", "-noappend", "-quiet"])
        if not squashfs.is_file():
            raise PackagingError("squashfs creation failed")

        install_isolinux(ctx.workspace.isolinux_dir)

        output: Path = ctx.output_path
        output.parent.mkdir(parents=True, exist_ok=True)
        partial = output.with_name(output.name + ".partial")
        try:
            make_iso(iso_dir, partial, volume_label=ctx.settings.volume_label)
            if not partial.is_file() or partial.stat().st_size == 0:
                raise PackagingError("ISO creation failed")
            artifact = ImageArtifact(
                path=output,
                sha256=sha256_file(partial),
                size=partial.stat().st_size,
                components=("nginx", *ctx.manifest.names),
                boot=BootProfile.for_config(ctx.cfg),
            )
            artifact.write_metadata()
            # publish: the final name only ever holds a complete image
            partial.replace(output)
        finally:
            partial.unlink(missing_ok=True)

        state["artifact"] = artifact.to_dict()
        logger.info("Artifact %s (%d bytes)", output, artifact.size)
