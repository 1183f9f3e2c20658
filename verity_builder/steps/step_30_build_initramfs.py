from __future__ import annotations

import logging
import shlex
from pathlib import Path
from typing import Any, Dict

from ..errors import PackagingError
from ..initgen.stage1 import STAGE1_APPLETS, render_stage1_init
from ..lib.command import run_cmd, run_shell
from ..lib.fs import copy_file
from ..lib.kmod import copy_module_subset, kernel_version

logger = logging.getLogger(__name__)

KERNEL_IMAGE = "boot/vmlinuz-lts"
STATIC_BUSYBOX = "bin/busybox.static"

# storage/media transport + compressed filesystem support
BOOT_MODULES = ("squashfs", "loop", "isofs", "sr_mod", "cdrom", "virtio_blk", "virtio_pci", "virtio_scsi")


class BuildInitramfsStep:
    """Copies what the first-stage root needs out of the staged rootfs.

    Must run before hardening, which deletes /boot and /lib/modules.
    """

    step_id = "30_build_initramfs"
    requires = ("20_install_packages",)

    def run(self, ctx, state: Dict[str, Any]) -> None:
        rootfs: Path = ctx.rootfs_dir
        initramfs: Path = ctx.initramfs_dir
        boot_dir: Path = ctx.workspace.boot_dir

        kernel = rootfs / KERNEL_IMAGE
        if not kernel.is_file():
            raise PackagingError(f"{KERNEL_IMAGE} not found, linux-lts failed to install")
        copy_file(kernel, boot_dir / "vmlinuz")

        busybox = rootfs / STATIC_BUSYBOX
        if not busybox.is_file():
            raise PackagingError(f"{STATIC_BUSYBOX} not found, busybox-static failed to install")
        copy_file(busybox, initramfs / "bin/busybox", mode=0o755)
        for applet in STAGE1_APPLETS:
            link = initramfs / "bin" / applet
            if link.is_symlink() or link.exists():
                link.unlink()
            link.symlink_to("busybox")

        kver = kernel_version(rootfs)
        if not kver:
            raise PackagingError("No kernel modules found under /lib/modules")
        modules = copy_module_subset(
            rootfs / "lib/modules" / kver,
            initramfs / "lib/modules" / kver,
            BOOT_MODULES,
        )
        run_cmd(["depmod", "-b", str(initramfs), kver])

        init = initramfs / "init"
        init.write_text(render_stage1_init(ctx.settings, BOOT_MODULES), encoding="utf-8")
        init.chmod(0o755)

        archive = boot_dir / "initramfs.gz"
        pack_initramfs(initramfs, archive)
        state["initramfs"] = {"kernel_version": kver, "modules": modules, "size": archive.stat().st_size}


def pack_initramfs(src: Path, archive: Path) -> None:
    """newc cpio, gzip-compressed, with a sorted file list."""

    run_shell(
        f"find . | LC_ALL=C sort | cpio -o -H newc 2>/dev/null | gzip -9 -n > {shlex.quote(str(archive))}",
        cwd=str(src),
    )
    if not archive.exists() or archive.stat().st_size == 0:
        raise PackagingError("initramfs is empty")
    logger.info("Packed initramfs %s (%d bytes)", archive, archive.stat().st_size)
