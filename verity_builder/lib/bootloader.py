from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Optional

from ..errors import ResourceError
from .command import run_cmd
from .fs import copy_file

logger = logging.getLogger(__name__)

ISOLINUX_BIN_CANDIDATES = (
    "/usr/lib/syslinux/bios/isolinux.bin",
    "/usr/lib/ISOLINUX/isolinux.bin",
    "/usr/share/syslinux/isolinux.bin",
)

LDLINUX_CANDIDATES = (
    "/usr/lib/syslinux/bios/ldlinux.c32",
    "/usr/lib/syslinux/modules/bios/ldlinux.c32",
    "/usr/share/syslinux/ldlinux.c32",
)


def isolinux_config(label: str = "verity") -> str:
    return (
        f"DEFAULT {label}\n"
        f"LABEL {label}\n"
        "    LINUX /boot/vmlinuz\n"
        "    INITRD /boot/initramfs.gz\n"
        "    APPEND quiet\n"
    )


def first_existing(candidates: Iterable[str]) -> Optional[Path]:
    for c in candidates:
        p = Path(c)
        if p.is_file():
            return p
    return None


def install_isolinux(isolinux_dir: Path) -> None:
    """Write isolinux.cfg and copy the loader binaries from the host syslinux install."""

    isolinux_dir.mkdir(parents=True, exist_ok=True)
    (isolinux_dir / "isolinux.cfg").write_text(isolinux_config(), encoding="utf-8")

    isolinux_bin = first_existing(ISOLINUX_BIN_CANDIDATES)
    if isolinux_bin is None:
        raise ResourceError("isolinux.bin not found, install syslinux")
    copy_file(isolinux_bin, isolinux_dir / "isolinux.bin")

    # required by syslinux 5+, absent on older installs
    ldlinux = first_existing(LDLINUX_CANDIDATES)
    if ldlinux is not None:
        copy_file(ldlinux, isolinux_dir / "ldlinux.c32")
    logger.info("ISOLINUX installed from %s", isolinux_bin)


def make_iso(iso_dir: Path, output: Path, *, volume_label: str) -> None:
    run_cmd(
        [
            "xorriso",
            "-as",
            "mkisofs",
            "-o",
            str(output),
            "-V",
            volume_label,
            "-c",
            "boot/isolinux/boot.cat",
            "-b",
            "boot/isolinux/isolinux.bin",
            "-no-emul-boot",
            "-boot-load-size",
            "4",
            "-boot-info-table",
            str(iso_dir),
        ]
    )
