"""
Shared fixtures for the verity builder test suite.

Nothing here needs root, network access or real mounts: external commands
go through FakeRunner and downloads through a fake requests.get.
"""

import hashlib
import logging
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

import pytest

from verity_builder.build_config import BuildSettings
from verity_builder.build_steps import BuildCtx
from verity_builder.errors import CommandError
from verity_builder.features import build_manifest, resolve_features
from verity_builder.lib.command import CmdResult
from verity_builder.workspace import Workspace

KVER = "6.12.13-0-lts"

PATCHED_RUN_CMD = (
    "verity_builder.lib.command.run_cmd",
    "verity_builder.lib.chroot.run_cmd",
    "verity_builder.lib.bootloader.run_cmd",
    "verity_builder.steps.step_10_acquire_base.run_cmd",
    "verity_builder.steps.step_30_build_initramfs.run_cmd",
    "verity_builder.steps.step_60_package_image.run_cmd",
)


class FakeRunner:
    """Records argv lists; fails commands containing a token in fail_on."""

    def __init__(self) -> None:
        self.calls: List[List[str]] = []
        self.fail_on: List[str] = []
        self.hooks: List[Tuple[str, Callable[[List[str], Optional[str]], None]]] = []

    def __call__(self, argv: Sequence[str], *, check=True, env=None, cwd=None, input_text=None):
        argv = list(argv)
        self.calls.append(argv)
        joined = " ".join(argv)
        for token, fn in self.hooks:
            if token in joined:
                fn(argv, cwd)
        rc = 1 if any(token in joined for token in self.fail_on) else 0
        if rc and check:
            raise CommandError(argv, rc, "simulated failure")
        return CmdResult(argv=argv, returncode=rc, stdout="", stderr="")

    def commands(self, name: str) -> List[List[str]]:
        return [c for c in self.calls if c and c[0] == name]

    def chroot_commands(self) -> List[List[str]]:
        return [c[2:] for c in self.calls if c[:1] == ["chroot"]]


@pytest.fixture
def fake_cmd(monkeypatch) -> FakeRunner:
    runner = FakeRunner()
    for target in PATCHED_RUN_CMD:
        monkeypatch.setattr(target, runner)
    return runner


@pytest.fixture
def settings() -> BuildSettings:
    return BuildSettings()


def make_base_rootfs(rootfs: Path) -> None:
    """Populate a tree that looks like an extracted minirootfs after apk add."""

    (rootfs / "boot").mkdir(parents=True, exist_ok=True)
    (rootfs / "boot/vmlinuz-lts").write_bytes(b"kernel")
    (rootfs / "bin").mkdir(parents=True, exist_ok=True)
    (rootfs / "bin/busybox").write_bytes(b"busybox")
    (rootfs / "bin/busybox.static").write_bytes(b"static-busybox")
    (rootfs / "sbin").mkdir(parents=True, exist_ok=True)
    (rootfs / "sbin/apk").write_bytes(b"apk")
    (rootfs / "sbin/init").symlink_to("/bin/busybox")
    (rootfs / "usr/bin").mkdir(parents=True, exist_ok=True)
    (rootfs / "usr/bin/wget").symlink_to("/bin/busybox")
    (rootfs / "usr/bin/vi").symlink_to("/bin/busybox")
    (rootfs / "usr/share/man/man1").mkdir(parents=True, exist_ok=True)
    (rootfs / "usr/share/man/man1/ls.1").write_text("man", encoding="utf-8")
    (rootfs / "var/cache/apk").mkdir(parents=True, exist_ok=True)
    (rootfs / "var/cache/apk/APKINDEX.tar.gz").write_bytes(b"idx")
    (rootfs / "etc/nginx").mkdir(parents=True, exist_ok=True)
    (rootfs / "tmp").mkdir(parents=True, exist_ok=True)
    (rootfs / "tmp/leftover").write_text("x", encoding="utf-8")

    moddir = rootfs / "lib/modules" / KVER
    modules = {
        "kernel/fs/squashfs/squashfs.ko.gz": [],
        "kernel/fs/isofs/isofs.ko.gz": [],
        "kernel/drivers/cdrom/cdrom.ko.gz": [],
        "kernel/drivers/scsi/sr_mod.ko.gz": ["kernel/drivers/cdrom/cdrom.ko.gz"],
        "kernel/drivers/block/virtio_blk.ko.gz": [],
        "kernel/drivers/net/ethernet/intel/e1000/e1000.ko.gz": [],
    }
    for rel in modules:
        (moddir / rel).parent.mkdir(parents=True, exist_ok=True)
        (moddir / rel).write_bytes(rel.encode("utf-8"))
    (moddir / "modules.dep").write_text(
        "".join(f"{rel}: {' '.join(deps)}\n" for rel, deps in modules.items()),
        encoding="utf-8",
    )
    (moddir / "modules.alias").write_text("alias cd sr_mod\n", encoding="utf-8")
    (moddir / "modules.builtin").write_text("kernel/drivers/block/loop.ko\n", encoding="utf-8")


@pytest.fixture
def make_ctx(tmp_path, settings):
    def _make(flags=None, **overrides) -> BuildCtx:
        cfg = resolve_features(flags or {})
        ws = Workspace.from_path(tmp_path / "work").create()
        project = tmp_path / "project"
        project.mkdir(exist_ok=True)
        return BuildCtx(
            cfg=cfg,
            manifest=build_manifest(cfg),
            settings=overrides.pop("settings", settings),
            workspace=ws,
            project_dir=project,
        )

    return _make


def sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


@pytest.fixture(autouse=True)
def drop_build_log_handlers():
    yield
    root = logging.getLogger()
    for h in [h for h in root.handlers if getattr(h, "verity_build", False)]:
        root.removeHandler(h)
        h.close()
