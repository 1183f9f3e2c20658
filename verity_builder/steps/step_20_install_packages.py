from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict

from ..errors import PackagingError
from ..lib.assets import asset_path, copy_tree
from ..lib.chroot import ChrootMounts
from ..lib.fs import copy_file
from ..lib.pkg import add_service_account, apk_add, apk_update, npm_install_production

logger = logging.getLogger(__name__)

SERVICE_ACCOUNT = "nginx"
SERVICE_DIRS = ("/var/www/html", "/var/log/nginx", "/run/nginx")
APP_DIR = "/opt/app"
APP_FILES = ("server.js", "package.json")
SEED_FILE = "seed.sql"


class InstallPackagesStep:
    step_id = "20_install_packages"
    requires = ("10_acquire_base",)

    def run(self, ctx, state: Dict[str, Any]) -> None:
        rootfs: Path = ctx.rootfs_dir
        manifest = ctx.manifest

        resolv = Path("/etc/resolv.conf")
        if resolv.exists():
            copy_file(resolv, rootfs / "etc/resolv.conf")

        if manifest.has("runtime"):
            self._stage_app(ctx)

        packages = list(manifest.packages)
        with ChrootMounts(rootfs) as mounts:
            apk_update(rootfs)
            apk_add(rootfs, packages)
            self._stage_web_content(ctx)
            add_service_account(rootfs, SERVICE_ACCOUNT, SERVICE_DIRS)
            if manifest.has("runtime"):
                npm_install_production(rootfs, APP_DIR)
        state["packages"] = {"installed": packages, "mounts_released": list(mounts.released)}

        self._install_configs(ctx)

    def _stage_app(self, ctx) -> None:
        src = ctx.project_path(ctx.settings.app_dir)
        dst = ctx.rootfs_dir / APP_DIR.lstrip("/")
        for name in APP_FILES:
            if not (src / name).is_file():
                raise PackagingError(f"runtime enabled but {src / name} is missing")
            copy_file(src / name, dst / name)
        # seed data is optional; the init script skips loading when it is absent
        if (src / SEED_FILE).exists():
            copy_file(src / SEED_FILE, dst / SEED_FILE)
        logger.info("Staged application from %s", src)

    def _stage_web_content(self, ctx) -> None:
        www = ctx.project_path(ctx.settings.www_dir)
        if www.is_dir() and any(www.iterdir()):
            copy_tree(www, ctx.rootfs_dir / "var/www/html")

    def _install_configs(self, ctx) -> None:
        rootfs: Path = ctx.rootfs_dir
        nginx_conf = "nginx-proxy.conf" if ctx.manifest.has("runtime") else "nginx.conf"
        copy_file(asset_path(nginx_conf), rootfs / "etc/nginx/nginx.conf")
        copy_file(asset_path("sysctl.conf"), rootfs / "etc/sysctl.conf")
        if ctx.manifest.has("discovery"):
            copy_file(asset_path("avahi-daemon.conf"), rootfs / "etc/avahi/avahi-daemon.conf")
