from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from .build_config import BuildSettings
from .features import BuildConfig, ComponentManifest
from .workspace import Workspace


@dataclass(frozen=True)
class BuildCtx:
    cfg: BuildConfig
    manifest: ComponentManifest
    settings: BuildSettings
    workspace: Workspace
    project_dir: Path

    @property
    def rootfs_dir(self) -> Path:
        return self.workspace.rootfs_dir

    @property
    def initramfs_dir(self) -> Path:
        return self.workspace.initramfs_dir

    def project_path(self, rel: str | Path) -> Path:
        p = Path(rel)
        return p if p.is_absolute() else self.project_dir / p

    @property
    def output_path(self) -> Path:
        return self.project_path(self.settings.output_path)


def all_steps():
    from .steps import (
        AcquireBaseStep,
        BuildInitramfsStep,
        GenerateInitStep,
        HardenStep,
        InstallPackagesStep,
        PackageImageStep,
    )

    return [
        AcquireBaseStep(),
        InstallPackagesStep(),
        BuildInitramfsStep(),
        GenerateInitStep(),
        HardenStep(),
        PackageImageStep(),
    ]
