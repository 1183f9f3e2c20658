from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, List, Tuple

from .features import BuildConfig

BASE_MEMORY_MB = 512
DATABASE_MEMORY_MB = 1024
HOST_PORT = 8080
GUEST_PORT = 80


@dataclass(frozen=True)
class BootProfile:
    memory_mb: int
    host_port: int = HOST_PORT
    guest_port: int = GUEST_PORT

    @classmethod
    def for_config(cls, cfg: BuildConfig) -> "BootProfile":
        # initdb + shared_buffers need the extra headroom
        return cls(memory_mb=DATABASE_MEMORY_MB if cfg.database else BASE_MEMORY_MB)

    def qemu_argv(self, iso: str | Path) -> List[str]:
        return [
            "qemu-system-x86_64",
            "-cdrom",
            str(iso),
            "-m",
            str(self.memory_mb),
            "-nographic",
            "-serial",
            "mon:stdio",
            "-net",
            "nic,model=e1000",
            "-net",
            f"user,hostfwd=tcp::{self.host_port}-:{self.guest_port}",
        ]


@dataclass(frozen=True)
class ImageArtifact:
    path: Path
    sha256: str
    size: int
    components: Tuple[str, ...]
    boot: BootProfile

    @property
    def metadata_path(self) -> Path:
        return self.path.with_name(self.path.name + ".json")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": str(self.path),
            "sha256": self.sha256,
            "size": self.size,
            "components": list(self.components),
            "boot": asdict(self.boot),
        }

    def write_metadata(self) -> None:
        """Write <iso>.json and SHA256SUMS next to the ISO."""

        _atomic_write(self.metadata_path, json.dumps(self.to_dict(), indent=2, sort_keys=True) + "\n")
        _atomic_write(self.path.parent / "SHA256SUMS", f"{self.sha256}  {self.path.name}\n")


def load_artifact(iso_path: str | Path) -> ImageArtifact:
    iso = Path(iso_path)
    meta = json.loads(iso.with_name(iso.name + ".json").read_text(encoding="utf-8"))
    return ImageArtifact(
        path=iso,
        sha256=meta["sha256"],
        size=int(meta["size"]),
        components=tuple(meta.get("components") or ()),
        boot=BootProfile(**meta["boot"]),
    )


def _atomic_write(path: Path, text: str) -> None:
    tmp = path.with_name(path.name + ".tmp")
    tmp.write_text(text, encoding="utf-8")
    tmp.replace(path)
