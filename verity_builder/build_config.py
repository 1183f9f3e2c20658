from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict

import yaml

from .errors import ConfigError

DEFAULT_CONFIG_PATH = "verity.yaml"

# verity.conf (shell KEY=yes) -> feature flag
LEGACY_FLAG_KEYS = {
    "ENABLE_MDNS": "discovery",
    "ENABLE_NODE": "runtime",
    "ENABLE_POSTGRES": "database",
}


@dataclass(frozen=True)
class BuildSettings:
    raw: Dict[str, Any] = field(default_factory=dict)

    def _get(self, key: str, default: Any) -> Any:
        value = self.raw.get(key)
        return default if value is None else value

    @property
    def alpine_version(self) -> str:
        return str(self._get("alpine_version", "3.21"))

    @property
    def alpine_release(self) -> str:
        return str(self._get("alpine_release", f"{self.alpine_version}.0"))

    @property
    def arch(self) -> str:
        return str(self._get("arch", "x86_64"))

    @property
    def mirror(self) -> str:
        return str(self._get("mirror", "https://dl-cdn.alpinelinux.org/alpine")).rstrip("/")

    @property
    def rootfs_archive_name(self) -> str:
        return f"alpine-minirootfs-{self.alpine_release}-{self.arch}.tar.gz"

    @property
    def rootfs_url(self) -> str:
        return f"{self.mirror}/v{self.alpine_version}/releases/{self.arch}/{self.rootfs_archive_name}"

    @property
    def checksum_url(self) -> str:
        return f"{self.rootfs_url}.sha256"

    @property
    def work_dir(self) -> str:
        return str(self._get("work_dir", "/tmp/verity-build"))

    @property
    def output_dir(self) -> str:
        return str(self._get("output_dir", "build"))

    @property
    def iso_name(self) -> str:
        return str(self._get("iso_name", "verity.iso"))

    @property
    def output_path(self) -> Path:
        return Path(self.output_dir) / self.iso_name

    @property
    def app_dir(self) -> str:
        return str(self._get("app_dir", "app"))

    @property
    def www_dir(self) -> str:
        return str(self._get("www_dir", "www"))

    @property
    def volume_label(self) -> str:
        return str(self._get("volume_label", "VERITY"))

    @property
    def scan_attempts(self) -> int:
        return int(self._get("scan_attempts", 10))

    @property
    def scan_delay(self) -> int:
        return int(self._get("scan_delay", 1))

    @property
    def db_ready_attempts(self) -> int:
        return int(self._get("db_ready_attempts", 15))


def _parse_legacy_conf(text: str) -> Dict[str, Any]:
    raw: Dict[str, Any] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        flag = LEGACY_FLAG_KEYS.get(key.strip())
        if flag:
            raw[flag] = value.strip().strip("'\"").lower() == "yes"
    return raw


def load_build_file(path: str | Path) -> Dict[str, Any]:
    """Load the feature/settings file as a plain mapping.

    A missing file yields an empty mapping (every flag off, default settings).
    """

    p = Path(path)
    if not p.exists():
        return {}

    text = p.read_text(encoding="utf-8")
    suffix = p.suffix.lower()
    try:
        if suffix in {".yaml", ".yml"}:
            raw = yaml.safe_load(text) or {}
        elif suffix == ".json":
            raw = json.loads(text or "{}")
        elif suffix == ".conf":
            raw = _parse_legacy_conf(text)
        else:
            raise ConfigError(f"Unsupported config format: {p.name} (expected .yaml, .json or .conf)")
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigError(f"Cannot parse {p}: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigError(f"{p} must contain a mapping/object")
    return raw


# build settings that must be whole numbers >= 1
POSITIVE_INT_SETTINGS = ("scan_attempts", "scan_delay", "db_ready_attempts")


def _positive_int(key: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"build.{key} must be a positive integer, got {value!r}")
    try:
        number = int(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"build.{key} must be a positive integer, got {value!r}") from e
    if number < 1 or (isinstance(value, float) and value != number):
        raise ConfigError(f"build.{key} must be a positive integer, got {value!r}")
    return number


def load_settings(raw: Dict[str, Any]) -> BuildSettings:
    """Extract and validate the 'build' section."""

    section = raw.get("build") or {}
    if not isinstance(section, dict):
        raise ConfigError("'build' section must be a mapping")
    settings = dict(section)
    for key in POSITIVE_INT_SETTINGS:
        if settings.get(key) is not None:
            settings[key] = _positive_int(key, settings[key])
    return BuildSettings(raw=settings)
