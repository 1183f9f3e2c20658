"""Feature resolution: raw flag mapping -> BuildConfig -> ComponentManifest.

Component order is fixed by the COMPONENTS table, never by the order the
flags were supplied in.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple

from .errors import ConfigError

logger = logging.getLogger(__name__)


BASE_PACKAGES = (
    "nginx",
    "linux-lts",
    "busybox-static",
    "tzdata",
    "ca-certificates",
)


@dataclass(frozen=True)
class ComponentDescriptor:
    name: str
    packages: Tuple[str, ...]
    init_fragment: Optional[str] = None
    requires: Tuple[str, ...] = ()


COMPONENTS: Tuple[ComponentDescriptor, ...] = (
    ComponentDescriptor(name="discovery", packages=("avahi",), init_fragment="discovery"),
    ComponentDescriptor(name="runtime", packages=("nodejs", "npm"), init_fragment="runtime"),
    ComponentDescriptor(
        name="database",
        packages=("postgresql",),
        init_fragment="database",
        requires=("runtime",),
    ),
)

FLAG_NAMES = tuple(c.name for c in COMPONENTS)


@dataclass(frozen=True)
class BuildConfig:
    discovery: bool = False
    runtime: bool = False
    database: bool = False

    def enabled(self, name: str) -> bool:
        return bool(getattr(self, name))

    @property
    def flags(self) -> Dict[str, bool]:
        return {name: self.enabled(name) for name in FLAG_NAMES}


@dataclass(frozen=True)
class ComponentManifest:
    components: Tuple[ComponentDescriptor, ...]

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(c.name for c in self.components)

    @property
    def packages(self) -> Tuple[str, ...]:
        """Base packages followed by component packages, in component order."""
        out = list(BASE_PACKAGES)
        for c in self.components:
            out.extend(p for p in c.packages if p not in out)
        return tuple(out)

    def has(self, name: str) -> bool:
        return name in self.names

    def to_dict(self) -> Dict[str, Any]:
        return {
            "components": [
                {
                    "name": c.name,
                    "packages": sorted(c.packages),
                    "init_fragment": c.init_fragment,
                }
                for c in self.components
            ],
        }

    def render(self) -> bytes:
        return (json.dumps(self.to_dict(), indent=2, sort_keys=True) + "\n").encode("utf-8")


def resolve_features(raw: Mapping[str, Any]) -> BuildConfig:
    """Validate a (possibly partial) flag mapping.

    Unknown keys are ignored and missing flags default to off. Raises
    ConfigError for non-boolean values and unmet component dependencies.
    """

    flags: Dict[str, bool] = {}
    for name in FLAG_NAMES:
        value = raw.get(name, False)
        if value is None:
            value = False
        if not isinstance(value, bool):
            raise ConfigError(f"Flag {name!r} must be a boolean, got {value!r}")
        flags[name] = value

    for comp in COMPONENTS:
        if not flags[comp.name]:
            continue
        for dep in comp.requires:
            if not flags[dep]:
                raise ConfigError(f"'{comp.name}' requires '{dep}' (set {dep}: true or disable {comp.name})")

    cfg = BuildConfig(**flags)
    logger.info("Resolved features: %s", ", ".join(f"{k}={v}" for k, v in cfg.flags.items()))
    return cfg


def build_manifest(cfg: BuildConfig) -> ComponentManifest:
    return ComponentManifest(components=tuple(c for c in COMPONENTS if cfg.enabled(c.name)))
