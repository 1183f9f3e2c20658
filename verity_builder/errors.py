from __future__ import annotations

from typing import Sequence


class VerityError(Exception):
    """Base class for build failures reported to the operator."""


class ConfigError(VerityError):
    """Invalid feature flag combination or malformed config file."""


class VerificationError(VerityError):
    """Downloaded archive does not match its published checksum."""


class ResourceError(VerityError):
    """Missing host tool, insufficient privilege or disk failure."""


class PackagingError(VerityError):
    """A staging, installation or packaging step failed."""


class CommandError(PackagingError):
    def __init__(self, argv: Sequence[str], returncode: int, stderr: str = "") -> None:
        self.argv = list(argv)
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(f"Command failed ({returncode}): {' '.join(self.argv)}\n{stderr}".rstrip())
