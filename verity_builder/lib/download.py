from __future__ import annotations

import hashlib
import logging
from pathlib import Path

import requests

from ..errors import ResourceError, VerificationError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1 << 16
TIMEOUT_S = 60


def fetch(url: str, dest: Path) -> Path:
    """Download url to dest via a temporary file; dest only appears when complete."""

    dest.parent.mkdir(parents=True, exist_ok=True)
    partial = dest.with_name(dest.name + ".part")
    logger.info("Downloading %s -> %s", url, dest)
    try:
        with requests.get(url, stream=True, timeout=TIMEOUT_S) as r:
            r.raise_for_status()
            with open(partial, "wb") as f:
                for chunk in r.iter_content(chunk_size=CHUNK_SIZE):
                    f.write(chunk)
    except requests.RequestException as e:
        partial.unlink(missing_ok=True)
        raise ResourceError(f"Failed to download {url}: {e}") from e
    partial.replace(dest)
    return dest


def sha256_file(path: Path) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            h.update(chunk)
    return h.hexdigest()


def parse_checksum(text: str, filename: str) -> str:
    """Extract the digest for filename from sha256sum-style text.

    Accepts "<hex>  <name>" lines as well as a bare digest.
    """

    for line in text.splitlines():
        fields = line.split()
        if not fields:
            continue
        if len(fields) == 1 or fields[-1].lstrip("*") == filename:
            digest = fields[0].lower()
            if len(digest) == 64 and all(c in "0123456789abcdef" for c in digest):
                return digest
    raise VerificationError(f"No SHA-256 digest for {filename} in published checksum")


def verify_sha256(archive: Path, checksum_file: Path) -> str:
    expected = parse_checksum(checksum_file.read_text(encoding="utf-8"), archive.name)
    actual = sha256_file(archive)
    if actual != expected:
        raise VerificationError(
            f"Checksum mismatch for {archive.name}: expected {expected}, got {actual}"
        )
    logger.info("Verified %s (sha256 %s)", archive.name, actual)
    return actual
