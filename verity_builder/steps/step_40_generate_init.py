from __future__ import annotations

import hashlib
import logging
from typing import Any, Dict

from ..initgen import build_init_script

logger = logging.getLogger(__name__)


class GenerateInitStep:
    step_id = "40_generate_init"
    requires = ("20_install_packages",)

    def run(self, ctx, state: Dict[str, Any]) -> None:
        script = build_init_script(ctx.manifest, ctx.settings)
        text = script.render()

        target = ctx.rootfs_dir / "sbin/init"
        target.parent.mkdir(parents=True, exist_ok=True)
        # /sbin/init is a busybox symlink in the base image; never write through it
        if target.is_symlink() or target.exists():
            target.unlink()
        target.write_text(text, encoding="utf-8")
        target.chmod(0o755)

        state["init"] = {
            "fragments": list(script.fragment_names),
            "sha256": hashlib.sha256(text.encode("utf-8")).hexdigest(),
        }
        logger.info("Wrote %s (%d bytes)", target, len(text))
