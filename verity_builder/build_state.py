from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Any, Dict

from .features import BuildConfig, ComponentManifest


def new_build_state(cfg: BuildConfig, manifest: ComponentManifest) -> Dict[str, Any]:
    return {
        "started_at": time.strftime("%Y-%m-%dT%H:%M:%S%z"),
        "config": cfg.flags,
        "manifest": list(manifest.names),
        "execution": {
            "current_step": None,
            "completed_steps": [],
            "errors": [],
        },
    }


def save_build_state(path: str | Path, state: Dict[str, Any]) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(json.dumps(state, indent=2, sort_keys=True, default=str) + "\n", encoding="utf-8")


def mark_step_completed(state: Dict[str, Any], step_id: str) -> None:
    exe = state.setdefault("execution", {})
    completed = exe.setdefault("completed_steps", [])
    if step_id not in completed:
        completed.append(step_id)


def record_error(state: Dict[str, Any], error: BaseException) -> None:
    exe = state.setdefault("execution", {})
    exe.setdefault("errors", []).append(
        {
            "step": exe.get("current_step"),
            "type": type(error).__name__,
            "error": str(error),
        }
    )
