from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from .artifact import BootProfile, load_artifact
from .build_config import DEFAULT_CONFIG_PATH, BuildSettings, load_build_file, load_settings
from .build_state import new_build_state, record_error, save_build_state
from .build_steps import BuildCtx, all_steps
from .errors import ConfigError, VerityError
from .features import BuildConfig, ComponentManifest, build_manifest, resolve_features
from .initgen import build_init_script, render_stage1_init
from .logging_utils import configure_logging
from .pipeline import run_pipeline
from .preflight import check_host
from .steps.step_30_build_initramfs import BOOT_MODULES
from .workspace import Workspace

logger = logging.getLogger(__name__)


def resolve(config_path: str) -> Tuple[BuildConfig, ComponentManifest, BuildSettings]:
    """Config file -> validated flags, manifest and settings. No side effects."""

    raw = load_build_file(config_path)
    cfg = resolve_features(raw)
    return cfg, build_manifest(cfg), load_settings(raw)


def run_build(
    *,
    config_path: str,
    log_path: Optional[str] = None,
    project_dir: Optional[str] = None,
    stop_after: Optional[str] = None,
    verbose: bool = False,
) -> Dict[str, Any]:
    """Resolve, preflight, then run every step inside the locked workspace.

    Nothing touches the filesystem until the config is valid and the host
    passed preflight. The build log defaults to the workspace root, next to
    the build record.
    """

    cfg, manifest, settings = resolve(config_path)
    check_host()

    workspace = Workspace.from_path(settings.work_dir)
    ctx = BuildCtx(
        cfg=cfg,
        manifest=manifest,
        settings=settings,
        workspace=workspace,
        project_dir=Path(project_dir or os.getcwd()).absolute(),
    )

    with workspace.lock():
        actual_log = configure_logging(log_path or workspace.log_path, verbose=verbose)
        logger.info(
            "=== Build: flags %s, components=%s ===",
            ", ".join(f"{k}={v}" for k, v in cfg.flags.items()),
            ", ".join(manifest.names) or "(none)",
        )
        workspace.reset()
        state = new_build_state(cfg, manifest)
        state["log_path"] = str(actual_log)
        try:
            result = run_pipeline(ctx=ctx, state=state, steps=all_steps(), stop_after=stop_after)
            state = result.state
        except VerityError as e:
            logger.error("Build failed: %s", e)
            record_error(state, e)
            raise
        finally:
            save_build_state(workspace.state_path, state)

    artifact = state.get("artifact")
    if artifact:
        logger.info(
            "Build complete: %s (%.1f MiB) components: %s",
            artifact["path"],
            artifact["size"] / (1024 * 1024),
            ", ".join(artifact["components"]),
        )
    return state


def cmd_build(args: argparse.Namespace) -> int:
    run_build(
        config_path=args.config,
        log_path=args.log,
        project_dir=args.project_dir,
        stop_after=args.stop_after,
        verbose=args.verbose,
    )
    return 0


def cmd_plan(args: argparse.Namespace) -> int:
    cfg, manifest, settings = resolve(args.config)
    script = build_init_script(manifest, settings)
    print("flags:")
    for name, value in cfg.flags.items():
        print(f"  {name}: {'on' if value else 'off'}")
    print(f"components: {', '.join(manifest.names) or '(none)'}")
    print(f"packages: {' '.join(manifest.packages)}")
    print(f"init fragments: {' -> '.join(script.fragment_names)}")
    print(f"boot memory: {BootProfile.for_config(cfg).memory_mb} MiB")
    print(f"output: {settings.output_path}")
    return 0


def cmd_render_init(args: argparse.Namespace) -> int:
    _, manifest, settings = resolve(args.config)
    if args.stage == "1":
        sys.stdout.write(render_stage1_init(settings, BOOT_MODULES))
    else:
        sys.stdout.write(build_init_script(manifest, settings).render())
    return 0


def cmd_boot(args: argparse.Namespace) -> int:
    _, _, settings = resolve(args.config)
    iso = Path(args.project_dir or os.getcwd()) / settings.output_path
    if not iso.is_file():
        raise VerityError(f"ISO not found at {iso}, run 'verity-build build' first")
    artifact = load_artifact(iso)
    argv = artifact.boot.qemu_argv(iso)
    print(f"Booting {iso} ({artifact.boot.memory_mb} MiB), http://localhost:{artifact.boot.host_port}")
    sys.stdout.flush()
    os.execvp(argv[0], argv)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="verity-build")
    p.add_argument("--config", default=DEFAULT_CONFIG_PATH, help="Feature file (.yaml|.json|.conf)")
    p.add_argument("--project-dir", default=None, help="Directory holding app/ and www/ (default: cwd)")
    p.add_argument("-v", "--verbose", action="store_true", help="Show command output on the console")
    sub = p.add_subparsers(dest="command", required=True)

    b = sub.add_parser("build", help="Build the ISO")
    b.add_argument("--log", default=None, help="Build log (default: <work_dir>/verity-build.log)")
    b.add_argument("--stop-after", default=None, help="Stop after step_id (e.g. 30_build_initramfs)")
    b.set_defaults(func=cmd_build)

    pl = sub.add_parser("plan", help="Show resolved flags, packages and init fragments")
    pl.set_defaults(func=cmd_plan)

    r = sub.add_parser("render-init", help="Print a generated init program")
    r.add_argument("--stage", choices=("1", "2"), default="2")
    r.set_defaults(func=cmd_render_init)

    bt = sub.add_parser("boot", help="Boot the built ISO in QEMU")
    bt.set_defaults(func=cmd_boot)
    return p


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return args.func(args)
    except ConfigError as e:
        print(f"verity: config error: {e}", file=sys.stderr)
        return 2
    except VerityError as e:
        print(f"verity: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
