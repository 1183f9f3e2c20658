from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

from .errors import ResourceError

BUILD_LOG_NAME = "verity-build.log"

LOG_FORMAT = "%(asctime)s %(levelname)s [%(step)s] %(name)s: %(message)s"

_current_step: Optional[str] = None


class StepFilter(logging.Filter):
    """Stamps each record with the build step that was running when it was emitted."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.step = _current_step or "-"
        return True


@contextmanager
def step_context(step_id: str) -> Iterator[None]:
    global _current_step
    previous = _current_step
    _current_step = step_id
    try:
        yield
    finally:
        _current_step = previous


def _build_handlers(root: logging.Logger) -> List[logging.Handler]:
    return [h for h in root.handlers if getattr(h, "verity_build", False)]


def configure_logging(
    log_path: str | Path,
    *,
    verbose: bool = False,
    also_console: bool = True,
) -> Path:
    """Route the root logger to the build log (and the console) for one build.

    Every command the builder runs and every step transition ends up in
    log_path. Handlers from a previous build in the same process are
    replaced, never stacked.

    Returns the log file path.
    """

    path = Path(log_path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler: logging.Handler = logging.FileHandler(path, encoding="utf-8")
    except OSError as e:
        raise ResourceError(f"Cannot open build log {path}: {e}") from e

    root = logging.getLogger()
    for old in _build_handlers(root):
        root.removeHandler(old)
        old.close()

    handlers = [file_handler]
    if also_console:
        handlers.append(logging.StreamHandler())

    fmt = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S%z")
    for h in handlers:
        h.setFormatter(fmt)
        h.addFilter(StepFilter())
        h.verity_build = True
        root.addHandler(h)
    # the file always gets the command output; -v only widens the console
    file_handler.setLevel(logging.DEBUG)
    if also_console:
        handlers[1].setLevel(logging.DEBUG if verbose else logging.INFO)
    root.setLevel(logging.DEBUG)

    logging.getLogger(__name__).info("Build log: %s", path)
    return path
