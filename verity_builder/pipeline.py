from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Protocol, Sequence, Tuple

from .build_state import mark_step_completed
from .errors import PackagingError, ResourceError, VerityError
from .logging_utils import step_context

if TYPE_CHECKING:
    from .build_steps import BuildCtx

logger = logging.getLogger(__name__)


class Step(Protocol):
    """A single build stage with explicit prerequisites."""

    step_id: str
    requires: Tuple[str, ...]

    def run(self, ctx: "BuildCtx", state: Dict[str, Any]) -> None:
        ...


@dataclass(frozen=True)
class PipelineResult:
    state: Dict[str, Any]
    ran_steps: List[str]


def order_steps(steps: Sequence[Step]) -> List[Step]:
    """Topologically order steps by `requires`; declaration order breaks ties."""

    by_id = {s.step_id: s for s in steps}
    if len(by_id) != len(steps):
        raise PackagingError("duplicate step ids in pipeline")
    for s in steps:
        for dep in s.requires:
            if dep not in by_id:
                raise PackagingError(f"step {s.step_id} requires unknown step {dep}")

    done: set[str] = set()
    ordered: List[Step] = []
    pending = list(steps)
    while pending:
        ready = next((s for s in pending if all(d in done for d in s.requires)), None)
        if ready is None:
            raise PackagingError(
                "dependency cycle between steps: " + ", ".join(s.step_id for s in pending)
            )
        pending.remove(ready)
        done.add(ready.step_id)
        ordered.append(ready)
    return ordered


def run_pipeline(
    *,
    ctx: "BuildCtx",
    state: Dict[str, Any],
    steps: Sequence[Step],
    stop_after: Optional[str] = None,
) -> PipelineResult:
    """Run steps in dependency order, failing fast on the first error."""

    ordered = order_steps(steps)
    if stop_after is not None and stop_after not in {s.step_id for s in ordered}:
        raise PackagingError(f"unknown step for stop_after: {stop_after}")

    ran: List[str] = []
    exe = state.setdefault("execution", {})
    for step in ordered:
        exe["current_step"] = step.step_id
        with step_context(step.step_id):
            logger.info("Running step %s", step.step_id)
            try:
                step.run(ctx, state)
            except VerityError:
                raise
            except OSError as e:
                raise ResourceError(f"{step.step_id}: {e}") from e
        mark_step_completed(state, step.step_id)
        ran.append(step.step_id)

        if stop_after is not None and step.step_id == stop_after:
            logger.info("Stopping after %s", stop_after)
            break

    exe["current_step"] = None
    return PipelineResult(state=state, ran_steps=ran)
