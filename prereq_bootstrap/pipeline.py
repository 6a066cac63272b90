from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence

from .context import BootstrapContext
from .state_store import mark_step_completed

logger = logging.getLogger(__name__)


class Step(Protocol):
    """A single bootstrap step."""

    step_id: str

    def run(self, ctx: BootstrapContext) -> None:
        ...


@dataclass(frozen=True)
class PipelineResult:
    ran_steps: List[str]


def run_pipeline(
    *,
    ctx: BootstrapContext,
    steps: Sequence[Step],
    stop_after: Optional[str] = None,
) -> PipelineResult:
    """Run steps in order. Cancellation is checked before each step."""

    ran: List[str] = []
    exe = ctx.state.setdefault("execution", {})

    for step in steps:
        ctx.cancel.check()
        exe["current_step"] = step.step_id

        logger.info("Running step %s", step.step_id)
        step.run(ctx)
        mark_step_completed(ctx.state, step.step_id)
        ran.append(step.step_id)

        if stop_after is not None and step.step_id == stop_after:
            logger.info("Stopping after %s", stop_after)
            break

    exe["current_step"] = None
    return PipelineResult(ran_steps=ran)
