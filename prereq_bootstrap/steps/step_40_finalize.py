from __future__ import annotations

import logging

from ..context import BootstrapContext
from ..lib.versions import find_highest

logger = logging.getLogger(__name__)


class FinalizeStep:
    """Activate the newest installed engine so later look-ups find it directly."""

    step_id = "40_finalize"

    def run(self, ctx: BootstrapContext) -> None:
        cfg = ctx.cfg
        ctx.report(95, "Finishing installation")

        engine = find_highest(cfg.install_root, cfg.engine_executable)
        if engine is None:
            logger.warning("No %s found under %s; skipping activation", cfg.engine_executable, cfg.install_root)
            return

        ctx.engine_path = engine
        if not cfg.activate_args:
            return

        ctx.cancel.check()
        status = ctx.runner.run([str(engine), *cfg.activate_args])
        if status != 0:
            logger.warning("Engine activation returned %d", status)
        ctx.state.setdefault("execution", {})["activated"] = {"engine": str(engine), "status": status}
