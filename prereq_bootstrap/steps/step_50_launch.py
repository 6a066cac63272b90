from __future__ import annotations

import logging

from ..context import BootstrapContext
from ..errors import NotFunctioningError
from ..lib.versions import find_highest

logger = logging.getLogger(__name__)


class LaunchStep:
    step_id = "50_launch"

    def run(self, ctx: BootstrapContext) -> None:
        cfg = ctx.cfg

        engine = find_highest(cfg.install_root, cfg.engine_executable)
        if engine is None:
            raise NotFunctioningError(
                f"Prerequisites installed but {cfg.engine_executable} cannot be found under {cfg.install_root}"
            )

        ctx.engine_path = engine
        ctx.cancel.check()
        ctx.launched = ctx.runner.start([str(engine), *cfg.launch_args, *ctx.forwarded_args])
        ctx.state.setdefault("execution", {})["launched"] = str(engine)
        ctx.report(100, "Done")
