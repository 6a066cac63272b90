from __future__ import annotations

import logging

from ..context import BootstrapContext
from ..errors import ManifestError

logger = logging.getLogger(__name__)


class LoadManifestStep:
    step_id = "10_load_manifest"

    def run(self, ctx: BootstrapContext) -> None:
        ctx.report(None, "Loading bootstrap manifest")

        manifest = ctx.loader.load()
        if manifest.source is None:
            raise ManifestError("Unable to find the bootstrap manifest in any configured location")
        if not manifest.entries:
            logger.warning("Bootstrap manifest %s lists no components", manifest.source)

        ctx.manifest = manifest
        exe = ctx.state.setdefault("execution", {})
        exe["manifest_source"] = manifest.source
        exe["entries"] = [e.summary() for e in manifest.entries]
