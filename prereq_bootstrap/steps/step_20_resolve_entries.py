from __future__ import annotations

import logging

from ..context import BootstrapContext
from ..errors import DownloadError, SignatureError, require

logger = logging.getLogger(__name__)

# Share of the progress bar used by the resolve pass.
RESOLVE_SHARE = 40


class ResolveEntriesStep:
    step_id = "20_resolve_entries"

    def _force_reinstall(self, ctx: BootstrapContext) -> bool:
        if ctx.force_reinstall:
            return True
        key = ctx.cfg.force_reinstall_key
        return bool(key) and ctx.presence.key_present(key)

    def run(self, ctx: BootstrapContext) -> None:
        require(ctx.manifest is not None, "manifest must be loaded before resolution")

        entries = ctx.manifest.entries
        force = self._force_reinstall(ctx)
        if force:
            logger.info("Forced reinstall: presence checks disabled")

        for index, entry in enumerate(entries):
            ctx.cancel.check()
            ctx.report(index * RESOLVE_SHARE // len(entries), f"Looking for {entry.cosmetic_name}")

            if not force and entry.registry_key_check and ctx.presence.key_present(entry.registry_key_check):
                logger.info("%s already present (%s)", entry.cosmetic_name, entry.registry_key_check)
                entry.is_installed = True
                entry.install_method = "presence"
                continue

            res = ctx.resolver.resolve(entry.filename, entry.location or None)
            if not res.found:
                searched = ", ".join(c.describe() for c in res.tried) or "(no locations)"
                if res.rejected:
                    raise SignatureError(
                        f"{entry.filename} failed signature validation (searched: {searched})"
                    )
                raise DownloadError(f"Unable to download {entry.filename} (searched: {searched})")

            entry.local_path = res.path

        ctx.state.setdefault("execution", {})["entries"] = [e.summary() for e in entries]
