from __future__ import annotations

import logging
from typing import Callable, Optional

from ..context import BootstrapContext
from ..errors import InstallError, UnknownComponentTypeError, require
from ..lib.chain import ChainChannel
from ..lib.command import split_parameters
from ..lib.manifest import ManifestEntry
from ..lib.monitor import ChainMonitor
from .step_20_resolve_entries import RESOLVE_SHARE

logger = logging.getLogger(__name__)

INSTALL_SHARE = 50


def _hresult_failed(value: int) -> bool:
    return bool(value & 0x80000000)


EntryProgress = Callable[..., None]


def _entry_progress(ctx: BootstrapContext, index: int, count: int) -> EntryProgress:
    """Map an entry's own 0-100 progress into its slice of the install band."""

    start = RESOLVE_SHARE + index * INSTALL_SHARE // count
    end = RESOLVE_SHARE + (index + 1) * INSTALL_SHARE // count

    def report(percent: Optional[int], message: Optional[str] = None) -> None:
        if percent is None:
            ctx.report(None, message)
            return
        percent = max(0, min(100, percent))
        ctx.report(start + percent * (end - start) // 100, message)

    return report


class InstallEntriesStep:
    step_id = "30_install_entries"

    def _is_chained(self, ctx: BootstrapContext, entry: ManifestEntry) -> bool:
        chained = ctx.cfg.chained_component
        return bool(chained) and chained.lower() == entry.filename.lower()

    def _install_exe(self, ctx: BootstrapContext, entry: ManifestEntry) -> int:
        params = entry.parameters or ctx.cfg.default_exe_parameters
        argv = [str(entry.local_path), *split_parameters(params)]
        entry.install_method = "exe"
        ctx.cancel.check()
        return ctx.runner.run(argv)

    def _install_chained(self, ctx: BootstrapContext, entry: ManifestEntry, progress: EntryProgress) -> int:
        params = entry.parameters or ctx.cfg.default_exe_parameters
        entry.install_method = "chain"

        with ChainChannel.create(ctx.cfg.temp_dir) as channel:
            argv = [str(entry.local_path), *split_parameters(params), "/pipe", str(channel.path)]
            ctx.cancel.check()
            process = ctx.runner.start(argv)
            if process is None:
                logger.info("Dry run: chained installer %s not started", entry.filename)
                return 0

            def on_progress(step: str, percent: int) -> None:
                progress(percent, step or f"Installing {entry.cosmetic_name}")

            monitor = ChainMonitor(
                poll_interval_s=ctx.cfg.chain_poll_interval_s,
                is_cancelled=lambda: ctx.cancel.cancelled,
            )
            result = monitor.monitor(process, channel, on_progress)

        ctx.cancel.check()
        return result if _hresult_failed(result) else 0

    def _install_msi(self, ctx: BootstrapContext, entry: ManifestEntry, progress: EntryProgress) -> int:
        params = entry.parameters or ctx.cfg.default_msi_parameters
        params = params.replace("{install_root}", ctx.cfg.install_root)
        entry.install_method = "msi"
        ctx.cancel.check()
        return ctx.package_manager.install(entry.local_path, params, progress=progress)

    def _install(self, ctx: BootstrapContext, entry: ManifestEntry, progress: EntryProgress) -> int:
        ext = entry.extension
        if ext == ".exe":
            if self._is_chained(ctx, entry):
                return self._install_chained(ctx, entry, progress)
            return self._install_exe(ctx, entry)
        if ext == ".msi":
            return self._install_msi(ctx, entry, progress)
        raise UnknownComponentTypeError(f"Unknown component type for {entry.filename!r}")

    def run(self, ctx: BootstrapContext) -> None:
        require(ctx.manifest is not None, "manifest must be loaded before installation")

        entries = ctx.manifest.entries
        for index, entry in enumerate(entries):
            ctx.cancel.check()
            percent = RESOLVE_SHARE + (index + 1) * INSTALL_SHARE // len(entries)
            if entry.is_installed:
                ctx.report(percent, f"{entry.cosmetic_name} is already installed")
                continue

            require(entry.local_path is not None, f"{entry.filename} was not resolved")
            ctx.report(None, f"Installing {entry.cosmetic_name}")

            status: Optional[int] = None
            try:
                status = self._install(ctx, entry, _entry_progress(ctx, index, len(entries)))
            finally:
                entry.install_status = status
                ctx.state.setdefault("execution", {})["entries"] = [e.summary() for e in entries]
                ctx.report(percent)

            if status != 0:
                raise InstallError(f"{entry.cosmetic_name} failed to install (status {status:#x})")

            entry.is_installed = True
            if entry.registry_key_check:
                if ctx.runner.dry_run:
                    logger.info("Dry run: not marking %s present", entry.registry_key_check)
                else:
                    ctx.presence.mark_present(entry.registry_key_check)
            logger.info("Installed %s via %s", entry.cosmetic_name, entry.install_method)
