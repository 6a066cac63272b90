from __future__ import annotations

import argparse
import locale
import logging
import os
import sys
import tempfile
import threading
from typing import Any, Dict, List, Optional, Sequence

from .config import DEFAULT_LCID, BootstrapConfig, load_config, with_overrides
from .context import BootstrapContext, CancelToken
from .errors import EXIT_INTERNAL_ERROR, EXIT_OK, BootstrapError, Cancelled
from .lib.command import ProcessRunner
from .lib.fetch import Fetcher
from .lib.manifest import ManifestLoader
from .lib.package import ParentPackage
from .lib.package_manager import CommandPackageManager
from .lib.presence import PresenceRegistry
from .lib.resolver import SourceResolver
from .lib.trust import TrustGate
from .logging_utils import DEFAULT_LOG_PATH, configure_logging
from .pipeline import PipelineResult, run_pipeline
from .state_store import ensure_defaults, save_state
from .steps import (
    FinalizeStep,
    InstallEntriesStep,
    LaunchStep,
    LoadManifestStep,
    ResolveEntriesStep,
)
from .ui import ConsoleUI, ProgressUI

logger = logging.getLogger(__name__)


DEFAULT_STATE_PATH = os.path.join(tempfile.gettempdir(), "prereq-bootstrap-run.json")
JOIN_INTERVAL_S = 0.2


def build_steps():
    return [
        LoadManifestStep(),
        ResolveEntriesStep(),
        InstallEntriesStep(),
        FinalizeStep(),
        LaunchStep(),
    ]


def default_locale_id() -> int:
    """LCID of the current user locale, 1033 (en-US) when it cannot be mapped."""

    try:
        name = locale.getlocale()[0]
    except ValueError:
        name = None
    if name:
        wanted = name.replace("-", "_").lower()
        for lcid, code in locale.windows_locale.items():
            if code.lower() == wanted:
                return lcid
    return DEFAULT_LCID


def build_context(
    cfg: BootstrapConfig,
    *,
    package_path: Optional[str] = None,
    ui: Optional[ProgressUI] = None,
    cancel: Optional[CancelToken] = None,
    forwarded_args: Sequence[str] = (),
    force_reinstall: bool = False,
    dry_run: bool = False,
    state: Optional[Dict[str, Any]] = None,
) -> BootstrapContext:
    """Wire the real collaborators from configuration."""

    ui = ui or ConsoleUI()
    cancel = cancel or CancelToken()
    package = ParentPackage(package_path) if package_path else None

    fetcher = Fetcher(
        connect_timeout_s=cfg.connect_timeout_s,
        receive_timeout_s=cfg.receive_timeout_s,
        user_agent=cfg.user_agent,
    )

    if not cfg.trust_roots:
        logger.warning("No trusted roots configured; every component will be rejected")
    trust = TrustGate.from_paths(cfg.trust_roots)

    loader = ManifestLoader(
        servers=cfg.manifest_servers,
        fetcher=fetcher,
        package=package,
        filename=cfg.manifest_filename,
        property_name=cfg.manifest_property,
        legacy_encoding=cfg.legacy_encoding,
        max_entries=cfg.max_entries,
        strict_capacity=cfg.strict_capacity,
    )

    resolver = SourceResolver(
        trust=trust,
        fetcher=fetcher,
        bootstrap_dir=cfg.bootstrap_dir or os.path.dirname(os.path.abspath(sys.argv[0])),
        package=package,
        mirrors=cfg.mirrors,
        canonical_server=cfg.canonical_server,
        additional_server=cfg.additional_server,
        temp_dir=cfg.temp_dir,
        locale_id=cfg.locale_id if cfg.locale_id is not None else default_locale_id(),
        search_online=cfg.search_online,
        is_cancelled=lambda: cancel.cancelled,
        on_download_progress=ui.set_progress,
    )

    return BootstrapContext(
        cfg=cfg,
        loader=loader,
        resolver=resolver,
        presence=PresenceRegistry(cfg.presence_registry_path),
        package_manager=CommandPackageManager(cfg.package_manager_argv, dry_run=dry_run),
        runner=ProcessRunner(dry_run=dry_run),
        ui=ui,
        cancel=cancel,
        forwarded_args=list(forwarded_args),
        force_reinstall=force_reinstall,
        state=ensure_defaults(state if state is not None else {}),
    )


def execute(
    ctx: BootstrapContext,
    *,
    steps: Optional[Sequence[Any]] = None,
    stop_after: Optional[str] = None,
) -> PipelineResult:
    """Run the steps on a worker thread; this thread only waits and forwards Ctrl+C as a cancel."""

    steps = build_steps() if steps is None else steps
    outcome: Dict[str, Any] = {}

    def worker() -> None:
        try:
            outcome["result"] = run_pipeline(ctx=ctx, steps=steps, stop_after=stop_after)
        except BaseException as e:
            outcome["error"] = e

    thread = threading.Thread(target=worker, name="bootstrap-worker", daemon=True)
    exe = ctx.state.setdefault("execution", {})
    try:
        thread.start()
        while thread.is_alive():
            try:
                thread.join(JOIN_INTERVAL_S)
            except KeyboardInterrupt:
                ctx.cancel.cancel()

        error = outcome.get("error")
        if error is not None:
            raise error
        result: PipelineResult = outcome["result"]
        exe.setdefault("summary", {})["ran_steps"] = result.ran_steps
        return result
    except Cancelled:
        logger.info("Bootstrap cancelled during %s", exe.get("current_step"))
        exe["cancelled"] = True
        raise
    except Exception as e:
        logger.exception("Bootstrap failed")
        exe.setdefault("errors", []).append(
            {
                "step": exe.get("current_step"),
                "error": str(e),
                "exit_code": getattr(e, "exit_code", EXIT_INTERNAL_ERROR),
            }
        )
        ctx.ui.set_large_message(f"Unable to install prerequisites: {e}")
        raise
    finally:
        cleanup = getattr(ctx.resolver, "cleanup", None)
        if cleanup is not None:
            cleanup()


def run(
    *,
    config_path: Optional[str] = None,
    package_path: Optional[str] = None,
    state_path: Optional[str] = None,
    log_path: str = DEFAULT_LOG_PATH,
    forwarded_args: Sequence[str] = (),
    overrides: Optional[Dict[str, Dict[str, Any]]] = None,
    force_reinstall: bool = False,
    dry_run: bool = False,
    stop_after: Optional[str] = None,
) -> BootstrapContext:
    """Run one bootstrap, persisting the run record whatever the outcome."""

    actual_log_path = configure_logging(log_path=log_path)

    cfg = with_overrides(load_config(config_path), overrides or {})
    state_path = state_path or cfg.state_path or DEFAULT_STATE_PATH

    state = ensure_defaults({})
    paths = state.setdefault("execution", {}).setdefault("paths", {})
    paths["log_path_requested"] = log_path
    paths["log_path_actual"] = actual_log_path
    paths["package"] = package_path

    ctx = build_context(
        cfg,
        package_path=package_path,
        forwarded_args=forwarded_args,
        force_reinstall=force_reinstall,
        dry_run=dry_run,
        state=state,
    )
    try:
        execute(ctx, stop_after=stop_after)
        return ctx
    finally:
        save_state(state_path, ctx.state)


def main(argv: Optional[List[str]] = None) -> int:
    p = argparse.ArgumentParser(
        prog="prereq-bootstrap",
        description="Install the prerequisites listed in the bootstrap manifest, then launch the engine.",
    )
    p.add_argument("--config", default=None, help="Bootstrap configuration (yaml|json)")
    p.add_argument("--package", default=None, help="Parent package that invoked the bootstrapper")
    p.add_argument("--state", default=None, help="Path to the run record (json|yaml)")
    p.add_argument("--log", default=DEFAULT_LOG_PATH, help="Path to the bootstrap log")
    p.add_argument("--install-root", default=None, help="Override paths.install_root")
    p.add_argument("--locale", type=int, default=None, help="Locale id (LCID) for localized components")
    p.add_argument("--offline", action="store_true", help="Never search mirrors or the canonical server")
    p.add_argument("--force", action="store_true", help="Reinstall components even when already present")
    p.add_argument("--dry-run", action="store_true", help="Log installer commands without running them")
    p.add_argument("--stop-after", default=None, help="Stop after step_id (e.g. 20_resolve_entries)")
    p.add_argument("engine_args", nargs=argparse.REMAINDER, help="Arguments forwarded to the launched engine")

    args = p.parse_args(argv)

    forwarded = list(args.engine_args)
    if forwarded[:1] == ["--"]:
        forwarded = forwarded[1:]

    overrides: Dict[str, Dict[str, Any]] = {
        "paths": {"install_root": args.install_root},
        "locale": {"id": args.locale},
    }
    if args.offline:
        overrides["network"] = {"search_online": False}

    try:
        run(
            config_path=args.config,
            package_path=args.package,
            state_path=args.state,
            log_path=args.log,
            forwarded_args=forwarded,
            overrides=overrides,
            force_reinstall=args.force,
            dry_run=args.dry_run,
            stop_after=args.stop_after,
        )
    except Cancelled as e:
        return e.exit_code
    except BootstrapError as e:
        return e.exit_code
    except Exception as e:
        logger.error("Bootstrap aborted: %s", e)
        return EXIT_INTERNAL_ERROR
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
