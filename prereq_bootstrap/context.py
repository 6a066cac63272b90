from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import BootstrapConfig
from .errors import Cancelled
from .ui import NullUI, ProgressUI

logger = logging.getLogger(__name__)


class CancelToken:
    """Shared shutdown flag. Set by the UI thread, read by the worker."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        if not self._event.is_set():
            logger.info("Shutting down (cancel requested)")
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def check(self) -> None:
        if self._event.is_set():
            raise Cancelled("cancelled by user")


@dataclass
class BootstrapContext:
    """Everything one bootstrap run needs, passed explicitly through the steps."""

    cfg: BootstrapConfig
    loader: Any
    resolver: Any
    presence: Any
    package_manager: Any
    runner: Any
    ui: ProgressUI = field(default_factory=NullUI)
    cancel: CancelToken = field(default_factory=CancelToken)
    forwarded_args: List[str] = field(default_factory=list)
    force_reinstall: bool = False
    state: Dict[str, Any] = field(default_factory=dict)

    manifest: Any = None
    engine_path: Optional[Path] = None
    launched: Any = None

    def report(self, percent: Optional[int], message: Optional[str] = None) -> None:
        if message is not None:
            self.ui.set_status_message(message)
        self.ui.set_progress(percent)
