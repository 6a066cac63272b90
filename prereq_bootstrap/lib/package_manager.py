from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Optional, Sequence

from .command import run_cmd, split_parameters

logger = logging.getLogger(__name__)


class CommandPackageManager:
    """Installs a package file by running an external package manager.

    ``argv_template`` items are formatted with ``{path}``; the split
    parameter string is appended after them.
    """

    def __init__(self, argv_template: Sequence[str], *, dry_run: bool = False) -> None:
        self.argv_template = list(argv_template)
        self.dry_run = dry_run

    def build_argv(self, path: Path, parameters: str) -> list[str]:
        argv = [part.format(path=str(path)) for part in self.argv_template]
        return argv + split_parameters(parameters)

    def install(
        self,
        path: Path,
        parameters: str,
        progress: Optional[Callable[[Optional[int]], None]] = None,
    ) -> int:
        if progress is not None:
            progress(None)
        res = run_cmd(self.build_argv(path, parameters), check=False, dry_run=self.dry_run)
        if res.returncode != 0:
            logger.error("Package install failed (%d): %s", res.returncode, path)
        if progress is not None:
            progress(100)
        return res.returncode
