from __future__ import annotations

import logging
import os
import re
import shlex
import subprocess
from dataclasses import dataclass
from typing import Mapping, Sequence

logger = logging.getLogger(__name__)

_PARAM_TOKEN = re.compile(r'(?:[^\s"]+|"[^"]*")+')


@dataclass(frozen=True)
class CmdResult:
    argv: list[str]
    returncode: int
    stdout: str
    stderr: str


def _fmt_argv(argv: Sequence[str]) -> str:
    return " ".join(shlex.quote(a) for a in argv)


def split_parameters(parameters: str) -> list[str]:
    """Split an installer argument string (``/quiet TARGETDIR="C:\\x y"``).

    Backslashes are literal; a quoted run keeps its quotes and never splits.
    """
    return _PARAM_TOKEN.findall(parameters) if parameters else []


def run_cmd(
    argv: Sequence[str],
    *,
    check: bool = True,
    env: Mapping[str, str] | None = None,
    cwd: str | None = None,
    dry_run: bool = False,
) -> CmdResult:
    """Run a command to completion with consistent logging.

    - Always logs the command.
    - Blocks until the child exits; the exit status is the install status.
    - Output that does not decode is replaced, never fatal.
    - dry_run logs but does not execute.
    """

    argv_list = list(argv)
    logger.info("CMD %s", _fmt_argv(argv_list))

    if dry_run:
        return CmdResult(argv=argv_list, returncode=0, stdout="", stderr="")

    p = subprocess.run(
        argv_list,
        text=True,
        errors="replace",
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        cwd=cwd,
        env=dict(os.environ, **(env or {})),
    )

    if p.stdout:
        logger.debug("STDOUT %s", p.stdout.strip())
    if p.stderr:
        logger.debug("STDERR %s", p.stderr.strip())

    if check and p.returncode != 0:
        raise RuntimeError(f"Command failed ({p.returncode}): {_fmt_argv(argv_list)}\n{p.stderr}")

    return CmdResult(argv=argv_list, returncode=p.returncode, stdout=p.stdout, stderr=p.stderr)


def start_process(argv: Sequence[str], *, cwd: str | None = None) -> subprocess.Popen:
    """Start a child without waiting (chained installers, the launched engine)."""

    argv_list = list(argv)
    logger.info("START %s", _fmt_argv(argv_list))
    return subprocess.Popen(argv_list, cwd=cwd)


class ProcessRunner:
    """Runs component installers and the engine on behalf of the steps."""

    def __init__(self, *, dry_run: bool = False) -> None:
        self.dry_run = dry_run

    def run(self, argv: Sequence[str], *, cwd: str | None = None) -> int:
        return run_cmd(argv, check=False, cwd=cwd, dry_run=self.dry_run).returncode

    def start(self, argv: Sequence[str], *, cwd: str | None = None):
        if self.dry_run:
            logger.info("START (dry-run) %s", _fmt_argv(argv))
            return None
        return start_process(argv, cwd=cwd)
