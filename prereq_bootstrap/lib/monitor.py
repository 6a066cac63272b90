from __future__ import annotations

import logging
import subprocess
from typing import Callable, Optional, Protocol

from .chain import E_FAIL, E_PENDING, ChainChannel, blended_percent

logger = logging.getLogger(__name__)


class ChildProcess(Protocol):
    def wait(self, timeout: Optional[float] = None) -> int:
        ...


ProgressCallback = Callable[[str, int], None]


def _crash_result(channel: ChainChannel) -> int:
    """A child that exits before both finished flags never counts as success."""

    for value in (channel.install_result, channel.download_result):
        if value != E_PENDING and value & 0x80000000:
            return value
    return E_FAIL


class ChainMonitor:
    """Supervises a chained installer through its ChainChannel.

    Waits on the child with a short timeout, so each iteration observes
    either the child exiting or a chance to read new progress. Cancellation
    only raises the channel abort flags; the child decides how to stop.
    """

    def __init__(
        self,
        *,
        poll_interval_s: float = 0.1,
        is_cancelled: Optional[Callable[[], bool]] = None,
    ) -> None:
        self.poll_interval_s = poll_interval_s
        self.is_cancelled = is_cancelled

    def monitor(
        self,
        process: ChildProcess,
        channel: ChainChannel,
        on_progress: Optional[ProgressCallback] = None,
    ) -> int:
        last_sequence = channel.update_sequence
        abort_sent = False

        while not channel.finished:
            if not abort_sent and self.is_cancelled is not None and self.is_cancelled():
                logger.info("Asking chained installer to abort")
                channel.abort()
                abort_sent = True

            try:
                process.wait(timeout=self.poll_interval_s)
            except subprocess.TimeoutExpired:
                pass
            else:
                if not channel.finished:
                    logger.error("Chained installer exited before reporting completion")
                break

            sequence = channel.update_sequence
            if sequence != last_sequence:
                last_sequence = sequence
                if on_progress is not None:
                    percent = blended_percent(channel.download_progress, channel.install_progress)
                    on_progress(channel.current_step, percent)

        if channel.finished:
            result = channel.result()
        else:
            result = _crash_result(channel)
        logger.info("Chained installer finished: 0x%08X", result)
        return result
