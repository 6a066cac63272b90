"""Shared progress channel between the bootstrapper and a chained installer.

The channel is a small file mapped into memory by both processes. The parent
creates and initialises it before starting the child, passes its path with
``/pipe <path>``, and polls it; the child writes progress, results and
finished flags, and bumps ``update_sequence`` after every write.
"""

from __future__ import annotations

import logging
import mmap
import os
import struct
import uuid
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

S_OK = 0x00000000
E_PENDING = 0x8000000A
E_FAIL = 0x80004005

TEXT_CHARS = 260

OFF_DOWNLOAD_FINISHED = 0
OFF_INSTALL_FINISHED = 4
OFF_DOWNLOAD_ABORT = 8
OFF_INSTALL_ABORT = 12
OFF_DOWNLOAD_RESULT = 16
OFF_INSTALL_RESULT = 20
OFF_INTERNAL_ERROR = 24
OFF_CURRENT_STEP = 28
OFF_DOWNLOAD_PROGRESS = OFF_CURRENT_STEP + TEXT_CHARS * 2  # 548
OFF_INSTALL_PROGRESS = OFF_DOWNLOAD_PROGRESS + 1  # 549
OFF_EVENT_NAME = OFF_INSTALL_PROGRESS + 1  # 550
OFF_UPDATE_SEQUENCE = 1072
CHANNEL_SIZE = OFF_UPDATE_SEQUENCE + 4  # 1076

_U32 = struct.Struct("<I")


def scale_to_percent(raw: int) -> int:
    """Progress bytes use 0-255; callers see 0-100."""
    return min(100, round(raw * 100 / 255))


def percent_to_scale(percent: int) -> int:
    return max(0, min(255, round(percent * 255 / 100)))


def blended_percent(download_percent: int, install_percent: int) -> int:
    """Combined progress shown while a chained install runs (capped at 85% of the bar)."""
    return min(100, (download_percent + install_percent) * 85 // 200)


class ChainChannel:
    def __init__(self, path: Path, mm: mmap.mmap, *, owner: bool) -> None:
        self.path = path
        self._mm = mm
        self._owner = owner

    # lifecycle
    @classmethod
    def create(cls, directory: str | Path, name: Optional[str] = None) -> "ChainChannel":
        """Create and initialise a fresh channel file (parent side)."""

        name = name or f"prereq-chain-{uuid.uuid4().hex}"
        path = Path(directory) / f"{name}.chan"
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("wb") as f:
            f.write(b"\0" * CHANNEL_SIZE)
        channel = cls._map(path, owner=True)
        channel.init(name)
        logger.debug("Created chain channel %s", path)
        return channel

    @classmethod
    def open(cls, path: str | Path) -> "ChainChannel":
        """Attach to an existing channel (child side)."""
        return cls._map(Path(path), owner=False)

    @classmethod
    def _map(cls, path: Path, *, owner: bool) -> "ChainChannel":
        if path.stat().st_size < CHANNEL_SIZE:
            raise ValueError(f"Not a chain channel (too small): {path}")
        with path.open("r+b") as f:
            mm = mmap.mmap(f.fileno(), CHANNEL_SIZE)
        return cls(path, mm, owner=owner)

    def init(self, event_name: str) -> None:
        self._mm[:CHANNEL_SIZE] = b"\0" * CHANNEL_SIZE
        self._set_u32(OFF_DOWNLOAD_RESULT, E_PENDING)
        self._set_u32(OFF_INSTALL_RESULT, E_PENDING)
        self._set_u32(OFF_INTERNAL_ERROR, S_OK)
        self._set_text(OFF_EVENT_NAME, event_name)
        self._mm.flush()

    def close(self) -> None:
        if self._mm.closed:
            return
        self._mm.close()
        if self._owner:
            try:
                os.unlink(self.path)
            except OSError as e:
                logger.debug("Could not remove chain channel %s: %s", self.path, e)

    def __enter__(self) -> "ChainChannel":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # raw access
    def _u32(self, offset: int) -> int:
        return _U32.unpack_from(self._mm, offset)[0]

    def _set_u32(self, offset: int, value: int) -> None:
        _U32.pack_into(self._mm, offset, value & 0xFFFFFFFF)

    def _text(self, offset: int) -> str:
        raw = self._mm[offset : offset + TEXT_CHARS * 2]
        return raw.decode("utf-16-le", errors="replace").split("\0", 1)[0]

    def _set_text(self, offset: int, value: str) -> None:
        data = value.encode("utf-16-le")[: (TEXT_CHARS - 1) * 2]
        self._mm[offset : offset + TEXT_CHARS * 2] = data.ljust(TEXT_CHARS * 2, b"\0")

    # fields
    @property
    def download_finished(self) -> bool:
        return self._u32(OFF_DOWNLOAD_FINISHED) != 0

    @property
    def install_finished(self) -> bool:
        return self._u32(OFF_INSTALL_FINISHED) != 0

    @property
    def finished(self) -> bool:
        return self.download_finished and self.install_finished

    @property
    def download_abort(self) -> bool:
        return self._u32(OFF_DOWNLOAD_ABORT) != 0

    @property
    def install_abort(self) -> bool:
        return self._u32(OFF_INSTALL_ABORT) != 0

    @property
    def download_result(self) -> int:
        return self._u32(OFF_DOWNLOAD_RESULT)

    @property
    def install_result(self) -> int:
        return self._u32(OFF_INSTALL_RESULT)

    @property
    def internal_error(self) -> int:
        return self._u32(OFF_INTERNAL_ERROR)

    @property
    def current_step(self) -> str:
        return self._text(OFF_CURRENT_STEP)

    @property
    def event_name(self) -> str:
        return self._text(OFF_EVENT_NAME)

    @property
    def download_progress(self) -> int:
        return scale_to_percent(self._mm[OFF_DOWNLOAD_PROGRESS])

    @property
    def install_progress(self) -> int:
        return scale_to_percent(self._mm[OFF_INSTALL_PROGRESS])

    @property
    def update_sequence(self) -> int:
        return self._u32(OFF_UPDATE_SEQUENCE)

    def result(self) -> int:
        """Install result if known, else download result if known, else E_FAIL."""

        if self.install_result != E_PENDING:
            return self.install_result
        if self.download_result != E_PENDING:
            return self.download_result
        return E_FAIL

    # parent side
    def abort(self) -> None:
        self._set_u32(OFF_DOWNLOAD_ABORT, 1)
        self._set_u32(OFF_INSTALL_ABORT, 1)
        self._mm.flush()

    # child side
    def signal(self) -> None:
        self._set_u32(OFF_UPDATE_SEQUENCE, self.update_sequence + 1)
        self._mm.flush()

    def report_progress(
        self,
        step: Optional[str] = None,
        *,
        download_percent: Optional[int] = None,
        install_percent: Optional[int] = None,
    ) -> None:
        if step is not None:
            self._set_text(OFF_CURRENT_STEP, step)
        if download_percent is not None:
            self._mm[OFF_DOWNLOAD_PROGRESS] = percent_to_scale(download_percent)
        if install_percent is not None:
            self._mm[OFF_INSTALL_PROGRESS] = percent_to_scale(install_percent)
        self.signal()

    def finish_download(self, result: int = S_OK) -> None:
        self._set_u32(OFF_DOWNLOAD_RESULT, result)
        self._set_u32(OFF_DOWNLOAD_FINISHED, 1)
        self.signal()

    def finish_install(self, result: int = S_OK) -> None:
        self._set_u32(OFF_INSTALL_RESULT, result)
        self._set_u32(OFF_INSTALL_FINISHED, 1)
        self.signal()
