from __future__ import annotations

import logging
import zipfile
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

STREAM_PREFIX = "Binary/"
PROPERTY_PREFIX = "Property/"
# Streams larger than this are never extracted.
MAX_STREAM_SIZE = 1024 * 1024 * 1024


class ParentPackage:
    """The package that invoked the bootstrapper.

    A zip container: named binary streams live under ``Binary/<name>``,
    properties (plain text) under ``Property/<name>``.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    @property
    def folder(self) -> Path:
        return self.path.resolve().parent

    def _read_member(self, member: str) -> Optional[bytes]:
        if not self.path.is_file():
            return None
        try:
            with zipfile.ZipFile(self.path) as zf:
                try:
                    info = zf.getinfo(member)
                except KeyError:
                    return None
                if info.file_size == 0 or info.file_size > MAX_STREAM_SIZE:
                    return None
                return zf.read(info)
        except zipfile.BadZipFile:
            logger.warning("Parent package is not a readable container: %s", self.path)
            return None

    def read_stream(self, name: str) -> Optional[bytes]:
        return self._read_member(STREAM_PREFIX + name)

    def extract_stream(self, name: str, destination: Path) -> Optional[Path]:
        """Write the named stream to destination. None when the stream is absent."""

        data = self.read_stream(name)
        if data is None:
            return None
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(data)
        logger.info("Extracted %s from %s -> %s", name, self.path.name, destination)
        return destination

    def read_property(self, name: str) -> Optional[bytes]:
        return self._read_member(PROPERTY_PREFIX + name)
