"""Bootstrap manifest: location, decoding and parsing.

Format (one component per line, UTF-16 with BOM or a legacy code page):

    # comment
    filename, registryKeyCheck, location, cosmeticName, parameters

A line is a component iff its first character is alphanumeric. Trailing
fields may be omitted.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, List, Optional, Sequence

from ..errors import ManifestError
from .fetch import FetchError, Fetcher, is_url, url_combine
from .package import ParentPackage

logger = logging.getLogger(__name__)

FIELD_COUNT = 5
_LINE_BREAK = re.compile(r"[\r\n]")
_STRIP = " \t\r\n\v\f"


@dataclass
class ManifestEntry:
    filename: str
    registry_key_check: str = ""
    location: str = ""
    cosmetic_name: str = ""
    parameters: str = ""

    local_path: Optional[Path] = None
    is_installed: bool = False
    install_method: Optional[str] = None
    install_status: Optional[int] = None

    def __post_init__(self) -> None:
        if not self.cosmetic_name:
            self.cosmetic_name = self.filename

    @property
    def extension(self) -> str:
        return Path(self.filename).suffix.lower()

    def summary(self) -> dict:
        return {
            "filename": self.filename,
            "cosmetic_name": self.cosmetic_name,
            "local_path": str(self.local_path) if self.local_path else None,
            "is_installed": self.is_installed,
            "install_method": self.install_method,
            "install_status": self.install_status,
        }


@dataclass
class Manifest:
    entries: List[ManifestEntry] = field(default_factory=list)
    source: Optional[str] = None

    def __iter__(self) -> Iterator[ManifestEntry]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)


def decode_manifest_bytes(data: bytes, legacy_encoding: str = "cp1252") -> str:
    """Decode by BOM: FF FE / FE FF mean UTF-16, anything else is the legacy code page."""

    if data[:2] == b"\xff\xfe":
        return data[2:].decode("utf-16-le", errors="replace")
    if data[:2] == b"\xfe\xff":
        return data[2:].decode("utf-16-be", errors="replace")
    return data.decode(legacy_encoding, errors="replace")


def parse_line(line: str) -> Optional[ManifestEntry]:
    if not line or not line[0].isalnum():
        return None
    fields = [f.strip(_STRIP) for f in line.split(",", FIELD_COUNT - 1)]
    fields += [""] * (FIELD_COUNT - len(fields))
    if not fields[0]:
        return None
    return ManifestEntry(
        filename=fields[0],
        registry_key_check=fields[1],
        location=fields[2],
        cosmetic_name=fields[3],
        parameters=fields[4],
    )


def parse_manifest(text: str, *, max_entries: int = 64, strict: bool = False) -> List[ManifestEntry]:
    entries: List[ManifestEntry] = []
    dropped = 0
    for line in _LINE_BREAK.split(text):
        entry = parse_line(line)
        if entry is None:
            continue
        if len(entries) >= max_entries:
            dropped += 1
            continue
        entries.append(entry)

    if dropped:
        if strict:
            raise ManifestError(
                f"Manifest lists {len(entries) + dropped} components; at most {max_entries} are supported"
            )
        logger.warning("Manifest exceeds %d entries; %d entries ignored", max_entries, dropped)
    return entries


class ManifestLoader:
    """Finds the bootstrap manifest.

    Sources, each tried at most once and in this order:
      1. every configured server path (directory or URL) + manifest filename
      2. the folder holding the parent package (the artifact that launched us)
      3. the manifest embedded as a property of the parent package
    """

    def __init__(
        self,
        *,
        servers: Sequence[str],
        fetcher: Optional[Fetcher],
        package: Optional[ParentPackage] = None,
        filename: str = "bootstrapmanifest.txt",
        property_name: str = "BootstrapManifest",
        legacy_encoding: str = "cp1252",
        max_entries: int = 64,
        strict_capacity: bool = False,
    ) -> None:
        self.servers = list(servers)
        self.fetcher = fetcher
        self.package = package
        self.filename = filename
        self.property_name = property_name
        self.legacy_encoding = legacy_encoding
        self.max_entries = max_entries
        self.strict_capacity = strict_capacity

    def sources(self) -> List[str]:
        locations = list(self.servers)
        if self.package is not None:
            locations.append(str(self.package.folder))

        out: List[str] = []
        seen = set()
        for loc in locations:
            if not loc:
                continue
            key = loc.rstrip("/\\")
            if not is_url(loc):
                key = str(Path(loc).expanduser().resolve())
            if key in seen:
                continue
            seen.add(key)
            out.append(loc)
        return out

    def _read_location(self, location: str) -> Optional[bytes]:
        if is_url(location):
            if self.fetcher is None:
                return None
            url = url_combine(location, self.filename)
            try:
                return self.fetcher.fetch(url)
            except FetchError as e:
                logger.info("No manifest at %s (%s)", url, e.kind)
                return None

        p = Path(location).expanduser() / self.filename
        if not p.is_file():
            logger.debug("No manifest at %s", p)
            return None
        return p.read_bytes()

    def _parse(self, data: bytes, source: str) -> Manifest:
        text = decode_manifest_bytes(data, self.legacy_encoding)
        entries = parse_manifest(text, max_entries=self.max_entries, strict=self.strict_capacity)
        logger.info("Loaded manifest from %s (%d entries)", source, len(entries))
        return Manifest(entries=entries, source=source)

    def load(self) -> Manifest:
        for location in self.sources():
            data = self._read_location(location)
            if data:
                return self._parse(data, location)

        if self.package is not None:
            data = self.package.read_property(self.property_name)
            if data:
                return self._parse(data, f"{self.package.path}!{self.property_name}")

        logger.warning("No bootstrap manifest found")
        return Manifest()
