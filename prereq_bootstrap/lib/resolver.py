from __future__ import annotations

import logging
import os
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from ..errors import Cancelled
from .fetch import FetchError, Fetcher, is_url, url_combine
from .package import ParentPackage
from .trust import TrustGate

logger = logging.getLogger(__name__)

BOOTSTRAP_DIR = "bootstrap-dir"
PACKAGE_DIR = "package-dir"
EMBEDDED = "embedded"
MIRROR = "mirror"


@dataclass(frozen=True)
class SourceCandidate:
    kind: str
    location: str
    name: str

    def describe(self) -> str:
        if self.kind == EMBEDDED:
            return f"{self.location}!{self.name}"
        if is_url(self.location):
            return url_combine(self.location, self.name)
        return os.path.join(self.location, self.name)


@dataclass
class Resolution:
    filename: str
    path: Optional[Path] = None
    tried: List[SourceCandidate] = field(default_factory=list)
    rejected: List[SourceCandidate] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return self.path is not None


def localized_name(filename: str, locale_id: int) -> str:
    """foo.msi -> foo.1033.msi"""
    stem, dot, ext = filename.rpartition(".")
    if not dot or not stem:
        return f"{filename}.{locale_id}"
    return f"{stem}.{locale_id}.{ext}"


class SourceResolver:
    """Turns a component file name into a trusted local path.

    Candidates are tried strictly in order and the first one that exists and
    passes the trust gate wins. Anything we fetched or extracted ourselves is
    deleted when it fails the gate; files that were already on disk are left
    alone.
    """

    def __init__(
        self,
        *,
        trust: TrustGate,
        fetcher: Optional[Fetcher],
        bootstrap_dir: Optional[str | Path],
        package: Optional[ParentPackage],
        mirrors: Sequence[str] = (),
        canonical_server: Optional[str] = None,
        additional_server: Optional[str] = None,
        temp_dir: Optional[str] = None,
        locale_id: int = 1033,
        search_online: bool = True,
        is_cancelled: Optional[Callable[[], bool]] = None,
        on_download_progress: Optional[Callable[[Optional[int]], None]] = None,
    ) -> None:
        self.trust = trust
        self.fetcher = fetcher
        self.bootstrap_dir = str(bootstrap_dir) if bootstrap_dir else None
        self.package = package
        self.mirrors = list(mirrors)
        self.canonical_server = canonical_server
        self.additional_server = additional_server
        self.temp_dir = temp_dir
        self.locale_id = locale_id
        self.search_online = search_online
        self.is_cancelled = is_cancelled
        self.on_download_progress = on_download_progress
        self._scratch: Optional[Path] = None
        self._counter = 0

    def _aborting(self) -> bool:
        return self.is_cancelled is not None and self.is_cancelled()

    def _check_abort(self) -> None:
        if self._aborting():
            raise Cancelled("cancelled during resolution")

    def _scratch_path(self, name: str) -> Path:
        if self._scratch is None:
            self._scratch = Path(tempfile.mkdtemp(prefix="prereq-bootstrap-", dir=self.temp_dir))
        self._counter += 1
        return self._scratch / str(self._counter) / name

    def cleanup(self) -> None:
        """Remove the private scratch directory (only after installs are done)."""
        if self._scratch is not None and self._scratch.exists():
            shutil.rmtree(self._scratch, ignore_errors=True)
        self._scratch = None

    def candidates(
        self,
        filename: str,
        base_location: Optional[str] = None,
        search_online: Optional[bool] = None,
    ) -> List[SourceCandidate]:
        names = [localized_name(filename, self.locale_id), filename]
        online = self.search_online if search_online is None else search_online

        groups: List[tuple[str, Optional[str]]] = [
            (BOOTSTRAP_DIR, self.bootstrap_dir),
            (PACKAGE_DIR, str(self.package.folder) if self.package is not None else None),
            (EMBEDDED, str(self.package.path) if self.package is not None else None),
        ]
        if online:
            groups.append((MIRROR, base_location or self.additional_server))
            groups.extend((MIRROR, m) for m in self.mirrors)
            groups.append((MIRROR, self.canonical_server))

        out: List[SourceCandidate] = []
        seen = set()
        for kind, location in groups:
            if not location:
                continue
            for name in names:
                c = SourceCandidate(kind=kind, location=location, name=name)
                key = (c.kind, c.location.rstrip("/\\"), c.name)
                if key in seen:
                    continue
                seen.add(key)
                out.append(c)
        return out

    def _materialize(self, candidate: SourceCandidate) -> tuple[Optional[Path], bool]:
        """Return (path, owned). Owned paths were created by us and may be deleted."""

        if candidate.kind in {BOOTSTRAP_DIR, PACKAGE_DIR}:
            p = Path(candidate.location) / candidate.name
            return (p if p.is_file() else None), False

        if candidate.kind == EMBEDDED:
            if self.package is None:
                return None, False
            self._check_abort()
            dest = self._scratch_path(candidate.name)
            return self.package.extract_stream(candidate.name, dest), True

        if not is_url(candidate.location):
            p = Path(candidate.location) / candidate.name
            return (p if p.is_file() else None), False

        if self.fetcher is None:
            return None, False
        self._check_abort()
        dest = self._scratch_path(candidate.name)
        url = url_combine(candidate.location, candidate.name)
        try:
            self.fetcher.download(
                url,
                dest,
                progress=self.on_download_progress,
                should_abort=self._aborting,
            )
        except FetchError as e:
            logger.info("Not available from %s (%s)", url, e.kind)
            return None, False
        return dest, True

    def resolve(
        self,
        filename: str,
        base_location: Optional[str] = None,
        search_online: Optional[bool] = None,
    ) -> Resolution:
        result = Resolution(filename=filename)
        if not filename:
            return result

        for candidate in self.candidates(filename, base_location, search_online):
            self._check_abort()
            result.tried.append(candidate)
            path, owned = self._materialize(candidate)
            self._check_abort()
            if path is None or not path.exists():
                continue

            if self.trust.is_trusted(path):
                logger.info("Resolved %s -> %s (%s)", filename, path, candidate.kind)
                result.path = path
                return result

            result.rejected.append(candidate)
            logger.warning("Rejected untrusted candidate for %s: %s", filename, candidate.describe())
            if owned:
                path.unlink(missing_ok=True)

        logger.warning("Unable to resolve %s (%d candidates tried)", filename, len(result.tried))
        return result
