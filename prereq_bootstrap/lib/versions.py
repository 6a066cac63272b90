from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)

_DOTTED = re.compile(r"^(\d+)(?:\.(\d+)){0,3}$")
_MAX_PART = 0xFFFF


def parse_version(text: str) -> Optional[Tuple[int, int, int, int]]:
    """'1.2' -> (1, 2, 0, 0). None unless text is 1-4 dotted numbers, each < 65536."""

    text = text.strip()
    if not _DOTTED.match(text):
        return None
    parts = [int(p) for p in text.split(".")]
    if any(p > _MAX_PART for p in parts):
        return None
    parts += [0] * (4 - len(parts))
    return parts[0], parts[1], parts[2], parts[3]


def pack_version(version: Tuple[int, int, int, int]) -> int:
    major, minor, build, revision = version
    return (major << 48) | (minor << 32) | (build << 16) | revision


def unpack_version(packed: int) -> str:
    return ".".join(str((packed >> shift) & _MAX_PART) for shift in (48, 32, 16, 0))


def version_of(path: Path, root: Path) -> int:
    """Packed version from the nearest dotted-number directory above path (0 if none)."""

    try:
        parts: Iterable[str] = path.relative_to(root).parts[:-1]
    except ValueError:
        parts = path.parts[:-1]
    for part in reversed(list(parts)):
        v = parse_version(part)
        if v is not None:
            return pack_version(v)
    return 0


def find_all(root: str | Path, executable: str) -> List[Path]:
    """Iterative walk of root collecting files named executable (case-insensitive)."""

    root = Path(root)
    if not root.is_dir():
        return []

    wanted = executable.lower()
    found: List[Path] = []
    stack = [root]
    while stack:
        current = stack.pop()
        try:
            with os.scandir(current) as it:
                entries = list(it)
        except OSError as e:
            logger.debug("Skipping unreadable directory %s: %s", current, e)
            continue
        for entry in entries:
            if entry.is_dir(follow_symlinks=False):
                stack.append(Path(entry.path))
            elif entry.name.lower() == wanted and entry.is_file():
                found.append(Path(entry.path))
    return found


def find_highest(root: str | Path, executable: str) -> Optional[Path]:
    """Newest copy of executable below root, compared by packed version number."""

    candidates = find_all(root, executable)
    if not candidates:
        return None
    root = Path(root)
    best = max(candidates, key=lambda p: (version_of(p, root), str(p)))
    logger.info("Highest %s: %s (%s)", executable, best, unpack_version(version_of(best, root)))
    return best
