from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Optional
from urllib.parse import urlsplit

import requests

logger = logging.getLogger(__name__)

CHUNK_SIZE = 128 * 1024

# FetchError kinds.
BAD_URL = "bad-url"
NO_CONNECTION = "no-connection"
NOT_200 = "non-200"
NO_DATA = "no-data"
TIMEOUT = "timeout"

ProgressFn = Callable[[Optional[int]], None]


class FetchError(Exception):
    def __init__(self, kind: str, url: str, detail: str = "") -> None:
        super().__init__(f"{kind}: {url}" + (f" ({detail})" if detail else ""))
        self.kind = kind
        self.url = url


def is_url(path: str) -> bool:
    """URL-shaped paths carry a scheme prefix (``http://``, ``file://`` ...)."""
    return "://" in path[:16]


def url_combine(base: str, name: str) -> str:
    if not base:
        return name
    if not name:
        return base
    return base + name if base.endswith("/") else f"{base}/{name}"


def percent_of(done: int, total: Optional[int]) -> Optional[int]:
    """Download percentage, or None (indeterminate) when the size is unknown."""
    if not total or total <= 0:
        return None
    return min(100, int(done * 100 / total))


class Fetcher:
    """One-shot HTTP GET with a fixed connect/receive budget per session."""

    def __init__(
        self,
        *,
        connect_timeout_s: float = 6.0,
        receive_timeout_s: float = 12.0,
        user_agent: str = "PrereqBootstrap/1.0",
        session: Optional[requests.Session] = None,
    ) -> None:
        self.timeout = (connect_timeout_s, receive_timeout_s)
        self.session = session or requests.Session()
        self.session.headers.setdefault("User-Agent", user_agent)

    def _get(self, url: str) -> requests.Response:
        parts = urlsplit(url)
        if parts.scheme not in {"http", "https"} or not parts.netloc:
            raise FetchError(BAD_URL, url)
        try:
            response = self.session.get(url, timeout=self.timeout, stream=True)
        except requests.Timeout as e:
            raise FetchError(TIMEOUT, url, str(e)) from e
        except requests.RequestException as e:
            raise FetchError(NO_CONNECTION, url, str(e)) from e
        if response.status_code != 200:
            response.close()
            raise FetchError(NOT_200, url, f"HTTP {response.status_code}")
        return response

    def fetch(self, url: str) -> bytes:
        response = self._get(url)
        try:
            data = response.content
        except requests.Timeout as e:
            raise FetchError(TIMEOUT, url, str(e)) from e
        except requests.RequestException as e:
            raise FetchError(NO_DATA, url, str(e)) from e
        finally:
            response.close()
        if not data:
            raise FetchError(NO_DATA, url)
        logger.debug("Fetched %s (%d bytes)", url, len(data))
        return data

    def download(
        self,
        url: str,
        destination: Path,
        *,
        progress: Optional[ProgressFn] = None,
        should_abort: Optional[Callable[[], bool]] = None,
    ) -> int:
        """Stream url to destination. Returns the byte count.

        A partial file is removed on any failure or abort.
        """

        response = self._get(url)
        total: Optional[int]
        try:
            total = int(response.headers.get("Content-Length") or 0) or None
        except ValueError:
            total = None

        destination.parent.mkdir(parents=True, exist_ok=True)
        done = 0
        try:
            with destination.open("wb") as handle:
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    if should_abort is not None and should_abort():
                        raise FetchError(NO_DATA, url, "aborted")
                    if not chunk:
                        continue
                    handle.write(chunk)
                    done += len(chunk)
                    if progress is not None:
                        progress(percent_of(done, total))
        except requests.Timeout as e:
            destination.unlink(missing_ok=True)
            raise FetchError(TIMEOUT, url, str(e)) from e
        except requests.RequestException as e:
            destination.unlink(missing_ok=True)
            raise FetchError(NO_DATA, url, str(e)) from e
        except BaseException:
            destination.unlink(missing_ok=True)
            raise
        finally:
            response.close()

        if done == 0:
            destination.unlink(missing_ok=True)
            raise FetchError(NO_DATA, url)

        logger.info("Downloaded %s -> %s (%d bytes)", url, destination, done)
        return done
