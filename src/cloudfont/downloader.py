"""
Font downloader — ``fetch(url, timeout_ms) -> bytes``.

Remote URLs go through ``requests``; ``file://`` URLs and plain paths
are read from disk (local catalogs). Every failure is a DownloadError.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional
from urllib.parse import unquote, urlparse

import requests

from .errors import DownloadError

logger = logging.getLogger("cloudfont.downloader")

SUPPORTED_EXTENSIONS = (".ttf", ".otf")
DEFAULT_EXTENSION = ".ttf"


def extension_for(url: str) -> str:
    """Font extension implied by a URL, defaulting to ``.ttf``."""
    suffix = Path(unquote(urlparse(url).path)).suffix.lower()
    return suffix if suffix in SUPPORTED_EXTENSIONS else DEFAULT_EXTENSION


_SIGNATURES = {
    b"\x00\x01\x00\x00": ".ttf",
    b"true": ".ttf",
    b"OTTO": ".otf",
}


def detect_extension(data: bytes) -> Optional[str]:
    """Font extension from the sfnt header, or None if not a font we handle."""
    return _SIGNATURES.get(data[:4])


def local_path_for(url: str) -> Optional[Path]:
    """Filesystem path for ``file://`` URLs and bare paths, else None."""
    parsed = urlparse(url)
    if parsed.scheme == "file":
        return Path(unquote(parsed.path))
    if parsed.scheme == "":
        return Path(url)
    return None


class Downloader:
    """Fetches font bytes over HTTP(S) or from local files.

    Args:
        session: Optional ``requests.Session`` to reuse connections.
    """

    def __init__(self, session: Optional[requests.Session] = None) -> None:
        self._session = session or requests.Session()

    def fetch(self, url: str, timeout_ms: int) -> bytes:
        """Download ``url`` and return its bytes.

        Raises:
            DownloadError: On network errors, timeouts, HTTP >= 400 or
                unreadable local files.
        """
        local = local_path_for(url)
        if local is not None:
            try:
                data = local.read_bytes()
            except OSError as exc:
                raise DownloadError(f"Failed to read {local}: {exc}") from exc
            logger.debug("Read %d bytes from %s", len(data), local)
            return data

        logger.info("Downloading %s", url)
        try:
            resp = self._session.get(url, timeout=timeout_ms / 1000)
        except requests.Timeout as exc:
            raise DownloadError(f"Timed out after {timeout_ms} ms: {url}") from exc
        except requests.RequestException as exc:
            raise DownloadError(f"Failed to download {url}: {exc}") from exc

        if resp.status_code >= 400:
            raise DownloadError(f"Failed to download {url}: HTTP {resp.status_code}")

        return resp.content

    def close(self) -> None:
        self._session.close()
