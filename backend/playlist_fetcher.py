"""
Playlist Fetcher

Obtains raw playlist bytes from a remote URL (httpx GET) or a local file,
keeping network failures and file-access failures distinct so the import
pipeline can report them separately. No retries: a failure propagates to the
caller with the underlying exception chained as __cause__ and kept on .cause.
"""
import asyncio
import logging
from pathlib import Path
from typing import Optional
from urllib.parse import urlsplit, unquote

import httpx

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "ChannelCatalog/1.0"
REMOTE_SCHEMES = ("http", "https")


class FetchError(Exception):
    """Base class for failures obtaining playlist bytes."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class InvalidURLError(FetchError):
    """The location is not a usable http(s) URL or file path."""


class NetworkError(FetchError):
    """Transport failure or non-success HTTP status."""


class FileAccessError(FetchError):
    """The local file does not exist or cannot be opened."""


class FileReadError(FetchError):
    """The local file was found but reading it failed."""


def _is_local(location: str) -> bool:
    scheme = urlsplit(location).scheme
    # One-letter schemes are Windows drive letters
    return scheme == "file" or len(scheme) <= 1


def _local_path(location: str) -> Path:
    parts = urlsplit(location)
    if parts.scheme == "file":
        return Path(unquote(parts.path))
    return Path(location).expanduser()


class PlaylistFetcher:
    """
    Fetch collaborator for the import pipeline.

    Usage:
        fetcher = PlaylistFetcher(timeout=30)
        data = await fetcher.fetch("https://provider.example/list.m3u")
        data = await fetcher.fetch("/config/playlists/local.m3u")
    """

    def __init__(self, timeout: float = 30.0, user_agent: str = DEFAULT_USER_AGENT):
        self.timeout = timeout
        self.user_agent = user_agent

    async def fetch(self, location: str) -> bytes:
        """Fetch bytes from an http(s) URL, a file:// URL or a plain path."""
        if not location or not location.strip():
            raise InvalidURLError("Playlist location is empty")
        location = location.strip()
        if _is_local(location):
            return await self.read_file(_local_path(location))
        return await self.fetch_url(location)

    async def fetch_url(self, url: str) -> bytes:
        parts = urlsplit(url)
        if parts.scheme.lower() not in REMOTE_SCHEMES or not parts.netloc:
            raise InvalidURLError(f"Unsupported playlist URL: {url}")

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                headers={"User-Agent": self.user_agent},
            ) as client:
                response = await client.get(url)
                response.raise_for_status()
                data = response.content
        except httpx.InvalidURL as e:
            raise InvalidURLError(f"Invalid playlist URL: {url}", cause=e) from e
        except httpx.HTTPStatusError as e:
            logger.warning("[FETCH] %s returned HTTP %s", url, e.response.status_code)
            raise NetworkError(f"HTTP {e.response.status_code} fetching {url}", cause=e) from e
        except httpx.HTTPError as e:
            logger.warning("[FETCH] Network error fetching %s: %s", url, e)
            raise NetworkError(f"Network error fetching {url}: {e}", cause=e) from e

        logger.debug("[FETCH] Downloaded %s bytes from %s", len(data), url)
        return data

    async def read_file(self, path: Path) -> bytes:
        try:
            data = await asyncio.to_thread(Path(path).read_bytes)
        except (FileNotFoundError, PermissionError, IsADirectoryError, NotADirectoryError) as e:
            logger.warning("[FETCH] Cannot access playlist file %s: %s", path, e)
            raise FileAccessError(f"Cannot access playlist file {path}", cause=e) from e
        except OSError as e:
            logger.warning("[FETCH] Failed reading playlist file %s: %s", path, e)
            raise FileReadError(f"Failed reading playlist file {path}: {e}", cause=e) from e

        logger.debug("[FETCH] Read %s bytes from %s", len(data), path)
        return data
