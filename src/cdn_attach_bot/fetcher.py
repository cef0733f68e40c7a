"""Download a linked file into the staging area under a hard size cap."""

from __future__ import annotations

import asyncio
import logging
import re
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from urllib.parse import unquote, urlsplit

import aiohttp

from .errors import FetchError, OversizeError, ProbeError, StagingWriteError
from .link_scanner import CandidateLink, LinkState
from .staging import StagingArea

log = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024

_SAFE_EXTENSION_RE = re.compile(r"^\.[a-z0-9]{1,16}$")
_UNSAFE_NAME_CHARS_RE = re.compile(r"[^\w.\-]")


@dataclass(frozen=True)
class StagedAsset:
    source_url: str
    local_path: Path
    size_bytes: int
    filename: str


def staging_token(guild_id: int, message_id: int, index: int) -> str:
    """Unique per guild, message, moment and link position."""
    return f"cdn_{guild_id}_{message_id}_{time.time_ns()}_{index}"


def display_filename(link: CandidateLink) -> str:
    """Name shown on the attachment: the source file's name, made filesystem-safe."""
    name = PurePosixPath(unquote(urlsplit(link.url).path)).name
    name = _UNSAFE_NAME_CHARS_RE.sub("_", name).strip("._")[:100]
    if not name:
        name = f"file{_safe_extension(link.extension)}"
    return name


def _safe_extension(extension: str) -> str:
    return extension if _SAFE_EXTENSION_RE.match(extension) else ""


class Fetcher:
    """Probe, stream and verify remote files with a shared aiohttp session."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        *,
        max_bytes: int,
        timeout_secs: float = 60.0,
    ) -> None:
        self.session = session
        self.max_bytes = max_bytes
        self.timeout = aiohttp.ClientTimeout(total=timeout_secs)

    async def probe_size(self, url: str) -> int:
        """Content length reported by a HEAD request, or 0 when the server gives none.

        Raises:
            ProbeError: If the request fails or returns a non-success status.
        """
        try:
            async with self.session.head(
                url, allow_redirects=True, timeout=self.timeout
            ) as resp:
                if not resp.ok:
                    raise ProbeError(f"HEAD {url}: {resp.status} {resp.reason}")
                return resp.content_length or 0
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ProbeError(f"HEAD {url}: {e}") from e

    async def stage(
        self,
        link: CandidateLink,
        staging: StagingArea,
        token: str,
        *,
        limit: int | None = None,
        on_state: Callable[[LinkState], None] | None = None,
    ) -> StagedAsset:
        """Download ``link`` into ``staging`` and return the verified asset.

        ``limit`` lowers the cap below ``max_bytes`` (e.g. a guild's upload limit).
        ``on_state`` is called with SIZE_PROBED, FETCHED, STAGED and VERIFIED as
        each step completes.

        Raises:
            OversizeError: Probed, streamed or measured size is above the cap.
            FetchError: Non-success response or transport failure.
            StagingWriteError: The file could not be created or written.
        """
        cap = min(self.max_bytes, limit) if limit else self.max_bytes
        advance = on_state or (lambda state: None)

        try:
            probed = await self.probe_size(link.url)
        except ProbeError as e:
            log.warning("HEAD size check failed, continuing anyway: %s", e)
            probed = 0
        advance(LinkState.SIZE_PROBED)
        if probed > cap:
            raise OversizeError(link.url, probed, cap)

        filename = token + _safe_extension(link.extension)
        try:
            async with self.session.get(link.url, timeout=self.timeout) as resp:
                if not resp.ok:
                    raise FetchError(
                        f"Failed to fetch {link.url}: {resp.status} - {resp.reason}"
                    )
                advance(LinkState.FETCHED)
                path = await self._stream_to_file(resp, staging, filename, link.url, cap)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise FetchError(f"Failed to fetch {link.url}: {e}") from e
        advance(LinkState.STAGED)

        size = path.stat().st_size
        if size > cap:
            staging.discard(path)
            raise OversizeError(link.url, size, cap)
        advance(LinkState.VERIFIED)

        log.info("Staged %s (%d bytes) at %s", link.url, size, path)
        return StagedAsset(
            source_url=link.url,
            local_path=path,
            size_bytes=size,
            filename=display_filename(link),
        )

    async def _stream_to_file(
        self,
        resp: aiohttp.ClientResponse,
        staging: StagingArea,
        filename: str,
        url: str,
        cap: int,
    ) -> Path:
        path, fh = staging.create(filename)
        written = 0
        with fh:
            async for chunk in resp.content.iter_chunked(CHUNK_SIZE):
                written += len(chunk)
                if written > cap:
                    raise OversizeError(url, written, cap)
                try:
                    fh.write(chunk)
                except OSError as e:
                    raise StagingWriteError(f"cannot write {path}: {e}") from e
        return path
