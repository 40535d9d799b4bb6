"""
Bulk-transfer workers.

Download workers issue long-running GETs and read fixed-size chunks;
upload workers stream a pre-generated random buffer through chunked POSTs.
Both report every chunk through an ``emit(bytes_delta)`` callback and repeat
their request until told to stop.  A worker retries dropped connections a
few times, then gives up with :class:`~engine.errors.TransportError`.
"""
from __future__ import annotations

import asyncio
import logging
import os
from typing import AsyncIterator, Callable

import aiohttp

from engine.errors import TransportError

from .constants import (
    COMMON_HEADERS,
    CONNECT_TIMEOUT,
    MAX_CONSECUTIVE_FAILURES,
    RETRY_DELAY,
    SOCK_READ_TIMEOUT,
    UPLOAD_BUFFER_SIZE,
)

LOGGER = logging.getLogger(__name__)

Emit = Callable[[int], None]


def create_session(connections: int, ssl: bool = True) -> aiohttp.ClientSession:
    """Session sized for *connections* parallel streams to one host."""
    connector = aiohttp.TCPConnector(
        ssl=None if ssl else False,
        limit=connections,
        limit_per_host=connections,
        force_close=False,
        enable_cleanup_closed=True,
    )
    timeout = aiohttp.ClientTimeout(total=None, connect=CONNECT_TIMEOUT, sock_read=SOCK_READ_TIMEOUT)
    headers = {**COMMON_HEADERS, "Accept-Encoding": "identity"}
    return aiohttp.ClientSession(headers=headers, connector=connector, timeout=timeout)


async def _retry_or_raise(cid: int, failures: int, exc: BaseException) -> None:
    if failures >= MAX_CONSECUTIVE_FAILURES:
        raise TransportError(f"connection {cid} failed {failures} times: {exc}") from exc
    LOGGER.debug("Connection %d dropped (%s), retrying", cid, exc)
    await asyncio.sleep(RETRY_DELAY)


# ---------------------------------------------------------------------------
# Download
# ---------------------------------------------------------------------------

async def download_worker(
    session: aiohttp.ClientSession,
    url: str,
    chunk_bytes: int,
    emit: Emit,
    stop: asyncio.Event,
    cid: int = 0,
) -> None:
    failures = 0

    while not stop.is_set():
        try:
            async with session.get(url) as resp:
                resp.raise_for_status()
                failures = 0
                while not stop.is_set():
                    chunk = await resp.content.read(chunk_bytes)
                    if not chunk:
                        break
                    emit(len(chunk))
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
            if stop.is_set():
                break
            failures += 1
            await _retry_or_raise(cid, failures, exc)


# ---------------------------------------------------------------------------
# Upload
# ---------------------------------------------------------------------------

class UploadSource:
    """Cycles through one random buffer, handing out fixed-size chunks."""

    def __init__(self, chunk_bytes: int, buffer_size: int = UPLOAD_BUFFER_SIZE) -> None:
        self.chunk_bytes = chunk_bytes
        self._buffer = os.urandom(max(buffer_size, chunk_bytes))
        self._pos = 0

    def next_chunk(self) -> bytes:
        end = self._pos + self.chunk_bytes
        size = len(self._buffer)
        if end > size:
            chunk = self._buffer[self._pos:] + self._buffer[: end - size]
            self._pos = end - size
        else:
            chunk = self._buffer[self._pos:end]
            self._pos = end
        return chunk


async def upload_worker(
    session: aiohttp.ClientSession,
    url: str,
    payload_bytes: int,
    chunk_bytes: int,
    emit: Emit,
    stop: asyncio.Event,
    cid: int = 0,
) -> None:
    source = UploadSource(chunk_bytes)
    failures = 0

    async def body() -> AsyncIterator[bytes]:
        sent = 0
        while sent < payload_bytes and not stop.is_set():
            chunk = source.next_chunk()
            sent += len(chunk)
            emit(len(chunk))
            yield chunk

    while not stop.is_set():
        try:
            async with session.post(
                url,
                data=body(),
                headers={"Content-Type": "application/octet-stream"},
            ) as resp:
                resp.raise_for_status()
                await resp.read()
                failures = 0
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
            if stop.is_set():
                break
            failures += 1
            await _retry_or_raise(cid, failures, exc)
