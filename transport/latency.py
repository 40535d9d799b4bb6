"""
WebSocket round-trip probes using the Ookla Speedtest protocol.

Protocol flow::

    1. Connect to  wss://{hostname}:{port}/ws
    2. Receive  HELLO {version}
    3. Receive  YOURIP {ip}
    4. Receive  CAPABILITIES ...
    5. Send     PING {timestamp_ms}
    6. Receive  PONG {server_timestamp}
    7. Repeat 5-6 for the desired number of samples.

PONG carries no echo of the probe it answers, so replies are matched to
outstanding probes in send order.  A reader task stamps every message with
its arrival time; a PONG that shows up after its probe timed out is still
credited to that probe instead of the next one, for up to one more timeout.
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Optional, Tuple

import websockets
import websockets.exceptions

from engine.errors import TransportError

from .constants import COMMON_HEADERS, HANDSHAKE_TIMEOUT, MSG_TIMEOUT, PING_TIMEOUT, WS_CONNECT_TIMEOUT

LOGGER = logging.getLogger(__name__)

_WS_ERRORS = (websockets.exceptions.WebSocketException, ConnectionError, OSError)


@dataclass
class ProbeResult:
    """A single PING/PONG round-trip."""

    latency_ms: float = 0.0
    server_timestamp: int = 0
    success: bool = True
    error: Optional[str] = None


@dataclass
class ProbeSummary:
    sent: int = 0
    received: int = 0
    server_version: str = ""
    external_ip: str = ""


class LatencyProber:
    """
    Sends ``count`` probes at ``interval`` seconds over one WebSocket.

    Each answered probe is passed to ``on_sample(rtt_ms)``.  One unanswered
    probe is tolerated; two in a row end the run unless ``tolerate_loss``
    is set, in which case every probe is attempted and counted.
    """

    def __init__(
        self,
        url: str,
        count: int,
        interval: float,
        timeout: float = PING_TIMEOUT,
        tolerate_loss: bool = False,
    ) -> None:
        self.url = url
        self.count = count
        self.interval = interval
        self.timeout = timeout
        self.tolerate_loss = tolerate_loss

    async def run(self, on_sample: Callable[[float], None]) -> ProbeSummary:
        summary = ProbeSummary()

        try:
            async with websockets.connect(
                self.url,
                additional_headers=COMMON_HEADERS,
                ping_interval=None,
                close_timeout=2,
                open_timeout=WS_CONNECT_TIMEOUT,
            ) as ws:
                await self._read_handshake(ws, summary)

                replies: asyncio.Queue = asyncio.Queue()
                reader = asyncio.ensure_future(self._read_replies(ws, replies))
                try:
                    await self._probe_loop(ws, replies, summary, on_sample)
                finally:
                    reader.cancel()
                    await asyncio.gather(reader, return_exceptions=True)

        except asyncio.TimeoutError as exc:
            raise TransportError(f"WebSocket connection to {self.url} timed out") from exc
        except _WS_ERRORS as exc:
            raise TransportError(f"WebSocket error: {exc}") from exc

        return summary

    # -- Internals ----------------------------------------------------------

    async def _probe_loop(
        self,
        ws: Any,
        replies: asyncio.Queue,
        summary: ProbeSummary,
        on_sample: Callable[[float], None],
    ) -> None:
        outstanding: Deque[Tuple[int, float]] = deque()
        misses = 0

        def on_late(rtt_ms: float) -> None:
            nonlocal misses
            misses = 0
            summary.received += 1
            on_sample(rtt_ms)

        for i in range(self.count):
            if i:
                await asyncio.sleep(self.interval)
            summary.sent += 1
            probe = await self._ping_once(ws, i, replies, outstanding, on_late)
            if probe.success:
                misses = 0
                summary.received += 1
                on_sample(probe.latency_ms)
                continue

            LOGGER.debug("Probe %d failed: %s", i + 1, probe.error)
            misses += 1
            if misses >= 2 and not self.tolerate_loss:
                break

    @staticmethod
    async def _read_handshake(ws: Any, summary: ProbeSummary) -> None:
        """Consume HELLO / YOURIP / CAPABILITIES messages."""
        start = time.perf_counter()
        received = 0

        while time.perf_counter() - start < HANDSHAKE_TIMEOUT:
            try:
                msg = await asyncio.wait_for(ws.recv(), timeout=MSG_TIMEOUT)
            except asyncio.TimeoutError:
                break

            if msg.startswith("HELLO"):
                parts = msg.split()
                if len(parts) >= 2:
                    summary.server_version = parts[1]
            elif msg.startswith("YOURIP"):
                summary.external_ip = msg.split()[1].strip()

            received += 1
            if received >= 3:
                break

    @staticmethod
    async def _read_replies(ws: Any, replies: asyncio.Queue) -> None:
        """Queue ``(arrival_ms, message)`` pairs; a closed socket is queued as its error."""
        try:
            async for msg in ws:
                replies.put_nowait((time.perf_counter() * 1000, msg))
            raise ConnectionError("WebSocket closed by server")
        except _WS_ERRORS as exc:
            replies.put_nowait((time.perf_counter() * 1000, exc))

    def _expire(self, outstanding: Deque[Tuple[int, float]], now_ms: float) -> None:
        """Give up on probes that went unanswered for twice the timeout."""
        while outstanding and now_ms - outstanding[0][1] >= 2 * self.timeout * 1000:
            seq, _ = outstanding.popleft()
            LOGGER.debug("Probe %d never answered", seq + 1)

    async def _ping_once(
        self,
        ws: Any,
        seq: int,
        replies: asyncio.Queue,
        outstanding: Deque[Tuple[int, float]],
        on_late: Callable[[float], None],
    ) -> ProbeResult:
        """Send PING number *seq* and wait for the PONG that answers it."""
        send_time = time.perf_counter() * 1000
        self._expire(outstanding, send_time)
        outstanding.append((seq, send_time))
        await ws.send(f"PING {int(send_time)}")
        deadline = send_time + self.timeout * 1000

        while True:
            remaining = (deadline - time.perf_counter() * 1000) / 1000
            if remaining <= 0:
                return ProbeResult(success=False, error="Ping timeout")
            try:
                arrived, msg = await asyncio.wait_for(replies.get(), timeout=remaining)
            except asyncio.TimeoutError:
                return ProbeResult(success=False, error="Ping timeout")

            if isinstance(msg, BaseException):
                raise msg
            if not msg.startswith("PONG") or not outstanding:
                LOGGER.debug("Ignoring unexpected message: %s", msg[:50])
                continue

            self._expire(outstanding, arrived)
            if arrived < outstanding[0][1]:
                LOGGER.debug("Ignoring PONG that no open probe can own")
                continue
            probe_seq, sent_at = outstanding.popleft()
            if probe_seq != seq:
                LOGGER.debug("Late PONG for probe %d after %.1f ms", probe_seq + 1, arrived - sent_at)
                on_late(arrived - sent_at)
                continue

            parts = msg.split()
            return ProbeResult(
                latency_ms=arrived - send_time,
                server_timestamp=int(parts[1]) if len(parts) > 1 and parts[1].isdigit() else 0,
            )
