"""
Transport against an Ookla-style speedtest server.

Every phase gets its own :class:`QueueHandle`: worker tasks push events into
one ``asyncio.Queue`` and the engine is the single reader.  The handle owns
its ``aiohttp`` session and worker tasks; closing it cancels the workers and
releases the session.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, AsyncIterator, Callable, Coroutine, List, Optional

import aiohttp

from engine.errors import TransportError
from engine.transport import (
    ByteProgress,
    PacketLossReport,
    PhaseKind,
    PhaseRequest,
    RoundTrip,
    TransportEvent,
)

from .constants import LOSS_PROBE_TIMEOUT
from .endpoint import Endpoint
from .latency import LatencyProber
from .streams import create_session, download_worker, upload_worker

LOGGER = logging.getLogger(__name__)

_DONE = object()


class QueueHandle:
    """Event stream for one phase, fed by the transport's worker tasks."""

    def __init__(self, request: PhaseRequest, clock: Callable[[], float]) -> None:
        self.request = request
        self.stop = asyncio.Event()
        self.session: Optional[aiohttp.ClientSession] = None
        self._clock = clock
        self._queue: "asyncio.Queue[Any]" = asyncio.Queue()
        self._tasks: List[asyncio.Task] = []
        self._supervisor: Optional[asyncio.Task] = None

    # -- Producers ----------------------------------------------------------

    def now_ms(self) -> float:
        return self._clock() * 1000

    def emit_bytes(self, n: int) -> None:
        self._queue.put_nowait(ByteProgress(bytes_delta=n, timestamp_ms=self.now_ms()))

    def emit_rtt(self, rtt_ms: float) -> None:
        self._queue.put_nowait(RoundTrip(round_trip_ms=rtt_ms, timestamp_ms=self.now_ms()))

    def emit(self, event: TransportEvent) -> None:
        self._queue.put_nowait(event)

    def run(
        self,
        primary: List[Coroutine[Any, Any, Any]],
        background: Optional[List[Coroutine[Any, Any, Any]]] = None,
    ) -> None:
        """Start workers; the stream completes when every *primary* worker has."""
        main = [asyncio.create_task(c) for c in primary]
        extra = [asyncio.create_task(c) for c in background or []]
        self._tasks = main + extra
        self._supervisor = asyncio.create_task(self._supervise(main, extra))

    async def _supervise(self, main: List[asyncio.Task], extra: List[asyncio.Task]) -> None:
        pending = set(main + extra)
        try:
            while pending and any(not t.done() for t in main):
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    if not task.cancelled() and task.exception() is not None:
                        self._queue.put_nowait(task.exception())
                        return
        finally:
            self.stop.set()
            for task in extra:
                task.cancel()
        self._queue.put_nowait(_DONE)

    # -- Consumer -----------------------------------------------------------

    async def events(self) -> AsyncIterator[TransportEvent]:
        while True:
            item = await self._queue.get()
            if item is _DONE:
                return
            if isinstance(item, TransportError):
                raise item
            if isinstance(item, BaseException):
                raise TransportError(f"{self.request.kind.value} worker failed: {item}") from item
            yield item

    # -- Teardown -----------------------------------------------------------

    async def aclose(self) -> None:
        self.stop.set()
        tasks = list(self._tasks)
        if self._supervisor is not None:
            tasks.append(self._supervisor)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        if self.session is not None:
            await self.session.close()
            self.session = None


class OoklaTransport:
    """
    Bulk-transfer and probe transport bound to one server.

    Use as an async context manager so outstanding handles are released::

        async with OoklaTransport(Endpoint.parse("speedtest.example.net:8080")) as t:
            engine = MeasurementEngine(t, config)
            result = await engine.run_measurement()
    """

    def __init__(self, endpoint: Endpoint, clock: Callable[[], float] = time.perf_counter) -> None:
        self.endpoint = endpoint
        self._clock = clock
        self._handles: List[QueueHandle] = []

    async def __aenter__(self) -> OoklaTransport:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        for handle in list(self._handles):
            await self.close(handle)

    # -- Transport contract -------------------------------------------------

    async def open_phase(self, request: PhaseRequest) -> QueueHandle:
        handle = QueueHandle(request, self._clock)
        self._handles.append(handle)
        LOGGER.debug("Opening %s phase against %s", request.kind.value, self.endpoint.hostname)

        if request.kind is PhaseKind.PING:
            handle.run([self._probe(handle, request)])
        elif request.kind is PhaseKind.PACKET_LOSS:
            handle.run([self._loss_probe(handle, request)])
        elif request.kind is PhaseKind.DOWNLOAD:
            session = handle.session = create_session(request.connections, ssl=self.endpoint.secure)
            handle.run(self._downloads(handle, session, request))
        elif request.kind is PhaseKind.UPLOAD:
            session = handle.session = create_session(request.connections, ssl=self.endpoint.secure)
            handle.run([
                upload_worker(
                    session,
                    self.endpoint.upload_url,
                    request.payload_bytes,
                    request.chunk_bytes,
                    handle.emit_bytes,
                    handle.stop,
                    cid=i,
                )
                for i in range(request.connections)
            ])
        elif request.kind is PhaseKind.BUFFERBLOAT:
            # Latency probes under a download load; the load is discarded.
            session = handle.session = create_session(request.connections, ssl=self.endpoint.secure)
            handle.run(
                [self._probe(handle, request)],
                background=self._downloads(handle, session, request, emit=lambda n: None),
            )
        else:
            raise TransportError(f"Unsupported phase: {request.kind}")

        return handle

    async def close(self, handle: QueueHandle) -> None:
        await handle.aclose()
        if handle in self._handles:
            self._handles.remove(handle)

    # -- Workers ------------------------------------------------------------

    def _downloads(
        self,
        handle: QueueHandle,
        session: aiohttp.ClientSession,
        request: PhaseRequest,
        emit: Optional[Callable[[int], None]] = None,
    ) -> List[Coroutine[Any, Any, None]]:
        url = f"{self.endpoint.download_url}?size={request.payload_bytes}"
        return [
            download_worker(
                session,
                url,
                request.chunk_bytes,
                emit or handle.emit_bytes,
                handle.stop,
                cid=i,
            )
            for i in range(request.connections)
        ]

    async def _probe(self, handle: QueueHandle, request: PhaseRequest) -> None:
        prober = LatencyProber(self.endpoint.ws_url, request.probe_count, request.probe_interval_s)
        summary = await prober.run(handle.emit_rtt)
        if summary.received == 0:
            raise TransportError(f"No PONG received from {self.endpoint.hostname}")

    async def _loss_probe(self, handle: QueueHandle, request: PhaseRequest) -> None:
        prober = LatencyProber(
            self.endpoint.ws_url,
            request.probe_count,
            request.probe_interval_s,
            timeout=LOSS_PROBE_TIMEOUT,
            tolerate_loss=True,
        )
        summary = await prober.run(lambda rtt: None)
        handle.emit(PacketLossReport(sent=summary.sent, received=summary.received, timestamp_ms=handle.now_ms()))
