"""
Phase state machine -- the top-level entry point of a measurement run.

A run walks ``PING -> DOWNLOAD -> UPLOAD -> [BUFFERBLOAT] -> [PACKET_LOSS]``
and ends in ``COMPLETE`` with a frozen :class:`MeasurementResult`, or in
``ERROR`` with a human-readable cause and no result.  The whole run is
bounded by its planned length plus ``run_timeout_grace``; that bound
always wins over an in-progress phase.

Transport events are consumed on the engine's own task, so every update to
the sample buffer, grace detector, and duration budget has a single writer
and is applied in arrival order.
"""
from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Optional

from .config import EngineConfig
from .constants import PING_INTERVAL
from .duration import DynamicDurationController
from .errors import (
    MeasurementAborted,
    MeasurementTimeoutError,
    SpeedtestError,
    TransportError,
)
from .grace import GracePeriodDetector
from .grading import grade_bufferbloat
from .overhead import OverheadCompensator
from .phases import MeasurementPhase, can_transition
from .results import (
    BufferbloatInfo,
    MeasurementResult,
    PacketLossInfo,
    PhaseOutcome,
    ResultAggregator,
)
from .samples import SampleBuffer, bytes_to_mbps
from .stats import PingStats, trimmed_mean
from .transport import (
    ByteProgress,
    PacketLossReport,
    PhaseHandle,
    PhaseKind,
    PhaseRequest,
    RoundTrip,
    Transport,
)

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProgressUpdate:
    phase: MeasurementPhase
    progress_percent: float
    instantaneous_speed_mbps: float
    elapsed_seconds: float


ProgressCallback = Callable[[ProgressUpdate], None]


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


class MeasurementEngine:
    """
    Orchestrates one measurement run at a time over an owned transport.

    Use :meth:`run_measurement` to await a result directly, or
    :meth:`start` to get a task back and :meth:`abort` it from elsewhere.
    """

    def __init__(
        self,
        transport: Transport,
        config: Optional[EngineConfig] = None,
        on_progress: Optional[ProgressCallback] = None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.transport = transport
        self.config = config or EngineConfig()
        self.on_progress = on_progress
        self._clock = clock

        self._phase = MeasurementPhase.IDLE
        self._error: Optional[SpeedtestError] = None
        self._result: Optional[MeasurementResult] = None
        self._task: Optional[asyncio.Task] = None
        self._running = False
        self._run_start = 0.0

    # -- State --------------------------------------------------------------

    @property
    def phase(self) -> MeasurementPhase:
        return self._phase

    @property
    def error(self) -> Optional[SpeedtestError]:
        return self._error

    @property
    def result(self) -> Optional[MeasurementResult]:
        return self._result

    @property
    def running(self) -> bool:
        if not self._running:
            return False
        # A started task cancelled before its first step never reaches _execute.
        return self._task is None or not self._task.done()

    # -- Public API ---------------------------------------------------------

    def start(self, config: Optional[EngineConfig] = None) -> "asyncio.Task[MeasurementResult]":
        """Validate *config* synchronously and schedule the run on the current loop."""
        overhead = self._prepare(config)
        self._task = asyncio.ensure_future(self._execute(overhead))
        return self._task

    async def run_measurement(self, config: Optional[EngineConfig] = None) -> MeasurementResult:
        """Run every phase to completion and return the frozen result."""
        overhead = self._prepare(config)
        self._task = asyncio.current_task()
        return await self._execute(overhead)

    def abort(self, reason: str = "Measurement aborted") -> None:
        """Stop the run; a second call, or a call after the run ended, is a no-op."""
        if self._phase.is_terminal:
            return

        self._fail(MeasurementAborted(reason))
        task = self._task
        # From inside the run (a progress callback) the error flag stops it.
        if task is not None and not task.done() and task is not _current_task():
            task.cancel()

    # -- Run ----------------------------------------------------------------

    def _prepare(self, config: Optional[EngineConfig]) -> OverheadCompensator:
        if self.running:
            raise RuntimeError("A measurement is already running")
        if config is not None:
            self.config = config

        self.config.validate()
        overhead = OverheadCompensator(self.config.overhead)
        self._phase = MeasurementPhase.IDLE
        self._error = None
        self._result = None
        self._running = True
        return overhead

    async def _execute(self, overhead: OverheadCompensator) -> MeasurementResult:
        timeout = self.config.run_timeout_seconds
        self._run_start = self._clock()

        try:
            return await asyncio.wait_for(self._run_phases(overhead), timeout=timeout)
        except asyncio.TimeoutError:
            err = MeasurementTimeoutError(f"Measurement did not complete within {timeout:.0f} s")
            self._fail(err)
            raise err from None
        except asyncio.CancelledError:
            if isinstance(self._error, MeasurementAborted):
                task = _current_task()
                if task is not None and hasattr(task, "uncancel"):
                    task.uncancel()
                raise self._error from None
            self._fail(MeasurementAborted("Measurement cancelled"))
            raise
        except SpeedtestError as exc:
            self._fail(exc)
            raise
        except Exception as exc:
            err = SpeedtestError(f"Internal error during {self._phase.value}: {exc}")
            self._fail(err)
            raise err from exc
        finally:
            self._running = False

    async def _run_phases(self, overhead: OverheadCompensator) -> MeasurementResult:
        aggregator = ResultAggregator(overhead.info(), self.config.to_dict())

        self._transition(MeasurementPhase.PING)
        ping = await self._run_ping(aggregator)
        aggregator.add_ping(ping)

        self._transition(MeasurementPhase.DOWNLOAD)
        aggregator.add_transfer(await self._run_transfer(MeasurementPhase.DOWNLOAD, aggregator, overhead))

        self._transition(MeasurementPhase.UPLOAD)
        aggregator.add_transfer(await self._run_transfer(MeasurementPhase.UPLOAD, aggregator, overhead))

        if self.config.bufferbloat_enabled:
            self._transition(MeasurementPhase.BUFFERBLOAT)
            info = await self._run_bufferbloat(ping.average, aggregator)
            if info:
                aggregator.add_bufferbloat(info)

        if self.config.packet_loss_enabled:
            self._transition(MeasurementPhase.PACKET_LOSS)
            loss = await self._run_packet_loss(aggregator)
            if loss:
                aggregator.add_packet_loss(loss)

        result = aggregator.build(test_duration_seconds=self._clock() - self._run_start)
        self._transition(MeasurementPhase.COMPLETE)
        self._result = result
        self._emit(MeasurementPhase.COMPLETE, 100.0, 0.0)
        LOGGER.info(
            "Measurement complete: down %.2f Mbps, up %.2f Mbps, ping %.1f ms",
            result.download_mbps,
            result.upload_mbps,
            result.ping_ms,
        )
        return result

    # -- Phases -------------------------------------------------------------

    async def _run_ping(self, aggregator: ResultAggregator) -> PingStats:
        target = self.config.ping_sample_count
        stats = PingStats()
        request = PhaseRequest(
            PhaseKind.PING,
            connections=1,
            probe_count=target,
            probe_interval_s=PING_INTERVAL,
        )

        async with self._phase_handle(request) as handle:
            async for event in handle.events():
                if not isinstance(event, RoundTrip):
                    continue
                stats.samples.append(event.round_trip_ms)
                self._emit(MeasurementPhase.PING, min(len(stats.samples) / target * 100, 100.0), 0.0)
                self._check_aborted()
                if len(stats.samples) >= target:
                    break

        if len(stats.samples) < target:
            self._anomaly(
                aggregator,
                MeasurementPhase.PING,
                f"received {len(stats.samples)} of {target} round-trip samples",
            )
        stats.calculate()
        LOGGER.debug("Ping %.2f ms, jitter %.2f ms over %d samples", stats.average, stats.jitter, stats.count)
        return stats

    async def _run_transfer(
        self,
        phase: MeasurementPhase,
        aggregator: ResultAggregator,
        overhead: OverheadCompensator,
    ) -> PhaseOutcome:
        upload = phase is MeasurementPhase.UPLOAD
        request = PhaseRequest(
            PhaseKind(phase.value),
            connections=(
                self.config.upload_parallel_connections if upload
                else self.config.parallel_connections
            ),
            payload_bytes=self.config.payload_bytes,
            chunk_bytes=self.config.chunk_bytes,
        )
        grace = GracePeriodDetector(
            self.config.grace_window_ms(upload),
            dynamic=self.config.dynamic_grace_period_enabled,
        )
        duration = DynamicDurationController(
            self.config.duration_seconds * 1000,
            enabled=self.config.dynamic_duration_enabled,
        )

        phase_bytes = 0
        exhausted = False

        async with self._phase_handle(request) as handle:
            start_ms = self._clock() * 1000
            buffer = SampleBuffer(phase, start_ms)
            grace.begin(start_ms)
            if grace.state.window_ms <= 0:
                grace.end_now(start_ms)
                buffer.reset(start_ms)
            last_ms = start_ms

            async for event in handle.events():
                if not isinstance(event, ByteProgress):
                    continue

                sample = buffer.record(event.bytes_delta, event.timestamp_ms)
                phase_bytes += sample.bytes
                now = last_ms = sample.timestamp_ms
                speed = overhead.apply(buffer.current_mbps)

                if grace.active:
                    if grace.observe(now, buffer.total_bytes()):
                        buffer.reset(now)
                        LOGGER.info("%s grace period ended, starting measurement", phase.value.capitalize())
                    progress = grace.progress_percent(now)
                else:
                    measured = buffer.elapsed_ms(now)
                    duration.update(speed, measured)
                    progress = duration.progress_percent(measured)
                    exhausted = duration.is_exhausted(measured)

                self._emit(phase, progress, speed)
                self._check_aborted()
                if exhausted:
                    break

        if grace.active:
            # The stream ran dry before ramp-up was excluded.
            measured_ms = grace.elapsed_ms(last_ms)
            raw = bytes_to_mbps(buffer.total_bytes(), measured_ms)
            if phase_bytes:
                self._anomaly(aggregator, phase, "transfer ended during the grace period; speed includes ramp-up")
        else:
            measured_ms = buffer.elapsed_ms(last_ms)
            raw = buffer.speed_mbps(last_ms)
            if phase_bytes and not exhausted:
                self._anomaly(
                    aggregator,
                    phase,
                    f"transfer ended after {measured_ms / 1000:.1f} s of "
                    f"{duration.budget.effective_duration_ms / 1000:.1f} s",
                )

        if phase_bytes == 0:
            self._anomaly(aggregator, phase, "no bytes transferred")
        elif buffer.total_bytes() == 0:
            self._anomaly(aggregator, phase, "no bytes transferred after the grace period")

        outcome = PhaseOutcome(
            phase=phase,
            speed_mbps=overhead.apply(raw),
            raw_speed_mbps=raw,
            bytes_measured=buffer.total_bytes(),
            measured_ms=measured_ms,
            grace_period_seconds=grace.state.window_seconds,
            effective_duration_seconds=duration.budget.effective_duration_ms / 1000,
            grace_extended=grace.state.extended,
        )
        LOGGER.info(
            "%s: %.2f Mbps (raw %.2f) over %.1f s",
            phase.value.capitalize(),
            outcome.speed_mbps,
            raw,
            measured_ms / 1000,
        )
        return outcome

    async def _run_bufferbloat(
        self,
        idle_ping_ms: float,
        aggregator: ResultAggregator,
    ) -> Optional[BufferbloatInfo]:
        target = self.config.ping_sample_count
        samples = []
        request = PhaseRequest(
            PhaseKind.BUFFERBLOAT,
            connections=self.config.parallel_connections,
            probe_count=target,
            probe_interval_s=PING_INTERVAL,
            payload_bytes=self.config.payload_bytes,
            chunk_bytes=self.config.chunk_bytes,
        )

        async with self._phase_handle(request) as handle:
            async for event in handle.events():
                if not isinstance(event, RoundTrip):
                    continue
                samples.append(event.round_trip_ms)
                self._emit(MeasurementPhase.BUFFERBLOAT, min(len(samples) / target * 100, 100.0), 0.0)
                self._check_aborted()
                if len(samples) >= target:
                    break

        if not samples:
            self._anomaly(aggregator, MeasurementPhase.BUFFERBLOAT, "no loaded latency samples received")
            return None

        loaded = trimmed_mean(samples)
        increase = max(0.0, loaded - idle_ping_ms)
        return BufferbloatInfo(
            loaded_latency_ms=loaded,
            latency_increase_ms=increase,
            rating=grade_bufferbloat(increase),
        )

    async def _run_packet_loss(self, aggregator: ResultAggregator) -> Optional[PacketLossInfo]:
        request = PhaseRequest(
            PhaseKind.PACKET_LOSS,
            connections=1,
            probe_count=self.config.ping_sample_count,
            probe_interval_s=PING_INTERVAL,
        )
        report: Optional[PacketLossReport] = None

        async with self._phase_handle(request) as handle:
            async for event in handle.events():
                if isinstance(event, PacketLossReport):
                    report = event
                    break

        if report is None:
            self._anomaly(aggregator, MeasurementPhase.PACKET_LOSS, "transport reported no packet-loss figures")
            return None

        self._emit(MeasurementPhase.PACKET_LOSS, 100.0, 0.0)
        return PacketLossInfo(sent=report.sent, received=report.received)

    # -- Helpers ------------------------------------------------------------

    @asynccontextmanager
    async def _phase_handle(self, request: PhaseRequest) -> AsyncIterator[PhaseHandle]:
        handle = await self.transport.open_phase(request)
        try:
            yield handle
        finally:
            try:
                await self.transport.close(handle)
            except TransportError as exc:
                LOGGER.warning("Failed to close %s handle: %s", request.kind.value, exc)

    def _check_aborted(self) -> None:
        if self._phase is MeasurementPhase.ERROR and self._error is not None:
            raise self._error

    def _transition(self, dst: MeasurementPhase) -> None:
        self._check_aborted()
        if not can_transition(self._phase, dst):
            raise RuntimeError(f"Illegal phase transition {self._phase.value} -> {dst.value}")
        LOGGER.info("Phase %s -> %s", self._phase.value, dst.value)
        self._phase = dst

    def _fail(self, error: SpeedtestError) -> None:
        if self._phase.is_terminal:
            return
        LOGGER.error("Measurement failed during %s: %s", self._phase.value, error)
        self._error = error
        self._phase = MeasurementPhase.ERROR
        self._emit(MeasurementPhase.ERROR, 0.0, 0.0)

    def _anomaly(self, aggregator: ResultAggregator, phase: MeasurementPhase, message: str) -> None:
        LOGGER.warning("%s anomaly: %s", phase.value, message)
        aggregator.add_anomaly(phase, message)

    def _emit(self, phase: MeasurementPhase, progress: float, speed_mbps: float) -> None:
        if self.on_progress is None:
            return
        self.on_progress(
            ProgressUpdate(
                phase=phase,
                progress_percent=min(max(progress, 0.0), 100.0),
                instantaneous_speed_mbps=speed_mbps,
                elapsed_seconds=max(0.0, self._clock() - self._run_start),
            )
        )
