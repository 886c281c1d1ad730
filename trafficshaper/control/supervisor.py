"""Run state machine and owner of the emission loop.

The ``RunSupervisor`` is the single scheduling authority: it holds the run
state, the last applied configuration, and the run counters, and it drives
the pattern evaluator, rate controller and emitter from one timing thread.
Control calls (``start``, ``stop``, ``update_configuration``, ``status``)
are safe to invoke from any thread; every state transition happens under a
single lock, so two concurrent ``start`` calls cannot both succeed.

State machine::

    idle --start--> running --stop / duration expiry--> stopping --> idle
                       \\--scheduling fault-----------------------> idle

Usage::

    supervisor = RunSupervisor(UdpEmitter())
    supervisor.update_configuration({"pattern": "constant", "duration": 10})
    supervisor.start()
    with supervisor.subscribe() as sub:
        print(sub.get(timeout=2))
    supervisor.stop()
"""

from __future__ import annotations

import logging
import random
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from ..core.config import RunConfiguration
from ..core.exceptions import ConflictError, InternalSchedulingFault
from ..emission.emitter import DatagramEmitter, SendResult
from ..shaping.pattern import evaluate
from ..shaping.rate_controller import MAX_CATCHUP_TICKS, TICK_INTERVAL_SECONDS, RateController
from ..telemetry.aggregator import (
    SNAPSHOT_INTERVAL_SECONDS,
    Counters,
    MetricsSnapshot,
    TelemetryAggregator,
)
from ..telemetry.broadcaster import (
    Message,
    Subscription,
    TelemetryBroadcaster,
    metrics_message,
    state_message,
)

logger = logging.getLogger(__name__)

SEND_CHUNK_PACKETS = 256


class RunState(StrEnum):
    """Lifecycle states of the supervisor."""

    IDLE = "idle"
    RUNNING = "running"
    STOPPING = "stopping"


class StopReason(StrEnum):
    """Why a run ended."""

    COMPLETED = "completed"
    STOPPED = "stopped"
    FAULT = "fault"


@dataclass(frozen=True)
class RunStatus:
    """Point-in-time view of the supervisor for newly connected clients.

    Attributes:
        state: Current ``RunState``.
        config: Active configuration while running, otherwise the last one.
        metrics: Latest snapshot of the current or most recent run.
        send_degraded: ``True`` while the emitter reports a failure streak.
        started_at: ISO-8601 wall-clock start of the current or last run.

    """

    state: RunState
    config: RunConfiguration
    metrics: MetricsSnapshot
    send_degraded: bool = False
    started_at: str | None = None

    @property
    def is_running(self) -> bool:
        """Return ``True`` unless the supervisor is idle."""
        return self.state is not RunState.IDLE

    def to_dict(self) -> dict[str, Any]:
        """Return the wire representation."""
        metrics = self.metrics.to_dict()
        if self.started_at is not None:
            metrics["startTime"] = self.started_at
        return {
            "isRunning": self.is_running,
            "state": str(self.state),
            "config": self.config.to_dict(),
            "metrics": metrics,
            "sendDegraded": self.send_degraded,
        }


class RunSupervisor:
    """Own the single active run and arbitrate control requests.

    Args:
        emitter: Backend that performs the datagram sends.
        configuration: Initial "last configuration" (defaults if omitted).
        broadcaster: Telemetry fan-out; a private one is created if omitted.
        tick_interval: Emission tick length in seconds.
        snapshot_interval: Periodic telemetry cadence in seconds.
        clock: Monotonic time source.
        rng: Random source for the random envelope.

    """

    def __init__(
        self,
        emitter: DatagramEmitter,
        configuration: RunConfiguration | None = None,
        broadcaster: TelemetryBroadcaster | None = None,
        tick_interval: float = TICK_INTERVAL_SECONDS,
        snapshot_interval: float = SNAPSHOT_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize an idle supervisor."""
        if tick_interval <= 0:
            raise ValueError("tick_interval must be positive")
        self._emitter = emitter
        self._config = (configuration or RunConfiguration()).validate()
        self._broadcaster = broadcaster or TelemetryBroadcaster()
        self._tick = tick_interval
        self._aggregator = TelemetryAggregator(snapshot_interval)
        self._clock = clock
        self._rng = rng

        self._lock = threading.Lock()
        self._state = RunState.IDLE
        self._active: RunConfiguration | None = None
        self._counters: Counters | None = None
        self._latest = MetricsSnapshot()
        self._started_at_wall: str | None = None
        self._send_degraded = False
        self._stop_event = threading.Event()
        self._idle = threading.Event()
        self._idle.set()
        self._thread: threading.Thread | None = None
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    # -- Properties ---------------------------------------------------------

    @property
    def state(self) -> RunState:
        """Return the current run state."""
        with self._lock:
            return self._state

    @property
    def is_running(self) -> bool:
        """Return ``True`` while a run is active or stopping."""
        return self.state is not RunState.IDLE

    @property
    def configuration(self) -> RunConfiguration:
        """Return the last applied configuration."""
        with self._lock:
            return self._config

    @property
    def broadcaster(self) -> TelemetryBroadcaster:
        """Return the telemetry broadcaster."""
        return self._broadcaster

    @property
    def tick_interval(self) -> float:
        """Return the emission tick length."""
        return self._tick

    # -- Control operations -------------------------------------------------

    def update_configuration(
        self,
        configuration: RunConfiguration | dict[str, Any],
    ) -> RunConfiguration:
        """Replace the stored configuration used by future starts.

        Args:
            configuration: A full configuration, or a wire payload merged
                onto the stored configuration.

        Returns:
            The configuration now stored.

        Raises:
            ConflictError: If a run is active.
            ConfigurationError: If validation fails; nothing is stored.

        """
        with self._lock:
            if self._state is not RunState.IDLE:
                raise ConflictError(
                    "Cannot update configuration while running",
                    details={"state": str(self._state)},
                )
            if isinstance(configuration, RunConfiguration):
                new_config = configuration.validate()
            else:
                new_config = RunConfiguration.from_dict(configuration, base=self._config)
            self._config = new_config
            self._broadcaster.publish(self._state_message_locked())
        self._logger.info("Configuration updated: %s", new_config.to_dict())
        return new_config

    def start(self, configuration: RunConfiguration | None = None) -> RunConfiguration:
        """Begin a run with ``configuration`` or the stored configuration.

        Returns:
            The configuration the run is using.

        Raises:
            ConflictError: If a run is already active or stopping.
            ConfigurationError: If the configuration is invalid or the
                target cannot be resolved; the supervisor stays idle.
            InternalSchedulingFault: If the emitter cannot be opened or the
                emission thread cannot start; a fault state message is
                published and the supervisor stays idle.

        """
        with self._lock:
            if self._state is not RunState.IDLE:
                raise ConflictError(
                    "Traffic generation already running",
                    details={"state": str(self._state)},
                )
            run_config = (configuration or self._config).validate()
            try:
                self._emitter.open(run_config.target_host, run_config.target_port)
            except OSError as exc:
                self._abort_start_locked("Emitter could not be opened")
                raise InternalSchedulingFault(
                    "Emitter could not be opened",
                    details={"error": str(exc)},
                ) from exc

            now = self._clock()
            counters = Counters(started_at=now)
            stop_event = threading.Event()
            self._config = run_config
            self._active = run_config
            self._counters = counters
            self._latest = MetricsSnapshot()
            self._started_at_wall = counters.started_at_wall.isoformat()
            self._send_degraded = False
            self._stop_event = stop_event
            self._aggregator.reset(now)
            self._state = RunState.RUNNING
            self._idle.clear()

            thread = threading.Thread(
                target=self._run_loop,
                args=(run_config, counters, stop_event),
                name="trafficshaper-emission",
                daemon=True,
            )
            try:
                thread.start()
            except RuntimeError as exc:
                self._abort_start_locked("Emission thread could not be started")
                raise InternalSchedulingFault(
                    "Emission loop could not be scheduled",
                    details={"error": str(exc)},
                ) from exc
            self._thread = thread
            self._broadcaster.publish(self._state_message_locked())

        self._logger.info(
            "Run started: %s %.2f Mbps for %ds to %s:%d",
            run_config.pattern,
            run_config.max_bandwidth_mbps,
            run_config.duration_seconds,
            run_config.target_host,
            run_config.target_port,
        )
        return run_config

    def stop(self, timeout: float | None = None) -> None:
        """Stop the active run.  Idempotent; a no-op when idle.

        The tick in progress stops sending after its current chunk, no
        further tick begins, and the call returns once the loop has been torn
        down (or ``timeout`` expires).
        """
        with self._lock:
            if self._state is RunState.IDLE:
                return
            if self._state is RunState.RUNNING:
                self._state = RunState.STOPPING
                self._stop_event.set()
                self._logger.info("Stop requested")
            thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    def wait_until_idle(self, timeout: float | None = None) -> bool:
        """Block until no run is active.

        Returns:
            ``True`` if the supervisor is idle, ``False`` on timeout.

        """
        return self._idle.wait(timeout)

    def status(self) -> RunStatus:
        """Return a consistent point-in-time view of the supervisor."""
        with self._lock:
            return self._status_locked()

    def subscribe(self, on_offer: Callable[[], None] | None = None) -> Subscription:
        """Attach a telemetry subscriber, primed with a full-state message."""
        with self._lock:
            return self._broadcaster.subscribe(
                initial=self._state_message_locked(), on_offer=on_offer
            )

    def state_message(self) -> Message:
        """Return the full-state message a new subscriber receives."""
        with self._lock:
            return self._state_message_locked()

    # -- Emission loop ------------------------------------------------------

    def _run_loop(
        self,
        config: RunConfiguration,
        counters: Counters,
        stop_event: threading.Event,
    ) -> None:
        reason = StopReason.STOPPED
        try:
            reason = self._emit(config, counters, stop_event)
        except Exception:
            reason = StopReason.FAULT
            self._logger.exception("Emission loop failed; forcing idle")
        finally:
            self._finish_run(counters, reason)

    def _emit(
        self,
        config: RunConfiguration,
        counters: Counters,
        stop_event: threading.Event,
    ) -> StopReason:
        """Run ticks until stopped or the duration elapses."""
        controller = RateController(config.packet_size_bytes)
        duration = float(config.duration_seconds)
        started = counters.started_at
        max_interval = self._tick * MAX_CATCHUP_TICKS
        last_tick = started
        tick_index = 0
        carry = 0.0
        shortfall_logged = False

        while not stop_event.is_set():
            tick_index += 1
            delay = started + tick_index * self._tick - self._clock()
            if delay > 0 and stop_event.wait(delay):
                break

            now = self._clock()
            elapsed = now - started
            interval = min(now - last_tick, max_interval)
            last_tick = now

            target = evaluate(
                config.pattern,
                elapsed / duration,
                config.max_bandwidth_mbps,
                config.bell_peak_ratio,
                rng=self._rng,
            )
            budget = controller.next_tick_budget(target, interval, carry)
            carry = budget.carry_over_bytes
            # Sending may not run into the next tick or past the run's end.
            deadline = min(
                started + (tick_index + 1) * self._tick,
                started + duration + self._tick / 2,
            )
            unsent = self._send_budget(config, budget.packets, counters, stop_event, deadline)
            if unsent and not shortfall_logged:
                shortfall_logged = True
                self._logger.warning(
                    "Send path cannot keep up: %d datagrams dropped from a "
                    "%d-datagram tick budget",
                    unsent,
                    budget.packets,
                )

            if self._aggregator.is_due(now):
                snapshot = self._aggregator.snapshot(counters, started, now)
                with self._lock:
                    self._latest = snapshot
                self._broadcaster.publish(metrics_message(snapshot))

            if duration - elapsed < self._tick / 2:
                with self._lock:
                    self._state = RunState.STOPPING
                return StopReason.COMPLETED

            # Fell more than a tick behind: skip the missed ticks.
            behind = int(elapsed / self._tick)
            if behind > tick_index:
                tick_index = behind

        return StopReason.STOPPED

    def _send_budget(
        self,
        config: RunConfiguration,
        packets: int,
        counters: Counters,
        stop_event: threading.Event,
        deadline: float,
    ) -> int:
        """Send one tick's datagrams in chunks, bounded by ``deadline``.

        Stops early once the deadline passes or a stop is requested.  The
        unsent remainder is dropped rather than carried, so a send path
        slower than the target rate never builds a backlog.

        Returns:
            Number of budgeted datagrams that were not sent.

        """
        remaining = packets
        while True:
            chunk = min(remaining, SEND_CHUNK_PACKETS)
            result = self._emitter.send_batch(
                chunk,
                config.packet_size_bytes,
                config.target_host,
                config.target_port,
            )
            counters.add(result.packets_sent, result.bytes_sent, result.packets_failed)
            self._track_send_health(result)
            remaining -= chunk
            if remaining <= 0 or stop_event.is_set() or self._clock() >= deadline:
                return remaining

    def _track_send_health(self, result: SendResult) -> None:
        if result.degraded and not self._send_degraded:
            self._send_degraded = True
            self._logger.warning(
                "Send path degraded: %d consecutive datagram failures",
                result.consecutive_failures,
            )
        elif self._send_degraded and not result.degraded and result.packets_sent:
            self._send_degraded = False
            self._logger.info("Send path recovered")

    def _finish_run(self, counters: Counters, reason: StopReason) -> None:
        """Tear the run down and return to ``idle``.  Always reached."""
        final = self._aggregator.snapshot(counters, counters.started_at, self._clock())
        try:
            self._emitter.close()
        except Exception:
            self._logger.exception("Error closing emitter")

        with self._lock:
            self._state = RunState.IDLE
            self._active = None
            self._counters = None
            self._latest = final
            self._thread = None
            self._broadcaster.publish(metrics_message(final))
            self._broadcaster.publish(self._state_message_locked(reason=str(reason)))
            self._idle.set()

        log = self._logger.error if reason is StopReason.FAULT else self._logger.info
        log(
            "Run ended (%s): %d packets, %d bytes in %.2fs",
            reason,
            counters.packets_sent,
            counters.bytes_sent,
            final.elapsed_seconds,
        )

    # -- Helpers (caller holds the lock) ------------------------------------

    def _abort_start_locked(self, message: str) -> None:
        self._logger.exception(message)
        try:
            self._emitter.close()
        except Exception:
            self._logger.exception("Error closing emitter")
        self._state = RunState.IDLE
        self._active = None
        self._counters = None
        self._idle.set()
        self._broadcaster.publish(self._state_message_locked(reason=str(StopReason.FAULT)))

    def _status_locked(self) -> RunStatus:
        return RunStatus(
            state=self._state,
            config=self._active or self._config,
            metrics=self._latest,
            send_degraded=self._send_degraded,
            started_at=self._started_at_wall,
        )

    def _state_message_locked(self, reason: str | None = None) -> Message:
        status = self._status_locked()
        return state_message(
            config=status.config.to_dict(),
            is_running=status.is_running,
            metrics=status.metrics,
            reason=reason,
            started_at=status.started_at,
        )
