"""Run counters and periodic metric snapshots.

``Counters`` are written only by the emission loop.  The
``TelemetryAggregator`` turns them into ``MetricsSnapshot`` values whose
bandwidth figure covers only the window since the previous snapshot, so the
reported curve follows the envelope instead of a cumulative average.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)

SNAPSHOT_INTERVAL_SECONDS = 1.0


@dataclass
class Counters:
    """Cumulative, run-scoped emission counters.

    Attributes:
        started_at: Monotonic clock reading at run start.
        started_at_wall: Wall-clock start time for display.
        bytes_sent: Payload bytes sent so far.
        packets_sent: Datagrams sent so far.
        packets_failed: Datagrams that could not be sent.

    """

    started_at: float
    started_at_wall: datetime = field(default_factory=lambda: datetime.now(UTC))
    bytes_sent: int = 0
    packets_sent: int = 0
    packets_failed: int = 0

    def add(self, packets: int, sent_bytes: int, failed: int = 0) -> None:
        """Accumulate the outcome of one batch."""
        self.packets_sent += max(packets, 0)
        self.bytes_sent += max(sent_bytes, 0)
        self.packets_failed += max(failed, 0)


@dataclass(frozen=True)
class MetricsSnapshot:
    """One periodic measurement of a run.

    Attributes:
        current_bandwidth_mbps: Rate over the last snapshot window.
        total_bytes_sent: Cumulative payload bytes.
        elapsed_seconds: Time since the run started.
        packets_sent: Cumulative datagrams sent.
        packets_failed: Cumulative datagrams dropped locally.

    """

    current_bandwidth_mbps: float = 0.0
    total_bytes_sent: int = 0
    elapsed_seconds: float = 0.0
    packets_sent: int = 0
    packets_failed: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Return the wire representation used by the web client."""
        return {
            "currentBandwidth": self.current_bandwidth_mbps,
            "totalSent": self.total_bytes_sent,
            "elapsedTime": self.elapsed_seconds,
            "packetsSent": self.packets_sent,
            "packetsFailed": self.packets_failed,
        }


class TelemetryAggregator:
    """Sample counters into windowed snapshots at a throttled cadence.

    Args:
        interval_seconds: Minimum spacing between periodic snapshots.

    """

    def __init__(self, interval_seconds: float = SNAPSHOT_INTERVAL_SECONDS) -> None:
        """Initialize the aggregator with its snapshot cadence."""
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._interval = interval_seconds
        self._last_at: float | None = None
        self._last_bytes = 0
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @property
    def interval_seconds(self) -> float:
        """Return the snapshot cadence."""
        return self._interval

    def reset(self, now: float) -> None:
        """Start a new window series at run start."""
        self._last_at = now
        self._last_bytes = 0

    def is_due(self, now: float) -> bool:
        """Return ``True`` when a periodic snapshot should be taken."""
        return self._last_at is None or now - self._last_at >= self._interval

    def snapshot(self, counters: Counters, run_started_at: float, now: float) -> MetricsSnapshot:
        """Measure the window since the previous snapshot and advance it.

        Args:
            counters: Current run counters (read only).
            run_started_at: Monotonic run start.
            now: Monotonic time of this snapshot.

        Returns:
            A new ``MetricsSnapshot``.

        """
        window_start = self._last_at if self._last_at is not None else run_started_at
        window = now - window_start
        delta_bytes = counters.bytes_sent - self._last_bytes

        bandwidth = 0.0
        if window > 0 and delta_bytes > 0:
            bandwidth = delta_bytes * 8 / 1_000_000 / window

        self._last_at = now
        self._last_bytes = counters.bytes_sent
        return MetricsSnapshot(
            current_bandwidth_mbps=bandwidth,
            total_bytes_sent=counters.bytes_sent,
            elapsed_seconds=max(now - run_started_at, 0.0),
            packets_sent=counters.packets_sent,
            packets_failed=counters.packets_failed,
        )
