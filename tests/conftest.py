"""Shared pytest fixtures for the traffic shaper test suite.

Provides configurations, an in-memory emitter, and supervisors tuned with a
short tick so run-level behaviour can be observed in well under a second.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterator
from typing import Any

import pytest

from trafficshaper.control.supervisor import RunSupervisor
from trafficshaper.core.config import Pattern, RunConfiguration
from trafficshaper.emission.emitter import DatagramEmitter, SendResult

FAST_TICK = 0.02
FAST_SNAPSHOT = 0.2

# ---------------------------------------------------------------------------
# In-memory emitter
# ---------------------------------------------------------------------------


class RecordingEmitter(DatagramEmitter):
    """Emitter that counts requested datagrams instead of sending them.

    Args:
        fail_all: Fail every datagram when ``True``.
        degraded_threshold: Failure streak that flags a degraded run.
        batch_delay: Seconds each non-empty batch takes, to model a slow
            send path.

    """

    def __init__(
        self,
        fail_all: bool = False,
        degraded_threshold: int = 5,
        batch_delay: float = 0.0,
    ) -> None:
        super().__init__(degraded_threshold=degraded_threshold)
        self.fail_all = fail_all
        self.batch_delay = batch_delay
        self.opened: list[tuple[str, int]] = []
        self.batches: list[int] = []
        self.close_count = 0
        self._lock = threading.Lock()

    def open(self, target_host: str, target_port: int) -> None:
        self.opened.append((target_host, target_port))
        self.reset()

    def close(self) -> None:
        self.close_count += 1

    def send_batch(
        self,
        count: int,
        packet_size_bytes: int,
        target_host: str,
        target_port: int,
    ) -> SendResult:
        with self._lock:
            self.batches.append(count)
        if count and self.batch_delay:
            time.sleep(self.batch_delay)
        if self.fail_all:
            for _ in range(count):
                self._note_failure()
            return self._result(0, 0, count)
        if count:
            self._note_success()
        return self._result(count, count * packet_size_bytes, 0)

    @property
    def total_packets(self) -> int:
        with self._lock:
            return sum(self.batches)


# ---------------------------------------------------------------------------
# Configuration fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def default_config() -> RunConfiguration:
    """The stock configuration."""
    return RunConfiguration()


@pytest.fixture
def constant_config() -> RunConfiguration:
    """Constant 8 Mbps, 1000-byte packets, two seconds."""
    return RunConfiguration(
        pattern=Pattern.CONSTANT,
        duration_seconds=2,
        max_bandwidth_mbps=8.0,
        target_host="127.0.0.1",
        target_port=9000,
        packet_size_bytes=1000,
    )


@pytest.fixture
def long_config() -> RunConfiguration:
    """A run long enough never to expire during a test."""
    return RunConfiguration(
        pattern=Pattern.CONSTANT,
        duration_seconds=600,
        max_bandwidth_mbps=1.0,
        target_host="127.0.0.1",
        target_port=9000,
        packet_size_bytes=500,
    )


# ---------------------------------------------------------------------------
# Supervisor fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def emitter() -> RecordingEmitter:
    """Fresh in-memory emitter."""
    return RecordingEmitter()


@pytest.fixture
def make_supervisor() -> Iterator[Callable[..., RunSupervisor]]:
    """Factory for fast-tick supervisors; every run is stopped on teardown."""
    created: list[RunSupervisor] = []

    def factory(emitter: DatagramEmitter, **kwargs: Any) -> RunSupervisor:
        kwargs.setdefault("tick_interval", FAST_TICK)
        kwargs.setdefault("snapshot_interval", FAST_SNAPSHOT)
        sup = RunSupervisor(emitter, **kwargs)
        created.append(sup)
        return sup

    yield factory
    for sup in created:
        sup.stop(timeout=5)


@pytest.fixture
def supervisor(
    make_supervisor: Callable[..., RunSupervisor], emitter: RecordingEmitter
) -> RunSupervisor:
    """Supervisor over the in-memory emitter with a fast tick."""
    return make_supervisor(emitter)


@pytest.fixture
def failing_emitter() -> RecordingEmitter:
    """In-memory emitter whose every datagram fails."""
    return RecordingEmitter(fail_all=True)
