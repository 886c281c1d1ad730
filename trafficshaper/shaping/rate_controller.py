"""Token-bucket conversion of a target bandwidth into per-tick send budgets.

Datagrams leave in whole packets, so each tick can only spend a multiple of
the packet size.  The unspent remainder is carried into the next tick, which
keeps the long-run average on target instead of losing the truncated bytes
every tick.

Usage::

    controller = RateController(packet_size_bytes=1000)
    budget = controller.next_tick_budget(8.0, TICK_INTERVAL_SECONDS, 0.0)
    emitter.send_batch(budget.packets, 1000, host, port)
    carry = budget.carry_over_bytes
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

logger = logging.getLogger(__name__)

TICK_INTERVAL_SECONDS = 0.1
MAX_CATCHUP_TICKS = 2
BITS_PER_BYTE = 8
BITS_PER_MEGABIT = 1_000_000


@dataclass(frozen=True)
class TickBudget:
    """Send allowance for one tick.

    Attributes:
        bytes_to_send: Whole-packet byte count to emit this tick.
        carry_over_bytes: Unspent allowance rolled into the next tick.
        packet_size_bytes: Size the budget was quantized to.

    """

    bytes_to_send: int
    carry_over_bytes: float
    packet_size_bytes: int

    @property
    def packets(self) -> int:
        """Number of datagrams this budget pays for."""
        return self.bytes_to_send // self.packet_size_bytes


def ideal_bytes(target_mbps: float, interval_seconds: float) -> float:
    """Return the exact byte count ``target_mbps`` implies over an interval."""
    if target_mbps <= 0 or interval_seconds <= 0:
        return 0.0
    return target_mbps * BITS_PER_MEGABIT / BITS_PER_BYTE * interval_seconds


class RateController:
    """Quantize a bandwidth envelope into per-tick packet budgets.

    The bucket holds at most one tick's ideal budget, or one packet when a
    tick's budget is smaller than a packet, so a late tick can never
    release more than roughly one extra tick of traffic.

    Args:
        packet_size_bytes: Datagram size the budget is quantized to.

    """

    def __init__(self, packet_size_bytes: int) -> None:
        """Initialize the controller for a fixed packet size."""
        if packet_size_bytes <= 0:
            raise ValueError("packet_size_bytes must be positive")
        self._packet_size = packet_size_bytes
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @property
    def packet_size_bytes(self) -> int:
        """Return the quantization unit."""
        return self._packet_size

    def bucket_size(self, target_mbps: float, tick_interval_seconds: float) -> float:
        """Return the carry-over ceiling for the given rate and tick."""
        return max(ideal_bytes(target_mbps, tick_interval_seconds), float(self._packet_size))

    def next_tick_budget(
        self,
        target_mbps: float,
        tick_interval_seconds: float,
        carry_over_bytes: float,
    ) -> TickBudget:
        """Compute the allowance for one tick.

        Args:
            target_mbps: Envelope value for this tick.
            tick_interval_seconds: Time the tick accounts for.
            carry_over_bytes: Allowance left over from the previous tick.

        Returns:
            A ``TickBudget`` whose ``bytes_to_send`` never exceeds
            ``ideal + carry`` and whose carry-over is never negative.

        """
        bucket = self.bucket_size(target_mbps, tick_interval_seconds)
        carry = min(max(carry_over_bytes, 0.0), bucket)
        available = ideal_bytes(target_mbps, tick_interval_seconds) + carry

        packets = math.floor(available / self._packet_size)
        to_send = packets * self._packet_size
        remainder = min(max(available - to_send, 0.0), bucket)

        return TickBudget(
            bytes_to_send=to_send,
            carry_over_bytes=remainder,
            packet_size_bytes=self._packet_size,
        )
