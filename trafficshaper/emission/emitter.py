"""Abstract datagram emitter interface.

Defines the strategy contract for emission backends.  The supervisor only
talks to this interface, so tests and alternative transports can be swapped
in without touching the timing loop.

Usage::

    emitter: DatagramEmitter = UdpEmitter()
    emitter.open("10.0.0.2", 9000)
    result = emitter.send_batch(100, 1400, "10.0.0.2", 9000)
    emitter.close()
"""

from __future__ import annotations

import abc
import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DEGRADED_FAILURE_THRESHOLD = 50


@dataclass(frozen=True)
class SendResult:
    """Outcome of one batch of sends.

    Attributes:
        packets_sent: Datagrams handed to the network stack.
        bytes_sent: Payload bytes handed to the network stack.
        packets_failed: Datagrams that could not be sent.
        consecutive_failures: Failure streak at the end of the batch,
            carried across batches.
        degraded: ``True`` while the failure streak is at or above
            ``DEGRADED_FAILURE_THRESHOLD``.

    """

    packets_sent: int = 0
    bytes_sent: int = 0
    packets_failed: int = 0
    consecutive_failures: int = 0
    degraded: bool = False


class DatagramEmitter(abc.ABC):
    """Abstract base class for datagram emission backends.

    Implementations must never raise for an individual failed datagram;
    such failures are reported through ``SendResult``.
    """

    def __init__(self, degraded_threshold: int = DEGRADED_FAILURE_THRESHOLD) -> None:
        """Initialize the emitter base class."""
        self._degraded_threshold = degraded_threshold
        self._consecutive_failures = 0
        self._logger = logging.getLogger(
            f"{self.__class__.__module__}.{self.__class__.__name__}"
        )

    @abc.abstractmethod
    def open(self, target_host: str, target_port: int) -> None:
        """Prepare to send to a destination.

        Raises:
            ConfigurationError: If the destination cannot be resolved.

        """

    @abc.abstractmethod
    def close(self) -> None:
        """Release transport resources.  Must be idempotent."""

    @abc.abstractmethod
    def send_batch(
        self,
        count: int,
        packet_size_bytes: int,
        target_host: str,
        target_port: int,
    ) -> SendResult:
        """Send ``count`` datagrams of ``packet_size_bytes`` each.

        Args:
            count: Number of datagrams to attempt.
            packet_size_bytes: Length of each payload.
            target_host: Destination host.
            target_port: Destination port.

        Returns:
            Counts of what was actually sent and what failed.

        """

    @property
    def consecutive_failures(self) -> int:
        """Return the current failure streak."""
        return self._consecutive_failures

    def reset(self) -> None:
        """Clear the failure streak at run start."""
        self._consecutive_failures = 0

    def _note_success(self) -> None:
        self._consecutive_failures = 0

    def _note_failure(self) -> None:
        self._consecutive_failures += 1

    def _result(self, sent: int, sent_bytes: int, failed: int) -> SendResult:
        """Build a ``SendResult`` carrying the current failure streak."""
        return SendResult(
            packets_sent=sent,
            bytes_sent=sent_bytes,
            packets_failed=failed,
            consecutive_failures=self._consecutive_failures,
            degraded=self._consecutive_failures >= self._degraded_threshold,
        )

    def __enter__(self) -> DatagramEmitter:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object | None,
    ) -> None:
        """Close upon exiting a ``with`` block."""
        try:
            self.close()
        except Exception:
            self._logger.exception("Error during emitter close")
