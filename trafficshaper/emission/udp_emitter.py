"""Non-blocking UDP implementation of ``DatagramEmitter``.

The destination is resolved once when the run opens the emitter; every send
afterwards is a plain ``sendto`` on a non-blocking socket.  A full local
buffer (``BlockingIOError``) or an ICMP-induced error is a lost datagram,
not a failed run.

Usage::

    with UdpEmitter() as emitter:
        emitter.open("127.0.0.1", 9000)
        result = emitter.send_batch(10, 1400, "127.0.0.1", 9000)
"""

from __future__ import annotations

import socket
from typing import Any

from ..core.exceptions import ConfigurationError, TransientSendError
from .emitter import DEGRADED_FAILURE_THRESHOLD, DatagramEmitter, SendResult

SEND_BUFFER_BYTES = 8 * 1024 * 1024


def build_payload(size: int) -> bytes:
    """Return ``size`` bytes of filler with a repeating 0-255 pattern."""
    return bytes(i % 256 for i in range(size))


class UdpEmitter(DatagramEmitter):
    """UDP datagram sender for a single destination.

    Args:
        send_buffer_bytes: Requested ``SO_SNDBUF`` size.
        degraded_threshold: Failure streak that flags a degraded run.

    """

    def __init__(
        self,
        send_buffer_bytes: int = SEND_BUFFER_BYTES,
        degraded_threshold: int = DEGRADED_FAILURE_THRESHOLD,
    ) -> None:
        """Initialize the emitter without opening a socket."""
        super().__init__(degraded_threshold=degraded_threshold)
        self._send_buffer_bytes = send_buffer_bytes
        self._sock: socket.socket | None = None
        self._address: Any = None
        self._destination: tuple[str, int] | None = None
        self._payloads: dict[int, bytes] = {}

    @property
    def is_open(self) -> bool:
        """Return ``True`` while a socket is held."""
        return self._sock is not None

    def open(self, target_host: str, target_port: int) -> None:
        """Resolve the destination and create a non-blocking socket.

        Raises:
            ConfigurationError: If ``target_host`` does not resolve.

        """
        self.close()
        try:
            infos = socket.getaddrinfo(
                target_host, target_port, type=socket.SOCK_DGRAM, proto=socket.IPPROTO_UDP
            )
        except socket.gaierror as exc:
            raise ConfigurationError(
                f"Cannot resolve target host '{target_host}'",
                field="targetIP",
                details={"error": str(exc)},
            ) from exc

        family, sock_type, proto, _, address = infos[0]
        sock = socket.socket(family, sock_type, proto)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_SNDBUF, self._send_buffer_bytes)
        except OSError:
            self._logger.debug("SO_SNDBUF not adjustable", exc_info=True)
        sock.setblocking(False)

        self._sock = sock
        self._address = address
        self._destination = (target_host, target_port)
        self.reset()
        self._logger.info("Emitter opened towards %s:%d (%s)", target_host, target_port, address[0])

    def close(self) -> None:
        """Close the socket.  Idempotent."""
        if self._sock is not None:
            self._sock.close()
            self._sock = None
            self._address = None
            self._destination = None
            self._logger.debug("Emitter closed")

    def send_batch(
        self,
        count: int,
        packet_size_bytes: int,
        target_host: str,
        target_port: int,
    ) -> SendResult:
        """Send ``count`` datagrams, absorbing per-datagram failures."""
        if count <= 0:
            return self._result(0, 0, 0)
        if self._destination != (target_host, target_port):
            self.open(target_host, target_port)

        payload = self._payload(packet_size_bytes)
        sent = 0
        sent_bytes = 0
        failed = 0
        for _ in range(count):
            try:
                sent_bytes += self._send_one(payload)
                sent += 1
                self._note_success()
            except TransientSendError as exc:
                failed += 1
                self._note_failure()
                if failed == 1:
                    self._logger.debug("Datagram dropped: %s", exc)
        return self._result(sent, sent_bytes, failed)

    def _send_one(self, payload: bytes) -> int:
        assert self._sock is not None
        try:
            return self._sock.sendto(payload, self._address)
        except OSError as exc:
            raise TransientSendError(
                "sendto failed",
                details={"errno": exc.errno, "error": exc.strerror or str(exc)},
            ) from exc

    def _payload(self, size: int) -> bytes:
        payload = self._payloads.get(size)
        if payload is None:
            payload = build_payload(size)
            self._payloads[size] = payload
        return payload
