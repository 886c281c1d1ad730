"""Datagram emission abstractions and the UDP implementation.

Provides a strategy interface for emitters and a concrete non-blocking
UDP sender used by the run supervisor.
"""

from .emitter import DatagramEmitter, SendResult
from .udp_emitter import UdpEmitter

__all__ = ["DatagramEmitter", "SendResult", "UdpEmitter"]
