"""Run configuration model and validation.

A ``RunConfiguration`` is the immutable parameter set for one run.  It is
validated before it is stored as the supervisor's last configuration and
again before a run starts, so an out-of-range value never reaches the
emission loop.

The wire representation keeps the field names used by the existing web
client (``maxBandwidth``, ``targetIP``, ``packetSize``...).

Usage::

    config = RunConfiguration.from_dict({"pattern": "constant", "duration": 30})
    config.validate()
    payload = config.to_dict()
"""

from __future__ import annotations

import ipaddress
import logging
import math
import re
from dataclasses import asdict, dataclass, replace
from enum import StrEnum
from typing import Any

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

MAX_DURATION_SECONDS = 3600
MAX_BANDWIDTH_MBPS = 10_000.0
MIN_PACKET_SIZE_BYTES = 64
MAX_PACKET_SIZE_BYTES = 9000
MIN_PORT = 1
MAX_PORT = 65535

_HOSTNAME_LABEL = re.compile(r"^(?!-)[A-Za-z0-9-]{1,63}(?<!-)$")

WIRE_FIELDS: dict[str, str] = {
    "pattern": "pattern",
    "duration_seconds": "duration",
    "max_bandwidth_mbps": "maxBandwidth",
    "target_host": "targetIP",
    "target_port": "targetPort",
    "bell_peak_ratio": "bellPeakRatio",
    "packet_size_bytes": "packetSize",
}


class Pattern(StrEnum):
    """Bandwidth envelope shapes."""

    BELL = "bell"
    CONSTANT = "constant"
    RANDOM = "random"


@dataclass(frozen=True)
class RunConfiguration:
    """Immutable parameters for a single run.

    Attributes:
        pattern: Envelope shape applied over the run.
        duration_seconds: Run length in whole seconds.
        max_bandwidth_mbps: Envelope ceiling in megabits per second.
        target_host: IP literal or host name receiving the datagrams.
        target_port: UDP destination port.
        bell_peak_ratio: Position of the bell peak as a fraction of the run.
        packet_size_bytes: Payload length of every datagram.

    """

    pattern: Pattern = Pattern.BELL
    duration_seconds: int = 60
    max_bandwidth_mbps: float = 100.0
    target_host: str = "127.0.0.1"
    target_port: int = 8080
    bell_peak_ratio: float = 0.5
    packet_size_bytes: int = 1400

    # -- Validation ---------------------------------------------------------

    def validate(self) -> RunConfiguration:
        """Check every field against its allowed range.

        Returns:
            ``self`` so calls can be chained.

        Raises:
            ConfigurationError: Naming the first offending wire field.

        """
        if not isinstance(self.pattern, Pattern):
            raise ConfigurationError(
                f"Unknown pattern '{self.pattern}'",
                field="pattern",
                details={"allowed": [p.value for p in Pattern]},
            )
        _check_int(self.duration_seconds, "duration", 1, MAX_DURATION_SECONDS)
        _check_number(self.max_bandwidth_mbps, "maxBandwidth", 0.0, MAX_BANDWIDTH_MBPS)
        if self.max_bandwidth_mbps <= 0:
            raise ConfigurationError(
                "Bandwidth must be positive",
                field="maxBandwidth",
                details={"value": self.max_bandwidth_mbps},
            )
        _check_host(self.target_host)
        _check_int(self.target_port, "targetPort", MIN_PORT, MAX_PORT)
        _check_number(self.bell_peak_ratio, "bellPeakRatio", 0.0, 1.0)
        _check_int(
            self.packet_size_bytes,
            "packetSize",
            MIN_PACKET_SIZE_BYTES,
            MAX_PACKET_SIZE_BYTES,
        )
        return self

    # -- Serialization ------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        """Return the wire representation using client field names."""
        data = asdict(self)
        data["pattern"] = str(self.pattern)
        return {WIRE_FIELDS[key]: value for key, value in data.items()}

    @classmethod
    def from_dict(
        cls,
        payload: dict[str, Any],
        base: RunConfiguration | None = None,
    ) -> RunConfiguration:
        """Build a configuration from a wire payload.

        Keys missing from ``payload`` keep their value from ``base`` (or the
        defaults).  Unknown keys are ignored.  The result is validated.

        Args:
            payload: Mapping keyed by wire field names.
            base: Configuration supplying values for absent keys.

        Raises:
            ConfigurationError: If the payload is not a mapping or a field
                fails validation.

        """
        if not isinstance(payload, dict):
            raise ConfigurationError(
                "Configuration payload must be a JSON object",
                details={"type": type(payload).__name__},
            )
        changes: dict[str, Any] = {}
        for attr, wire in WIRE_FIELDS.items():
            if wire in payload:
                changes[attr] = payload[wire]
        if "pattern" in changes:
            changes["pattern"] = _parse_pattern(changes["pattern"])
        config = replace(base or cls(), **changes)
        return config.validate()


# ---------------------------------------------------------------------------
# Field checks
# ---------------------------------------------------------------------------


def _parse_pattern(value: Any) -> Pattern:
    """Parse a pattern name case-insensitively."""
    if isinstance(value, Pattern):
        return value
    try:
        return Pattern(str(value).strip().lower())
    except ValueError:
        raise ConfigurationError(
            f"Unknown pattern '{value}'",
            field="pattern",
            details={"allowed": [p.value for p in Pattern]},
        ) from None


def _check_int(value: Any, field: str, low: int, high: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationError(
            "Expected an integer",
            field=field,
            details={"value": value},
        )
    if not low <= value <= high:
        raise ConfigurationError(
            f"Value out of range [{low}, {high}]",
            field=field,
            details={"value": value},
        )


def _check_number(value: Any, field: str, low: float, high: float) -> None:
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise ConfigurationError(
            "Expected a number",
            field=field,
            details={"value": value},
        )
    if not math.isfinite(value) or not low <= value <= high:
        raise ConfigurationError(
            f"Value out of range [{low}, {high}]",
            field=field,
            details={"value": value},
        )


def _check_host(value: Any) -> None:
    """Accept IP literals and syntactically valid DNS names."""
    if not isinstance(value, str) or not value.strip():
        raise ConfigurationError("Target host must be a non-empty string", field="targetIP")
    try:
        ipaddress.ip_address(value)
        return
    except ValueError:
        pass
    name = value.rstrip(".")
    if len(name) > 253 or not all(_HOSTNAME_LABEL.match(label) for label in name.split(".")):
        raise ConfigurationError(
            "Target host is neither an IP address nor a valid host name",
            field="targetIP",
            details={"value": value},
        )
