"""Custom exception hierarchy for the traffic shaper.

All shaper exceptions inherit from ``TrafficShaperError`` to enable
granular catch clauses while still allowing a single top-level handler.

Exception tree::

    TrafficShaperError
    ├── ConfigurationError
    ├── ConflictError
    ├── TransientSendError
    └── InternalSchedulingFault
"""

from __future__ import annotations


class TrafficShaperError(Exception):
    """Base exception for all traffic shaper errors.

    The string form mirrors the JSON error body the control API returns,
    e.g. ``targetPort: Value out of range [1, 65535] (value=70000)``.

    Attributes:
        message: Human-readable error description.
        field: Wire name of the offending field, if any.
        details: Additional contextual data.

    """

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, object] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.field = field
        self.details = dict(details or {})

    def __str__(self) -> str:
        text = f"{self.field}: {self.message}" if self.field else self.message
        if self.details:
            text += " (" + ", ".join(f"{k}={v}" for k, v in self.details.items()) + ")"
        return text

    def to_dict(self) -> dict[str, object]:
        """Return the JSON error body: ``{"error", "field"[, "details"]}``."""
        body: dict[str, object] = {"error": self.message, "field": self.field}
        if self.details:
            body["details"] = self.details
        return body


class ConfigurationError(TrafficShaperError):
    """Raised when a run configuration field is malformed or out of range.

    Rejected synchronously; the supervisor state is left unchanged.

    Examples:
        - ``targetPort`` of 70000
        - Unknown pattern name
        - Target host that cannot be resolved at run start

    """


class ConflictError(TrafficShaperError):
    """Raised when a request is illegal in the current run state.

    Examples:
        - ``start`` while a run is already active
        - Configuration update while running

    """


class TransientSendError(TrafficShaperError):
    """Raised for a single datagram that could not be sent.

    Absorbed by the emitter and counted; never propagated to control calls.
    """


class InternalSchedulingFault(TrafficShaperError):
    """Raised when the emission loop cannot be scheduled or dies unexpectedly.

    The only fatal class: the supervisor is forced back to ``idle`` and a
    run-terminated state message is published.
    """
