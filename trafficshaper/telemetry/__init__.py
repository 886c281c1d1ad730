"""Run counters, metric snapshots, and subscriber fan-out."""

from .aggregator import Counters, MetricsSnapshot, TelemetryAggregator
from .broadcaster import Subscription, TelemetryBroadcaster

__all__ = [
    "Counters",
    "MetricsSnapshot",
    "Subscription",
    "TelemetryAggregator",
    "TelemetryBroadcaster",
]
