"""Bandwidth envelopes over the course of a run.

``evaluate`` maps the elapsed fraction of a run to the target instantaneous
bandwidth.  It is pure except for the random envelope, which draws a fresh
uniform sample on every call with no memory of earlier draws.
"""

from __future__ import annotations

import math
import random

from ..core.config import Pattern

BELL_SIGMA = 0.15


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def evaluate(
    pattern: Pattern,
    elapsed_fraction: float,
    max_bandwidth_mbps: float,
    bell_peak_ratio: float = 0.5,
    rng: random.Random | None = None,
) -> float:
    """Return the target bandwidth in Mbps at a point of the run.

    Args:
        pattern: Envelope shape.
        elapsed_fraction: Fraction of the run elapsed, clamped to ``[0, 1]``.
        max_bandwidth_mbps: Envelope ceiling.
        bell_peak_ratio: Peak position for the bell envelope.
        rng: Random source for the random envelope (module ``random`` if
            omitted).

    Returns:
        Target bandwidth in ``[0, max_bandwidth_mbps]``.

    """
    if max_bandwidth_mbps <= 0:
        return 0.0
    fraction = _clamp(elapsed_fraction, 0.0, 1.0)

    if pattern is Pattern.CONSTANT:
        return float(max_bandwidth_mbps)

    if pattern is Pattern.BELL:
        offset = fraction - bell_peak_ratio
        height = math.exp(-(offset * offset) / (2 * BELL_SIGMA * BELL_SIGMA))
        return _clamp(max_bandwidth_mbps * height, 0.0, max_bandwidth_mbps)

    if pattern is Pattern.RANDOM:
        source = rng if rng is not None else random
        return source.uniform(0.0, max_bandwidth_mbps)

    raise ValueError(f"Unsupported pattern: {pattern!r}")
