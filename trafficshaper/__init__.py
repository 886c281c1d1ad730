"""Traffic Shaper.

Rate-controlled UDP load generator that shapes outgoing bandwidth along a
selectable envelope (bell, constant, random) and streams live telemetry to
connected observers.
"""

__version__ = "1.0.0"
