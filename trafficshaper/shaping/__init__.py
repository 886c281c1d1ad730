"""Bandwidth envelopes and the per-tick rate controller."""

from .pattern import BELL_SIGMA, evaluate
from .rate_controller import TICK_INTERVAL_SECONDS, RateController, TickBudget

__all__ = ["BELL_SIGMA", "TICK_INTERVAL_SECONDS", "RateController", "TickBudget", "evaluate"]
