"""
Throughput estimation for adaptive probe timeouts.

A probe that ships a 4 MB header through a slow tunnel legitimately takes
seconds; the same delay on a 2 KB probe means the intermediary stalled.
``BandwidthEstimator`` keeps an exponentially-weighted moving average of the
observed bytes/second and turns it into a per-probe timeout.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict

from .constants import (
    DEFAULT_BANDWIDTH_BPS,
    EMA_ALPHA,
    MAX_PROBE_TIMEOUT_MS,
    MIN_PROBE_TIMEOUT_MS,
    NOISE_FLOOR_MS,
    TIMEOUT_FACTOR,
)


@dataclass
class BandwidthEstimator:
    """EMA throughput estimate (bytes/second), never zero or negative."""

    initial_bps: float = DEFAULT_BANDWIDTH_BPS
    alpha: float = EMA_ALPHA
    noise_floor_ms: float = NOISE_FLOOR_MS
    estimate_bps: float = field(init=False)
    samples: int = field(init=False, default=0)

    def __post_init__(self) -> None:
        if self.initial_bps <= 0:
            raise ValueError("initial_bps must be positive")
        if not 0.0 < self.alpha <= 1.0:
            raise ValueError("alpha must be in (0, 1]")
        self.estimate_bps = float(self.initial_bps)

    def record(self, size_bytes: int, elapsed_ms: float) -> bool:
        """
        Fold one timed round trip into the estimate.

        Samples faster than the noise floor are dropped: at a few
        milliseconds the timer jitter dominates the measurement.  Returns
        True when the sample was used.
        """
        if size_bytes <= 0 or elapsed_ms < self.noise_floor_ms:
            return False

        sample = size_bytes / (elapsed_ms / 1000)
        self.estimate_bps = self.alpha * sample + (1 - self.alpha) * self.estimate_bps
        self.samples += 1
        return True

    def timeout_ms(self, size_bytes: int) -> float:
        """Time budget for a probe of *size_bytes* before it counts as stalled."""
        budget = TIMEOUT_FACTOR * size_bytes / self.estimate_bps * 1000
        return max(MIN_PROBE_TIMEOUT_MS, min(budget, MAX_PROBE_TIMEOUT_MS))


class BandwidthRegistry:
    """One estimator per probe kind, kept for the lifetime of the process."""

    def __init__(self, initial_bps: float = DEFAULT_BANDWIDTH_BPS) -> None:
        self._initial_bps = initial_bps
        self._estimators: Dict[str, BandwidthEstimator] = {}

    def get(self, kind: str) -> BandwidthEstimator:
        est = self._estimators.get(kind)
        if est is None:
            est = BandwidthEstimator(initial_bps=self._initial_bps)
            self._estimators[kind] = est
        return est

    def snapshot(self) -> Dict[str, float]:
        return {kind: est.estimate_bps for kind, est in self._estimators.items()}
