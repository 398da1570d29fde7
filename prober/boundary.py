"""
Boundary probing engine.

Finds the largest size of one request/response dimension an intermediary
lets through.  The caller supplies an async predicate ``test(size)`` that
performs the actual network I/O; the engine only decides *which* sizes to
try:

    1. Growth phase -- start at ``SEED_SIZE`` and double until the predicate
       fails or the ceiling passes.
    2. Refinement -- bisect between the last success and the first failure
       until the interval is one byte wide (or ``MAX_ITERATIONS`` elapse).

Every call is timed against an adaptive timeout derived from a shared
``BandwidthEstimator``.  A slow probe produces a stall warning but is never
aborted: the predicate always runs to its own terminal outcome.
"""
from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

from .bandwidth import BandwidthEstimator
from .classify import REQUEST, Classification, StatusSignal, classify_rejection
from .constants import DEFAULT_CEILING, GROWTH_PROGRESS, MAX_ITERATIONS, SEED_SIZE
from .stats import format_bytes

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data models
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ProbeOutcome:
    """What one predicate call observed."""

    ok: bool
    status: StatusSignal = None


TestFunction = Callable[[int], Awaitable[ProbeOutcome]]


@dataclass
class ProbeSession:
    """Mutable state of one discovery run.  Owned by ``BoundaryProbe.run``."""

    lower_bound: int = 0
    upper_bound: int = 0
    confirmed_working_size: int = 0
    rejection_status: StatusSignal = None
    rejected: bool = False
    iterations: int = 0
    invocations: int = 0
    stall_warnings: int = 0

    def record_success(self, size: int) -> None:
        self.confirmed_working_size = max(self.confirmed_working_size, size)

    def record_failure(self, status: StatusSignal) -> bool:
        """Keep the first failure signal only.  Returns True if it was stored."""
        if self.rejected:
            return False
        self.rejected = True
        self.rejection_status = status
        return True


@dataclass
class ProbeResult:
    """Outcome of a full boundary search."""

    label: str
    max_working_size: int = 0
    total_probes: int = 1
    invocations: int = 0
    rejection_status: StatusSignal = None
    limit_found: bool = False
    ceiling: int = 0
    direction: str = REQUEST
    stall_warnings: int = 0
    duration_ms: float = 0.0
    classification: Optional[Classification] = None
    notes: List[str] = field(default_factory=list)

    @property
    def exceeds_range(self) -> bool:
        """True when no failure was seen up to the ceiling."""
        return not self.limit_found

    def to_dict(self) -> dict:
        result: dict = {
            "label": self.label,
            "direction": self.direction,
            "max_working_size": self.max_working_size,
            "limit_found": self.limit_found,
            "ceiling": self.ceiling,
            "rejection_status": self.rejection_status,
            "total_probes": self.total_probes,
            "invocations": self.invocations,
            "stall_warnings": self.stall_warnings,
            "duration_ms": round(self.duration_ms, 2),
            "notes": list(self.notes),
        }
        if self.classification:
            result["classification"] = self.classification.to_dict()
        return result


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class BoundaryProbe:
    """
    Drive one size-discovery session against *test*.

    Probes run strictly one after another, so the estimator is only ever
    touched between calls.  ``run`` never raises for predicate failures;
    cancelling the awaiting task is the only way to stop it early.
    """

    def __init__(
        self,
        test: TestFunction,
        *,
        label: str,
        ceiling: int = DEFAULT_CEILING,
        estimator: Optional[BandwidthEstimator] = None,
        direction: str = REQUEST,
        seed: int = SEED_SIZE,
        max_iterations: int = MAX_ITERATIONS,
    ) -> None:
        if ceiling < 1:
            raise ValueError("ceiling must be at least 1 byte")
        if seed < 1:
            raise ValueError("seed must be at least 1 byte")
        self.test = test
        self.label = label
        self.ceiling = int(ceiling)
        self.estimator = estimator or BandwidthEstimator()
        self.direction = direction
        self.seed = seed
        self.max_iterations = max_iterations
        self.on_progress: Optional[Callable[[float, str], None]] = None
        self.on_stall: Optional[Callable[[int, float], None]] = None

    async def run(self) -> ProbeResult:
        session = ProbeSession(upper_bound=self.ceiling)
        start = time.perf_counter()

        # -- Growth phase ---------------------------------------------------
        candidate = min(self.seed, self.ceiling)
        self._progress(0.0, "Finding upper bound...")

        while True:
            outcome = await self._probe(session, candidate)
            if not outcome.ok:
                session.record_failure(outcome.status)
                session.upper_bound = candidate
                break
            session.record_success(candidate)
            if candidate >= self.ceiling:
                break
            candidate = min(candidate * 2, self.ceiling)
            self._progress(GROWTH_PROGRESS, f"Growing: {format_bytes(candidate)}...")

        # -- Refinement -----------------------------------------------------
        if session.rejected:
            session.lower_bound = session.confirmed_working_size

            while (
                session.upper_bound - session.lower_bound > 1
                and session.iterations < self.max_iterations
            ):
                mid = (session.lower_bound + session.upper_bound) // 2
                session.iterations += 1
                self._progress(
                    GROWTH_PROGRESS + (session.iterations / self.max_iterations) * (1 - GROWTH_PROGRESS),
                    f"Testing {format_bytes(mid)}... "
                    f"(iteration {session.iterations}/{self.max_iterations})",
                )

                outcome = await self._probe(session, mid)
                if outcome.ok:
                    session.lower_bound = mid
                    session.record_success(mid)
                else:
                    session.record_failure(outcome.status)
                    session.upper_bound = mid

        self._progress(1.0, "Done")
        return self._result(session, (time.perf_counter() - start) * 1000)

    # -- Internals ----------------------------------------------------------

    async def _probe(self, session: ProbeSession, size: int) -> ProbeOutcome:
        """Invoke the predicate once, with stall detection and EMA update."""
        timeout_ms = self.estimator.timeout_ms(size)
        session.invocations += 1
        t0 = time.perf_counter()

        task = asyncio.ensure_future(self._invoke(size))
        try:
            done, _ = await asyncio.wait({task}, timeout=timeout_ms / 1000)
            if not done:
                session.stall_warnings += 1
                logger.warning(
                    "%s: probe at %s exceeded %.0f ms, still waiting",
                    self.label, format_bytes(size), timeout_ms,
                )
                if self.on_stall:
                    self.on_stall(size, timeout_ms)
            outcome = await task
        except asyncio.CancelledError:
            task.cancel()
            raise

        elapsed_ms = (time.perf_counter() - t0) * 1000
        self.estimator.record(size, elapsed_ms)
        logger.debug(
            "%s: %d bytes -> ok=%s status=%r (%.1f ms)",
            self.label, size, outcome.ok, outcome.status, elapsed_ms,
        )
        return outcome

    async def _invoke(self, size: int) -> ProbeOutcome:
        try:
            return await self.test(size)
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.debug("%s: probe at %d bytes raised %r", self.label, size, exc)
            return ProbeOutcome(ok=False, status=None)

    def _progress(self, fraction: float, message: str) -> None:
        if self.on_progress:
            self.on_progress(fraction, message)

    def _result(self, session: ProbeSession, duration_ms: float) -> ProbeResult:
        confirmed = session.confirmed_working_size
        growth = math.log2(confirmed / self.seed) if confirmed >= self.seed else 0.0

        result = ProbeResult(
            label=self.label,
            max_working_size=confirmed,
            total_probes=max(1, math.ceil(session.iterations + growth)),
            invocations=session.invocations,
            rejection_status=session.rejection_status,
            limit_found=session.rejected,
            ceiling=self.ceiling,
            direction=self.direction,
            stall_warnings=session.stall_warnings,
            duration_ms=duration_ms,
        )
        if session.rejected:
            result.classification = classify_rejection(session.rejection_status, self.direction)
        else:
            result.notes.append(
                f"No rejection up to the {format_bytes(self.ceiling)} search ceiling; "
                "the real limit may be higher."
            )
        return result


async def probe_boundary(
    test: TestFunction,
    label: str,
    ceiling: int = DEFAULT_CEILING,
    estimator: Optional[BandwidthEstimator] = None,
    direction: str = REQUEST,
) -> ProbeResult:
    """Convenience wrapper: build a ``BoundaryProbe`` and run it."""
    probe = BoundaryProbe(
        test, label=label, ceiling=ceiling, estimator=estimator, direction=direction
    )
    return await probe.run()
