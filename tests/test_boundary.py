"""Tests for prober.boundary -- growth, refinement, and stall handling."""

import asyncio
import unittest
from unittest import mock

from prober.bandwidth import BandwidthEstimator
from prober.boundary import BoundaryProbe, ProbeOutcome, probe_boundary
from prober.classify import RESPONSE, Verdict


def limit_at(limit, status=431):
    async def test(size):
        return ProbeOutcome(size <= limit, None if size <= limit else status)
    return test


class TestConvergence(unittest.IsolatedAsyncioTestCase):
    async def test_finds_exact_limit(self):
        for limit in (0, 1, 100, 1023, 1024, 1025, 5000, 70000, 123457, 1 << 20):
            with self.subTest(limit=limit):
                result = await probe_boundary(limit_at(limit), "header", ceiling=4 << 20)
                self.assertEqual(result.max_working_size, limit)
                self.assertTrue(result.limit_found)
                self.assertEqual(result.rejection_status, 431)

    async def test_standard_rejection(self):
        result = await probe_boundary(limit_at(70000), "header")
        self.assertEqual(result.max_working_size, 70000)
        self.assertEqual(result.classification.verdict, Verdict.STANDARD)
        self.assertFalse(result.exceeds_range)

    async def test_probe_count_estimate(self):
        result = await probe_boundary(limit_at(70000), "header")
        # 16 bisection steps plus log2(70000 / 1024) ~= 6.1, rounded up
        self.assertEqual(result.total_probes, 23)
        # 8 growth probes (1024 .. 131072) plus the 16 bisection steps
        self.assertEqual(result.invocations, 8 + 16)

    async def test_response_direction(self):
        result = await probe_boundary(limit_at(3000, 502), "resp", direction=RESPONSE)
        self.assertEqual(result.direction, RESPONSE)
        self.assertEqual(result.classification.verdict, Verdict.STANDARD)

    async def test_iteration_cap(self):
        probe = BoundaryProbe(limit_at(70000), label="capped", max_iterations=3)
        result = await probe.run()
        self.assertEqual(result.invocations, 8 + 3)
        self.assertLessEqual(result.max_working_size, 70000)
        self.assertGreaterEqual(result.max_working_size, 65536)


class TestEdgeCases(unittest.IsolatedAsyncioTestCase):
    async def test_always_throws(self):
        async def broken(size):
            raise RuntimeError("boom")

        result = await probe_boundary(broken, "broken")
        self.assertEqual(result.max_working_size, 0)
        self.assertIsNone(result.rejection_status)
        self.assertTrue(result.limit_found)
        self.assertEqual(result.classification.verdict, Verdict.TRANSPORT_RESET)
        self.assertGreaterEqual(result.total_probes, 1)

    async def test_ceiling_reached(self):
        calls = []

        async def always_ok(size):
            calls.append(size)
            return ProbeOutcome(True, 200)

        result = await probe_boundary(always_ok, "open", ceiling=5000)
        self.assertEqual(calls, [1024, 2048, 4096, 5000])
        self.assertEqual(result.max_working_size, 5000)
        self.assertFalse(result.limit_found)
        self.assertTrue(result.exceeds_range)
        self.assertIsNone(result.classification)
        self.assertTrue(result.notes)

    async def test_ceiling_below_seed(self):
        result = await probe_boundary(limit_at(10 ** 9), "tiny", ceiling=100)
        self.assertEqual(result.max_working_size, 100)
        self.assertFalse(result.limit_found)

    async def test_first_failure_wins(self):
        async def test(size):
            if size <= 3000:
                return ProbeOutcome(True, 200)
            if size < 4000:
                return ProbeOutcome(False, 400)
            return ProbeOutcome(False, 431)

        result = await probe_boundary(test, "mixed")
        self.assertEqual(result.max_working_size, 3000)
        self.assertEqual(result.rejection_status, 431)

    async def test_progress_reported(self):
        seen = []
        probe = BoundaryProbe(limit_at(5000), label="progress")
        probe.on_progress = lambda fraction, msg: seen.append(fraction)
        await probe.run()
        self.assertEqual(seen[0], 0.0)
        self.assertEqual(seen[-1], 1.0)
        self.assertTrue(all(0.0 <= f <= 1.0 for f in seen))

    def test_invalid_ceiling(self):
        with self.assertRaises(ValueError):
            BoundaryProbe(limit_at(1), label="bad", ceiling=0)


class TestStallHandling(unittest.IsolatedAsyncioTestCase):
    @mock.patch("prober.bandwidth.MIN_PROBE_TIMEOUT_MS", 10.0)
    async def test_slow_probe_warns_but_completes(self):
        async def slow_at_seed(size):
            if size == 1024:
                await asyncio.sleep(0.1)
                return ProbeOutcome(False, 431)
            return ProbeOutcome(True, 200)

        stalls = []
        probe = BoundaryProbe(slow_at_seed, label="slow", estimator=BandwidthEstimator())
        probe.on_stall = lambda size, timeout_ms: stalls.append((size, timeout_ms))
        result = await probe.run()

        self.assertEqual(stalls, [(1024, 10.0)])
        self.assertEqual(result.stall_warnings, 1)
        # The stalled probe's own outcome is what ended growth.
        self.assertEqual(result.rejection_status, 431)
        self.assertEqual(result.max_working_size, 1023)

    async def test_slow_probe_feeds_estimator(self):
        async def test(size):
            await asyncio.sleep(0.06)
            return ProbeOutcome(size <= 2048, 431)

        est = BandwidthEstimator()
        await probe_boundary(test, "timed", estimator=est)
        self.assertGreater(est.samples, 0)
        self.assertNotEqual(est.estimate_bps, est.initial_bps)

    async def test_cancellation_propagates(self):
        started = asyncio.Event()

        async def hang(size):
            started.set()
            await asyncio.sleep(3600)

        task = asyncio.create_task(probe_boundary(hang, "hang"))
        await started.wait()
        task.cancel()
        with self.assertRaises(asyncio.CancelledError):
            await task


if __name__ == "__main__":
    unittest.main()
