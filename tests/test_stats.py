"""Unit tests for prober.stats -- pure formatting helpers."""

import unittest

from prober.classify import CLIENT_REJECTED
from prober.stats import count_nodes, format_bytes, format_duration, format_rate, format_status


class TestFormatBytes(unittest.TestCase):
    def test_zero(self):
        self.assertEqual(format_bytes(0), "0 Bytes")

    def test_bytes(self):
        self.assertEqual(format_bytes(1023), "1023 Bytes")

    def test_kilobytes(self):
        self.assertEqual(format_bytes(1024), "1.00 KB")
        self.assertEqual(format_bytes(8190), "8.00 KB")

    def test_megabytes(self):
        self.assertEqual(format_bytes(16 * 1024 * 1024), "16.00 MB")

    def test_rate(self):
        self.assertEqual(format_rate(2048), "2.00 KB/s")


class TestFormatDuration(unittest.TestCase):
    def test_seconds(self):
        self.assertEqual(format_duration(42.9), "42s")

    def test_minutes(self):
        self.assertEqual(format_duration(185), "3m 5s")


class TestFormatStatus(unittest.TestCase):
    def test_values(self):
        self.assertEqual(format_status(None), "reset")
        self.assertEqual(format_status(431), "HTTP 431")
        self.assertEqual(format_status(CLIENT_REJECTED), "client-rejected")


class TestCountNodes(unittest.TestCase):
    def test_most_common_first(self):
        counts = count_nodes(["b", "a", "b", None, "c", "b", "a"])
        self.assertEqual(list(counts.items()), [("b", 3), ("a", 2), ("c", 1)])

    def test_empty(self):
        self.assertEqual(count_nodes([None, ""]), {})


if __name__ == "__main__":
    unittest.main()
