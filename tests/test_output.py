"""Unit tests for ui.output -- JSON report and text formatting."""

import json
import os
import tempfile
import unittest

from prober.api import NodeInfo
from prober.boundary import ProbeResult
from prober.charset import CharResult
from prober.classify import classify_rejection
from prober.history import ConnectionEntry, TransportType
from prober.lb import LBSample, LoadBalancerResult
from ui.output import create_report_json, format_text_result, save_json


def sample_probe(found=True):
    result = ProbeResult(
        label="Single Header Value",
        max_working_size=70000 if found else 5000,
        rejection_status=431 if found else None,
        limit_found=found,
        ceiling=5000 if not found else 1 << 20,
    )
    if found:
        result.classification = classify_rejection(431)
    return result


def sample_lb():
    return LoadBalancerResult(samples=[
        LBSample(0, NodeInfo(node_name="a")),
        LBSample(1, NodeInfo(node_name="b")),
    ])


class TestCreateReportJson(unittest.TestCase):
    def test_basic_structure(self):
        r = create_report_json("http://x", probes=[sample_probe()])
        self.assertIn("timestamp", r)
        self.assertEqual(r["target"], "http://x")
        self.assertEqual(r["limits"][0]["max_working_size"], 70000)
        self.assertEqual(r["limits"][0]["classification"]["verdict"], "standard")

    def test_sections_omitted_when_not_run(self):
        r = create_report_json("http://x")
        for key in ("limits", "charset", "load_balancer", "connections", "bandwidth_bps"):
            self.assertNotIn(key, r)

    def test_all_sections(self):
        r = create_report_json(
            "http://x",
            probes=[sample_probe()],
            charset=[CharResult("HTAB", "request", "passed")],
            lb=sample_lb(),
            connections=[ConnectionEntry(1, TransportType.SSE, 0.0, duration_seconds=3)],
            bandwidth={"request": 1234.5678},
        )
        self.assertEqual(r["charset"][0]["outcome"], "passed")
        self.assertEqual(r["load_balancer"]["distinct_nodes"], 2)
        self.assertEqual(r["connections"][0]["type"], "SSE")
        self.assertEqual(r["bandwidth_bps"], {"request": 1234.6})
        json.dumps(r)

    def test_unbounded_probe(self):
        d = create_report_json("http://x", probes=[sample_probe(found=False)])["limits"][0]
        self.assertFalse(d["limit_found"])
        self.assertNotIn("classification", d)


class TestSaveJson(unittest.TestCase):
    def test_roundtrip(self):
        data = {"key": "value", "number": 42}
        with tempfile.NamedTemporaryFile(mode="w", suffix=".json", delete=False) as f:
            path = f.name
        try:
            save_json(data, path)
            with open(path) as fh:
                loaded = json.load(fh)
            self.assertEqual(loaded, data)
        finally:
            os.unlink(path)

    def test_missing_directory_raises(self):
        with self.assertRaises(OSError):
            save_json({"a": 1}, "/nonexistent/dir/file.json")


class TestFormatTextResult(unittest.TestCase):
    def test_contains_values(self):
        text = format_text_result(
            "http://x",
            probes=[sample_probe(), sample_probe(found=False)],
            lb=sample_lb(),
            connections=[ConnectionEntry(2, TransportType.WEBSOCKET, 0.0, error="Failed to connect",
                                         attempts=2)],
        )
        self.assertIn("Target: http://x", text)
        self.assertIn("68.36 KB (rejected with HTTP 431) [standard]", text)
        self.assertIn(">= 4.88 KB", text)
        self.assertIn("2 node(s) a=1, b=1", text)
        self.assertIn("WS #2: 0s error: Failed to connect", text)

    def test_minimal(self):
        text = format_text_result("http://x")
        self.assertEqual(text.count("=" * 50), 3)


if __name__ == "__main__":
    unittest.main()
