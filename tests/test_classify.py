"""Unit tests for prober.classify -- rejection verdicts and advice."""

import unittest

from prober.classify import (
    CLIENT_REJECTED,
    REQUEST,
    RESPONSE,
    Verdict,
    classify_rejection,
    header_size_advice,
)


class TestRequestDirection(unittest.TestCase):
    def test_standard_codes(self):
        for status in (414, 431):
            c = classify_rejection(status, REQUEST)
            self.assertEqual(c.verdict, Verdict.STANDARD)
            self.assertTrue(c.compliant)
            self.assertIn(str(status), c.title)

    def test_other_4xx_non_standard(self):
        for status in (400, 413, 403):
            self.assertEqual(classify_rejection(status).verdict, Verdict.NON_STANDARD)

    def test_5xx_server_error(self):
        for status in (500, 502, 503):
            c = classify_rejection(status)
            self.assertEqual(c.verdict, Verdict.SERVER_ERROR)
            self.assertFalse(c.compliant)

    def test_reset(self):
        self.assertEqual(classify_rejection(None).verdict, Verdict.TRANSPORT_RESET)

    def test_2xx_mismatch(self):
        self.assertEqual(classify_rejection(200).verdict, Verdict.OTHER)

    def test_default_direction_is_request(self):
        self.assertEqual(classify_rejection(431).verdict, Verdict.STANDARD)


class TestResponseDirection(unittest.TestCase):
    def test_502_standard(self):
        self.assertEqual(classify_rejection(502, RESPONSE).verdict, Verdict.STANDARD)

    def test_500_imprecise(self):
        c = classify_rejection(500, RESPONSE)
        self.assertEqual(c.verdict, Verdict.SERVER_ERROR)
        self.assertIn("502", c.detail)

    def test_431_not_standard_for_responses(self):
        self.assertEqual(classify_rejection(431, RESPONSE).verdict, Verdict.NON_STANDARD)

    def test_client_rejected(self):
        c = classify_rejection(CLIENT_REJECTED, RESPONSE)
        self.assertEqual(c.verdict, Verdict.CLIENT_REJECTED)

    def test_unknown_signal(self):
        with self.assertRaises(TypeError):
            classify_rejection("teapot")

    def test_to_dict(self):
        d = classify_rejection(431).to_dict()
        self.assertEqual(d["verdict"], "standard")
        self.assertIn("title", d)
        self.assertIn("detail", d)


class TestHeaderSizeAdvice(unittest.TestCase):
    def test_thresholds(self):
        self.assertIn("Very restrictive", header_size_advice(2048))
        self.assertIn("Minimal", header_size_advice(8192))
        self.assertIn("Good", header_size_advice(32768))
        self.assertIn("Generous", header_size_advice(100_000))
        self.assertIn("Very large", header_size_advice(262_144))
        self.assertIn("Extremely large", header_size_advice(1 << 20))

    def test_boundaries(self):
        self.assertIn("Minimal", header_size_advice(4096))
        self.assertIn("Extremely large", header_size_advice(524288))


if __name__ == "__main__":
    unittest.main()
