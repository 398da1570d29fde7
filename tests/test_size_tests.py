"""Tests for prober.size_tests -- every dimension against a local fake proxy."""

import unittest

from fakeproxy import FakeProxy

from prober.api import ProxyAPI
from prober.bandwidth import BandwidthRegistry
from prober.boundary import ProbeResult
from prober.classify import CLIENT_REJECTED, REQUEST, RESPONSE, Verdict
from prober.size_tests import (
    DIMENSIONS,
    Dimension,
    DimensionInfo,
    SizeTester,
    annotate,
)

CEILING = 8192


class TestDimensions(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.proxy = FakeProxy()
        self.base_url = await self.proxy.start()

    async def asyncTearDown(self):
        await self.proxy.close()

    async def run_dim(self, dimension, **api_kwargs):
        async with ProxyAPI(self.base_url, **api_kwargs) as api:
            return await SizeTester(api).run(dimension, CEILING)

    async def test_header_value(self):
        result = await self.run_dim(Dimension.HEADER_VALUE)
        self.assertEqual(result.max_working_size, 4000)
        self.assertEqual(result.rejection_status, 431)
        self.assertEqual(result.classification.verdict, Verdict.STANDARD)
        self.assertEqual(result.label, "Single Header Value")
        # Advice for header-like dimensions.
        self.assertTrue(any("Very restrictive" in n for n in result.notes))

    async def test_total_headers(self):
        result = await self.run_dim(Dimension.TOTAL_HEADERS)
        # Ten headers of size // 10 each: 4009 // 10 * 10 == 4000
        self.assertEqual(result.max_working_size, 4009)
        self.assertEqual(result.rejection_status, 431)

    async def test_url_path(self):
        result = await self.run_dim(Dimension.URL_PATH)
        self.assertEqual(result.max_working_size, 3000 - len("/echo/"))
        self.assertEqual(result.rejection_status, 414)
        self.assertEqual(result.classification.verdict, Verdict.STANDARD)

    async def test_query_string(self):
        result = await self.run_dim(Dimension.QUERY_STRING)
        self.assertEqual(result.max_working_size, 3000 - len("/echo?q="))
        self.assertEqual(result.rejection_status, 414)

    async def test_response_header(self):
        result = await self.run_dim(Dimension.RESPONSE_HEADER)
        self.assertEqual(result.direction, RESPONSE)
        self.assertEqual(result.max_working_size, 3000)
        self.assertEqual(result.rejection_status, 502)
        self.assertEqual(result.classification.verdict, Verdict.STANDARD)

    async def test_response_headers_total(self):
        result = await self.run_dim(Dimension.RESPONSE_HEADERS_TOTAL)
        self.assertEqual(result.max_working_size, 3009)
        self.assertEqual(result.rejection_status, 502)

    async def test_client_rejects_oversized_response(self):
        self.proxy.response_limit = None
        result = await self.run_dim(Dimension.RESPONSE_HEADER, client_header_limit=2000)
        self.assertEqual(result.rejection_status, CLIENT_REJECTED)
        self.assertEqual(result.classification.verdict, Verdict.CLIENT_REJECTED)
        self.assertTrue(result.limit_found)
        # Just under the limit: the header name and separator use the rest.
        self.assertLess(result.max_working_size, 2000)
        self.assertGreater(result.max_working_size, 1900)
        self.assertEqual(result.to_dict()["classification"]["verdict"], "client-rejected")

    async def test_no_limit_below_ceiling(self):
        self.proxy.header_limit = 10 ** 9
        async with ProxyAPI(self.base_url) as api:
            result = await SizeTester(api).run(Dimension.HEADER_VALUE, 3000)
        self.assertFalse(result.limit_found)
        self.assertEqual(result.max_working_size, 3000)

    async def test_unreachable_server_is_a_reset(self):
        await self.proxy.close()
        async with ProxyAPI(self.base_url) as api:
            result = await SizeTester(api).run(Dimension.HEADER_VALUE, CEILING)
        self.assertEqual(result.max_working_size, 0)
        self.assertIsNone(result.rejection_status)
        self.assertEqual(result.classification.verdict, Verdict.TRANSPORT_RESET)

    async def test_estimators_shared_per_direction(self):
        registry = BandwidthRegistry()
        async with ProxyAPI(self.base_url) as api:
            tester = SizeTester(api, registry)
            await tester.run_many([Dimension.URL_PATH, Dimension.RESPONSE_HEADER], CEILING)
        self.assertEqual(set(registry.snapshot()), {REQUEST, RESPONSE})

    async def test_progress_forwarded(self):
        seen = []
        async with ProxyAPI(self.base_url) as api:
            tester = SizeTester(api)
            tester.on_progress = lambda fraction, msg: seen.append(msg)
            await tester.run(Dimension.QUERY_STRING, CEILING)
        self.assertEqual(seen[-1], "Done")


class TestAnnotate(unittest.TestCase):
    def test_origin_limit_note(self):
        info = DimensionInfo("URL Path Length", REQUEST, 10000, header_like=False)
        result = ProbeResult(label=info.label, max_working_size=9900, limit_found=True)
        annotate(result, info)
        self.assertEqual(len(result.notes), 1)
        self.assertIn("test server itself", result.notes[0])

    def test_no_note_well_below_origin(self):
        info = DIMENSIONS[Dimension.URL_PATH]
        result = ProbeResult(label=info.label, max_working_size=8000, limit_found=True)
        annotate(result, info)
        self.assertEqual(result.notes, [])

    def test_default_directions(self):
        self.assertEqual(DIMENSIONS[Dimension.HEADER_VALUE].direction, REQUEST)
        self.assertEqual(DIMENSIONS[Dimension.RESPONSE_HEADERS_TOTAL].direction, RESPONSE)


if __name__ == "__main__":
    unittest.main()
