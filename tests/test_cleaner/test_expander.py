"""
Unit tests for LinkExpander using httpx.MockTransport.
"""

import asyncio
import unittest

import httpx

from clearlink.cleaner.expander import LinkExpander


def _expander(handler, **kwargs) -> LinkExpander:
    return LinkExpander(["bit.ly", "t.co"], transport=httpx.MockTransport(handler), **kwargs)


class TestIsShortener(unittest.TestCase):
    """Test shortener allowlist checks."""

    def setUp(self):
        self.expander = LinkExpander(["bit.ly"])

    def test_listed_host(self):
        self.assertTrue(self.expander.is_shortener("https://bit.ly/xyz"))
        self.assertTrue(self.expander.is_shortener("https://BIT.LY/xyz"))

    def test_subdomain(self):
        self.assertTrue(self.expander.is_shortener("https://www.bit.ly/xyz"))

    def test_unlisted_host(self):
        self.assertFalse(self.expander.is_shortener("https://notbit.ly/xyz"))
        self.assertFalse(self.expander.is_shortener("https://example.com/?u=bit.ly"))

    def test_unparseable(self):
        self.assertFalse(self.expander.is_shortener("not a url"))


class TestExpand(unittest.IsolatedAsyncioTestCase):
    """Test redirect following and its terminal conditions."""

    async def test_single_hop(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            if request.url.host == "bit.ly":
                return httpx.Response(301, headers={"Location": "https://shop.example/?ref=aff123&sku=42"})
            return httpx.Response(200)

        result = await _expander(handler).expand("https://bit.ly/xyz")

        self.assertEqual(result.url, "https://shop.example/?ref=aff123&sku=42")
        self.assertEqual(result.hops, 1)
        self.assertFalse(result.partial)
        self.assertIsNone(result.error)
        self.assertTrue(all(r.method == "HEAD" for r in requests))

    async def test_relative_location(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/xyz":
                return httpx.Response(302, headers={"Location": "/landing?id=1"})
            return httpx.Response(200)

        result = await _expander(handler).expand("https://bit.ly/xyz")

        self.assertEqual(result.url, "https://bit.ly/landing?id=1")
        self.assertEqual(result.hops, 1)

    async def test_no_redirect_returns_input(self):
        result = await _expander(lambda request: httpx.Response(200)).expand("https://bit.ly/xyz")

        self.assertEqual(result.url, "https://bit.ly/xyz")
        self.assertEqual(result.hops, 0)
        self.assertFalse(result.partial)

    async def test_redirect_without_location_is_terminal(self):
        result = await _expander(lambda request: httpx.Response(301)).expand("https://bit.ly/xyz")

        self.assertEqual(result.hops, 0)
        self.assertFalse(result.partial)

    async def test_loop_detected(self):
        def handler(request: httpx.Request) -> httpx.Response:
            target = "https://bit.ly/b" if request.url.path == "/a" else "https://bit.ly/a"
            return httpx.Response(301, headers={"Location": target})

        result = await _expander(handler).expand("https://bit.ly/a")

        self.assertEqual(result.url, "https://bit.ly/b")
        self.assertEqual(result.hops, 1)
        self.assertTrue(result.partial)
        self.assertEqual(result.error, "ExpansionLoop")

    async def test_hop_limit(self):
        def handler(request: httpx.Request) -> httpx.Response:
            n = int(request.url.path.rsplit("/", 1)[-1])
            return httpx.Response(302, headers={"Location": f"/r/{n + 1}"})

        result = await _expander(handler).expand("https://bit.ly/r/0", max_hops=3)

        self.assertEqual(result.url, "https://bit.ly/r/3")
        self.assertEqual(result.hops, 3)
        self.assertTrue(result.partial)
        self.assertIsNone(result.error)

    async def test_network_error_returns_original(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("unreachable", request=request)

        result = await _expander(handler).expand("https://bit.ly/xyz")

        self.assertEqual(result.url, "https://bit.ly/xyz")
        self.assertEqual(result.hops, 0)
        self.assertTrue(result.partial)
        self.assertEqual(result.error, "ExpansionError")

    async def test_transport_timeout(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        result = await _expander(handler).expand("https://bit.ly/xyz")

        self.assertEqual(result.url, "https://bit.ly/xyz")
        self.assertTrue(result.partial)
        self.assertEqual(result.error, "ExpansionTimeout")

    async def test_timeout_after_first_hop_keeps_last_url(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "bit.ly":
                return httpx.Response(301, headers={"Location": "https://t.co/next"})
            raise httpx.ReadTimeout("slow", request=request)

        result = await _expander(handler).expand("https://bit.ly/xyz")

        self.assertEqual(result.url, "https://t.co/next")
        self.assertEqual(result.hops, 1)
        self.assertEqual(result.error, "ExpansionTimeout")

    async def test_total_budget(self):
        async def handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(1)
            return httpx.Response(200)

        result = await _expander(handler).expand("https://bit.ly/xyz", total_timeout=0.05)

        self.assertEqual(result.url, "https://bit.ly/xyz")
        self.assertTrue(result.partial)
        self.assertEqual(result.error, "ExpansionTimeout")

    async def test_head_not_allowed_falls_back_to_get(self):
        methods = []

        def handler(request: httpx.Request) -> httpx.Response:
            methods.append(request.method)
            if request.url.host != "bit.ly":
                return httpx.Response(200)
            if request.method == "HEAD":
                return httpx.Response(405)
            return httpx.Response(301, headers={"Location": "https://shop.example/item"})

        result = await _expander(handler).expand("https://bit.ly/xyz")

        self.assertEqual(result.url, "https://shop.example/item")
        self.assertEqual(methods, ["HEAD", "GET", "HEAD"])

    async def test_unparseable_input(self):
        result = await _expander(lambda request: httpx.Response(200)).expand("not a url")

        self.assertEqual(result.url, "not a url")
        self.assertTrue(result.partial)
        self.assertEqual(result.error, "UrlParseError")


if __name__ == "__main__":
    unittest.main()
