"""
Unit tests for rule document parsing, compilation and fetching.
"""

import json
import tempfile
import unittest
from pathlib import Path

import httpx

from clearlink.core.constants import RuleKind
from clearlink.core.exceptions import RuleCompileError, RuleFetchError
from clearlink.rules.loader import (
    BUNDLED_RULES_PATH,
    RuleLoader,
    compile_ruleset,
    load_bundled_ruleset,
    parse_document,
)


DOCUMENT = {
    "providers": {
        "globalRules": {
            "urlPattern": ".*",
            "rules": ["utm_[a-z_]*", "fbclid"],
            "referralMarketing": ["referrer"],
        },
        "shop": {
            "urlPattern": "^https?://(?:[a-z0-9-]+\\.)*?shop\\.example",
            "rules": ["ref", {"exact": "s.id"}, {"pattern": "trk_[0-9]+", "caseInsensitive": True}],
            "referralMarketing": ["tag"],
            "exceptions": ["^https?://shop\\.example/checkout"],
            "redirections": ["^https?://shop\\.example/out\\?u=([^&]+)"],
            "completeProvider": False,
            "rawRules": ["/ignored/"],
        },
    }
}


class TestParseDocument(unittest.TestCase):
    """Test raw document decoding."""

    def test_mapping_passes_through(self):
        self.assertIs(parse_document(DOCUMENT), DOCUMENT)

    def test_json_text_and_bytes(self):
        text = json.dumps(DOCUMENT)
        self.assertEqual(parse_document(text), DOCUMENT)
        self.assertEqual(parse_document(text.encode("utf-8")), DOCUMENT)

    def test_yaml_text(self):
        data = parse_document(
            "providers:\n"
            "  shop:\n"
            "    urlPattern: shop\\.example\n"
            "    rules: [ref]\n"
        )
        self.assertEqual(data["providers"]["shop"]["rules"], ["ref"])

    def test_garbage_raises(self):
        with self.assertRaises(RuleCompileError):
            parse_document("{{{not: valid")

    def test_scalar_document_raises(self):
        with self.assertRaises(RuleCompileError):
            parse_document("just text")

    def test_invalid_utf8_raises(self):
        with self.assertRaises(RuleCompileError):
            parse_document(b"\xff\xfe\xfa")


class TestCompileRuleset(unittest.TestCase):
    """Test compilation into RuleSet."""

    def test_global_rules_are_separated(self):
        ruleset = compile_ruleset(DOCUMENT, version=3, source="test")

        self.assertEqual(ruleset.version, 3)
        self.assertEqual(ruleset.source, "test")
        self.assertEqual(list(ruleset.providers), ["shop"])
        self.assertIsNotNone(ruleset.global_rules)
        self.assertEqual(ruleset.global_rules.name, "globalRules")

    def test_provider_fields(self):
        shop = compile_ruleset(DOCUMENT).providers["shop"]

        self.assertEqual(len(shop.rules), 3)
        self.assertEqual(len(shop.referral_marketing), 1)
        self.assertEqual(len(shop.exceptions), 1)
        self.assertEqual(len(shop.redirections), 1)

    def test_regex_rules_match_whole_key(self):
        shop = compile_ruleset(DOCUMENT).providers["shop"]

        self.assertTrue(shop.removes("ref"))
        self.assertFalse(shop.removes("prefix"))
        self.assertFalse(shop.removes("refresh"))

    def test_exact_rule_is_literal(self):
        shop = compile_ruleset(DOCUMENT).providers["shop"]
        exact = shop.rules[1]

        self.assertEqual(exact.kind, RuleKind.EXACT)
        self.assertTrue(shop.removes("s.id"))
        self.assertFalse(shop.removes("sxid"))

    def test_case_sensitivity(self):
        shop = compile_ruleset(DOCUMENT).providers["shop"]

        self.assertFalse(shop.removes("REF"))
        self.assertTrue(shop.removes("TRK_42"))
        self.assertTrue(shop.rules[2].case_insensitive)

    def test_referral_rules_are_gated(self):
        shop = compile_ruleset(DOCUMENT).providers["shop"]

        self.assertFalse(shop.removes("tag"))
        self.assertTrue(shop.removes("tag", referral_marketing=True))

    def test_url_pattern_ignores_case(self):
        shop = compile_ruleset(DOCUMENT).providers["shop"]
        self.assertGreater(shop.match_span("https://WWW.SHOP.EXAMPLE/item"), 0)
        self.assertEqual(shop.match_span("https://other.example/"), -1)

    def test_bare_provider_mapping_is_accepted(self):
        ruleset = compile_ruleset({"shop": {"urlPattern": "shop", "rules": ["ref"]}})
        self.assertEqual(ruleset.provider_count, 1)
        self.assertIsNone(ruleset.global_rules)

    def test_providers_are_read_only(self):
        ruleset = compile_ruleset(DOCUMENT)
        with self.assertRaises(TypeError):
            ruleset.providers["evil"] = ruleset.providers["shop"]

    def test_missing_url_pattern_rejected(self):
        with self.assertRaises(RuleCompileError) as ctx:
            compile_ruleset({"providers": {"shop": {"rules": ["ref"]}}})
        self.assertIn("urlPattern", str(ctx.exception))

    def test_invalid_regex_rejects_whole_document(self):
        doc = json.loads(json.dumps(DOCUMENT))
        doc["providers"]["broken"] = {"urlPattern": "x", "rules": ["(unclosed"]}

        with self.assertRaises(RuleCompileError) as ctx:
            compile_ruleset(doc)
        self.assertIn("broken", str(ctx.exception))

    def test_empty_providers_rejected(self):
        with self.assertRaises(RuleCompileError):
            compile_ruleset({"providers": {}})

    def test_provider_must_be_mapping(self):
        with self.assertRaises(RuleCompileError):
            compile_ruleset({"providers": {"shop": ["ref"]}})

    def test_rules_must_be_list(self):
        with self.assertRaises(RuleCompileError):
            compile_ruleset({"providers": {"shop": {"urlPattern": "x", "rules": "ref"}}})

    def test_rule_object_needs_exact_or_pattern(self):
        with self.assertRaises(RuleCompileError):
            compile_ruleset({"providers": {"shop": {"urlPattern": "x", "rules": [{"caseInsensitive": True}]}}})

    def test_non_string_rule_rejected(self):
        with self.assertRaises(RuleCompileError):
            compile_ruleset({"providers": {"shop": {"urlPattern": "x", "rules": [42]}}})

    def test_exceptions_must_be_strings(self):
        with self.assertRaises(RuleCompileError):
            compile_ruleset({"providers": {"shop": {"urlPattern": "x", "exceptions": [1]}}})


class TestBundledRules(unittest.TestCase):
    """Test the rule document shipped with the package."""

    def test_bundled_document_compiles(self):
        ruleset = load_bundled_ruleset(version=1)

        self.assertEqual(ruleset.version, 1)
        self.assertIsNotNone(ruleset.global_rules)
        self.assertIn("amazon", ruleset.providers)
        self.assertTrue(ruleset.source.startswith("bundled:"))

    def test_bundled_global_rules_strip_utm(self):
        ruleset = load_bundled_ruleset()
        self.assertTrue(ruleset.global_rules.removes("utm_source"))
        self.assertFalse(ruleset.global_rules.removes("id"))

    def test_missing_bundled_file_raises(self):
        with self.assertRaises(RuleCompileError):
            load_bundled_ruleset(path=BUNDLED_RULES_PATH.with_name("missing.json"))


class TestRuleLoader(unittest.IsolatedAsyncioTestCase):
    """Test RuleLoader fetching."""

    async def test_fetch_from_http(self):
        requested = []

        def handler(request: httpx.Request) -> httpx.Response:
            requested.append(str(request.url))
            return httpx.Response(200, json=DOCUMENT)

        loader = RuleLoader("https://rules.example/data.json", transport=httpx.MockTransport(handler))
        ruleset = await loader.load(version=7)

        self.assertEqual(requested, ["https://rules.example/data.json"])
        self.assertEqual(ruleset.version, 7)
        self.assertEqual(ruleset.source, "https://rules.example/data.json")
        self.assertIn("shop", ruleset.providers)

    async def test_http_error_status_raises_fetch_error(self):
        loader = RuleLoader(
            "https://rules.example/data.json",
            transport=httpx.MockTransport(lambda request: httpx.Response(503)),
        )
        with self.assertRaises(RuleFetchError):
            await loader.fetch()

    async def test_network_error_raises_fetch_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        loader = RuleLoader("https://rules.example/data.json", transport=httpx.MockTransport(handler))
        with self.assertRaises(RuleFetchError):
            await loader.fetch()

    async def test_fetch_from_file(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            path = Path(temp_dir) / "rules.json"
            path.write_text(json.dumps(DOCUMENT))

            ruleset = await RuleLoader(str(path)).load()

        self.assertIn("shop", ruleset.providers)

    async def test_missing_file_raises_fetch_error(self):
        with self.assertRaises(RuleFetchError):
            await RuleLoader("/nonexistent/rules.json").fetch()


if __name__ == "__main__":
    unittest.main()
