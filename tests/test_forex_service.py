import asyncio
import math
import unittest

import httpx

from _support import make_settings
from services.market.forex_service import ForexRateService, derive_forex_pairs
from services.market.symbol_map import FOREX_PAIRS, PAIR_CROSS, PAIR_DIRECT, PAIR_RECIPROCAL

RATES = {
    "USD": 1,
    "EUR": 0.92,
    "GBP": 0.79,
    "JPY": 149.5,
    "CHF": 0.88,
    "CAD": 1.355,
    "AUD": 1.53,
    "NZD": 1.65,
    "SGD": 1.34,
    "ZAR": 18.4,
}


class DeriveForexPairsTests(unittest.TestCase):
    def test_direct_pairs_use_raw_rate(self):
        pairs = derive_forex_pairs(RATES)
        self.assertEqual(pairs["USD/JPY"], 149.5)
        self.assertEqual(pairs["USD/CHF"], 0.88)
        self.assertEqual(pairs["USD/CAD"], 1.355)

    def test_reciprocal_pairs_invert_rate(self):
        pairs = derive_forex_pairs(RATES)
        for ccy in ("EUR", "GBP", "AUD", "NZD"):
            with self.subTest(ccy=ccy):
                self.assertEqual(pairs[f"{ccy}/USD"], 1 / RATES[ccy])

    def test_cross_pair_uses_ratio(self):
        pairs = derive_forex_pairs({"EUR": 0.92, "GBP": 0.79})
        self.assertAlmostEqual(pairs["EUR/GBP"], 0.8587, places=4)
        self.assertEqual(pairs["EUR/GBP"], 0.79 / 0.92)

    def test_every_declared_pair_follows_its_kind(self):
        pairs = derive_forex_pairs(RATES)
        self.assertEqual(set(pairs), set(FOREX_PAIRS))
        for symbol, rule in FOREX_PAIRS.items():
            with self.subTest(pair=symbol, kind=rule.kind):
                if rule.kind == PAIR_DIRECT:
                    expected = RATES[rule.quote]
                elif rule.kind == PAIR_RECIPROCAL:
                    expected = 1 / RATES[rule.base]
                else:
                    self.assertEqual(rule.kind, PAIR_CROSS)
                    expected = RATES[rule.quote] / RATES[rule.base]
                self.assertEqual(pairs[symbol], expected)

    def test_pairs_with_missing_leg_are_omitted(self):
        pairs = derive_forex_pairs({"EUR": 0.92})
        self.assertIn("EUR/USD", pairs)
        self.assertNotIn("EUR/GBP", pairs)
        self.assertNotIn("USD/JPY", pairs)

    def test_unusable_rates_are_ignored(self):
        pairs = derive_forex_pairs({"EUR": 0, "GBP": -1, "JPY": float("nan"), "CHF": "abc", "CAD": 1.3})
        self.assertEqual(pairs, {"USD/CAD": 1.3})
        for v in pairs.values():
            self.assertTrue(math.isfinite(v) and v > 0)

    def test_empty_rates(self):
        self.assertEqual(derive_forex_pairs({}), {})


class ForexRateServiceTests(unittest.TestCase):
    def _fetch(self, handler):
        async def _run():
            transport = httpx.MockTransport(handler)
            async with httpx.AsyncClient(transport=transport) as client:
                return await ForexRateService(make_settings()).fetch_rates(client=client)

        return asyncio.run(_run())

    def test_fetches_usd_rates_once_and_derives_pairs(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(str(request.url))
            return httpx.Response(200, json={"result": "success", "base_code": "USD", "rates": RATES})

        quotes = self._fetch(handler)

        self.assertEqual(seen, ["https://fx.test/v6/latest/USD"])
        self.assertTrue(quotes.ok)
        self.assertEqual(quotes.asset_type, "forex")
        self.assertEqual(quotes.count, len(FOREX_PAIRS))
        self.assertEqual(quotes.prices["USD/JPY"], 149.5)

    def test_http_error_yields_empty_failed_quotes(self):
        quotes = self._fetch(lambda request: httpx.Response(503, json={"error": "down"}))
        self.assertFalse(quotes.ok)
        self.assertEqual(quotes.prices, {})
        self.assertIn("503", quotes.error)

    def test_missing_rates_is_a_failure(self):
        quotes = self._fetch(lambda request: httpx.Response(200, json={"result": "error"}))
        self.assertFalse(quotes.ok)
        self.assertEqual(quotes.prices, {})

    def test_network_error_is_not_raised(self):
        def handler(request):
            raise httpx.ConnectError("boom", request=request)

        quotes = self._fetch(handler)
        self.assertFalse(quotes.ok)
        self.assertEqual(quotes.count, 0)


if __name__ == "__main__":
    unittest.main()
