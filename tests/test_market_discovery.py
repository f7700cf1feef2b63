import unittest
import sys
import os

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fakes import FakeMarketApi, make_market
from updown_bot.data.market_discovery import (
    build_slug,
    candidate_slugs,
    discover_market,
    discover_markets,
)
from updown_bot.data.models import Asset
from updown_bot.errors import DiscoveryError

NOW = 1737500123
PERIOD = 1737499500

ALL_ENABLED = {Asset.BTC: True, Asset.ETH: True, Asset.SOL: True, Asset.XRP: True}
BTC_ONLY = {Asset.BTC: True, Asset.ETH: False, Asset.SOL: False, Asset.XRP: False}


class TestCandidateSlugs(unittest.TestCase):
    def test_btc_includes_previous_periods(self):
        slugs = list(candidate_slugs(Asset.BTC, NOW))
        self.assertEqual(slugs, [
            "btc-updown-15m-1737499500",
            "btc-updown-15m-1737498600",
            "btc-updown-15m-1737497700",
            "btc-updown-15m-1737496800",
        ])

    def test_solana_tries_both_prefixes_current_only(self):
        slugs = list(candidate_slugs(Asset.SOL, NOW))
        self.assertEqual(slugs, [
            "solana-updown-15m-1737499500",
            "sol-updown-15m-1737499500",
        ])

    def test_xrp_current_only(self):
        self.assertEqual(list(candidate_slugs(Asset.XRP, NOW)), ["xrp-updown-15m-1737499500"])


class TestDiscoverMarket(unittest.IsolatedAsyncioTestCase):
    async def test_current_period_market(self):
        slug = build_slug("btc", PERIOD)
        api = FakeMarketApi({slug: make_market("0xbtc", slug, "u", "d")})

        market = await discover_market(api, Asset.BTC, NOW, set())

        self.assertEqual(market.condition_id, "0xbtc")
        self.assertEqual(api.slug_calls, [slug])

    async def test_falls_back_to_previous_period(self):
        current = build_slug("btc", PERIOD)
        previous = build_slug("btc", PERIOD - 900)
        api = FakeMarketApi({
            current: make_market("0xold", current, "u", "d", active=True, closed=True),
            previous: make_market("0xprev", previous, "u2", "d2"),
        })

        market = await discover_market(api, Asset.BTC, NOW, set())

        self.assertEqual(market.condition_id, "0xprev")

    async def test_sol_second_prefix(self):
        slug = build_slug("sol", PERIOD)
        api = FakeMarketApi({slug: make_market("0xsol", slug, "u", "d")})

        market = await discover_market(api, Asset.SOL, NOW, set())

        self.assertEqual(market.condition_id, "0xsol")
        self.assertEqual(api.slug_calls[0], build_slug("solana", PERIOD))

    async def test_claimed_market_is_skipped(self):
        slug = build_slug("xrp", PERIOD)
        api = FakeMarketApi({slug: make_market("0xdup", slug, "u", "d")})

        with self.assertRaises(DiscoveryError):
            await discover_market(api, Asset.XRP, NOW, {"0xdup"})

    async def test_nothing_found(self):
        with self.assertRaises(DiscoveryError):
            await discover_market(FakeMarketApi(), Asset.ETH, NOW, set())


class TestDiscoverMarkets(unittest.IsolatedAsyncioTestCase):
    async def test_disabled_assets_make_no_calls(self):
        slug = build_slug("btc", PERIOD)
        api = FakeMarketApi({slug: make_market("0xbtc", slug, "u", "d")})

        markets = await discover_markets(api, BTC_ONLY, now=NOW)

        self.assertEqual(markets[Asset.BTC].condition_id, "0xbtc")
        self.assertEqual(markets[Asset.ETH].condition_id, "dummy_eth_fallback")
        self.assertEqual(markets[Asset.SOL].condition_id, "dummy_solana_fallback")
        self.assertEqual(markets[Asset.XRP].condition_id, "dummy_xrp_fallback")
        self.assertTrue(all(s.startswith("btc-") for s in api.slug_calls))

    async def test_everything_fails_degrades_to_placeholders(self):
        markets = await discover_markets(FakeMarketApi(), ALL_ENABLED, now=NOW)

        self.assertEqual(set(markets), set(Asset))
        for asset, market in markets.items():
            self.assertEqual(market.condition_id, asset.placeholder_id)
            self.assertFalse(market.active)
            self.assertEqual(market.token_ids(), (None, None))

    async def test_eth_claims_before_btc(self):
        # Same condition ID behind both slugs: ETH resolves first, BTC must not reuse it
        eth_slug = build_slug("eth", PERIOD)
        btc_slug = build_slug("btc", PERIOD)
        shared = make_market("0xshared", eth_slug, "u", "d")
        api = FakeMarketApi({eth_slug: shared, btc_slug: shared})

        markets = await discover_markets(api, ALL_ENABLED, now=NOW)

        self.assertEqual(markets[Asset.ETH].condition_id, "0xshared")
        self.assertEqual(markets[Asset.BTC].condition_id, "dummy_btc_fallback")


if __name__ == "__main__":
    unittest.main()
