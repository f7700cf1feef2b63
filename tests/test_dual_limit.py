import unittest
import sys
import os

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from updown_bot.data.models import Asset, MarketData, MarketSnapshot, TokenKind, TokenPrice
from updown_bot.strategy.dual_limit import (
    HedgePair,
    build_opportunities,
    enabled_assets,
    evaluate_hedge,
    hedge_pairs,
    round_price,
    round_size,
    round_units,
    stop_loss_threshold,
)

PERIOD = 1737499500


def snapshot_with(down_ask=None, down_bid=None, time_remaining=600, eth=False):
    markets = {
        Asset.BTC: MarketData(
            Asset.BTC, "0xbtc",
            up=TokenPrice("btc-up", bid=0.44, ask=0.46),
            down=TokenPrice("btc-down", bid=down_bid, ask=down_ask)
        )
    }
    if eth:
        markets[Asset.ETH] = MarketData(
            Asset.ETH, "0xeth",
            up=TokenPrice("eth-up"),
            down=TokenPrice("eth-down")
        )
    return MarketSnapshot(period=PERIOD, time_remaining=time_remaining, markets=markets)


BTC_PAIR = HedgePair(Asset.BTC, "0xbtc", "btc-up", "btc-down")


class TestRounding(unittest.TestCase):
    def test_half_up(self):
        self.assertEqual(round_price(0.445), 0.45)
        self.assertEqual(round_size(2.675), 2.68)
        self.assertEqual(round_units(1.2345675), 1.234568)

    def test_threshold_inverts_trigger(self):
        self.assertAlmostEqual(stop_loss_threshold(0.8), 0.2)


class TestBuildOpportunities(unittest.TestCase):
    def test_order_and_fields(self):
        snapshot = snapshot_with(eth=True, time_remaining=899)
        enabled = enabled_assets(enable_eth=True)

        opps = build_opportunities(snapshot, 0.45, enabled)

        self.assertEqual(
            [o.token_kind for o in opps],
            [TokenKind.BTC_UP, TokenKind.BTC_DOWN, TokenKind.ETH_UP, TokenKind.ETH_DOWN]
        )
        first = opps[0]
        self.assertEqual(first.token_id, "btc-up")
        self.assertEqual(first.condition_id, "0xbtc")
        self.assertEqual(first.bid_price, 0.45)
        self.assertEqual(first.period, PERIOD)
        self.assertEqual(first.time_elapsed, 1)
        self.assertFalse(first.use_market_order)

    def test_disabled_assets_excluded(self):
        opps = build_opportunities(snapshot_with(eth=True), 0.45, enabled_assets())
        self.assertEqual(len(opps), 2)

    def test_btc_always_enabled(self):
        self.assertTrue(enabled_assets()[Asset.BTC])

    def test_hedge_pairs(self):
        pairs = hedge_pairs(snapshot_with(eth=True), enabled_assets(enable_eth=True))
        self.assertEqual([p.asset for p in pairs], [Asset.BTC, Asset.ETH])
        self.assertIs(pairs[0].up_kind, TokenKind.BTC_UP)


class TestEvaluateHedge(unittest.TestCase):
    def test_fires_when_unfilled_side_reaches_threshold(self):
        # Trigger 0.8 fires at 0.2, not at 0.8
        decision = evaluate_hedge(BTC_PAIR, 1.0, 0.0, snapshot_with(down_ask=0.25), 0.8)

        self.assertIsNotNone(decision)
        self.assertEqual(decision.filled_token_id, "btc-up")
        self.assertIs(decision.filled_kind, TokenKind.BTC_UP)
        self.assertEqual(decision.unfilled_token_id, "btc-down")
        self.assertEqual(decision.filled_units, 1.0)
        self.assertEqual(decision.trigger_price, 0.25)
        self.assertFalse(decision.is_dust)

    def test_below_threshold(self):
        self.assertIsNone(evaluate_hedge(BTC_PAIR, 1.0, 0.0, snapshot_with(down_ask=0.15), 0.8))

    def test_bid_used_when_no_ask(self):
        decision = evaluate_hedge(BTC_PAIR, 1.0, 0.0, snapshot_with(down_bid=0.3), 0.8)
        self.assertEqual(decision.trigger_price, 0.3)

    def test_empty_book_never_fires(self):
        self.assertIsNone(evaluate_hedge(BTC_PAIR, 1.0, 0.0, snapshot_with(), 0.8))

    def test_both_or_neither_filled(self):
        snapshot = snapshot_with(down_ask=0.9)
        self.assertIsNone(evaluate_hedge(BTC_PAIR, 1.0, 1.0, snapshot, 0.8))
        self.assertIsNone(evaluate_hedge(BTC_PAIR, 0.0, 0.0, snapshot, 0.8))

    def test_balance_at_fill_threshold_is_unfilled(self):
        self.assertIsNone(evaluate_hedge(BTC_PAIR, 0.001, 0.0, snapshot_with(down_ask=0.9), 0.8))

    def test_down_filled(self):
        snapshot = snapshot_with(down_ask=0.5)
        decision = evaluate_hedge(BTC_PAIR, 0.0, 2.0, snapshot, 0.8)
        self.assertEqual(decision.filled_token_id, "btc-down")
        self.assertEqual(decision.trigger_price, 0.46)

    def test_dust_fill(self):
        decision = evaluate_hedge(BTC_PAIR, 0.005, 0.0, snapshot_with(down_ask=0.3), 0.8)
        self.assertTrue(decision.is_dust)


if __name__ == "__main__":
    unittest.main()
