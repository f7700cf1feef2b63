import unittest
import sys
import os

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from updown_bot.data.models import (
    Asset,
    Market,
    MarketData,
    MarketSnapshot,
    Outcome,
    Token,
    TokenKind,
    TokenPrice,
    disabled_market,
    normalize_outcome,
)
from updown_bot.errors import UnresolvedTokenError


def market_with(*tokens):
    return Market(
        condition_id="0xabc",
        slug="btc-updown-15m-900",
        question="BTC up or down?",
        active=True,
        closed=False,
        tokens=tuple(Token(token_id=tid, outcome=label) for tid, label in tokens)
    )


class TestNormalizeOutcome(unittest.TestCase):
    def test_labels(self):
        self.assertIs(normalize_outcome("Up"), Outcome.UP)
        self.assertIs(normalize_outcome("UP"), Outcome.UP)
        self.assertIs(normalize_outcome("1"), Outcome.UP)
        self.assertIs(normalize_outcome("Down"), Outcome.DOWN)
        self.assertIs(normalize_outcome("down "), Outcome.DOWN)
        self.assertIs(normalize_outcome("0"), Outcome.DOWN)

    def test_unresolvable(self):
        for label in ("Yes", "", None, "up/down"):
            with self.assertRaises(UnresolvedTokenError):
                normalize_outcome(label)


class TestMarketTokenIds(unittest.TestCase):
    def test_resolves_both_sides(self):
        market = market_with(("t-up", "Up"), ("t-down", "Down"))
        self.assertEqual(market.token_ids(), ("t-up", "t-down"))
        self.assertTrue(market.is_tradable)

    def test_order_independent(self):
        market = market_with(("t-down", "Down"), ("t-up", "Up"))
        self.assertEqual(market.token_ids(), ("t-up", "t-down"))

    def test_ambiguous_side_is_unresolved(self):
        market = market_with(("a", "Up"), ("b", "Up"), ("c", "Down"))
        self.assertEqual(market.token_ids(), (None, "c"))
        self.assertFalse(market.is_tradable)

    def test_unknown_labels_ignored(self):
        market = market_with(("a", "Yes"), ("b", "Down"))
        self.assertEqual(market.token_ids(), (None, "b"))

    def test_disabled_market(self):
        market = disabled_market(Asset.SOL)
        self.assertEqual(market.condition_id, "dummy_solana_fallback")
        self.assertEqual(market.question, "Solana Trading Disabled")
        self.assertFalse(market.active)
        self.assertTrue(market.closed)
        self.assertEqual(market.token_ids(), (None, None))


class TestTokenKind(unittest.TestCase):
    def test_of_and_names(self):
        kind = TokenKind.of(Asset.ETH, Outcome.DOWN)
        self.assertIs(kind, TokenKind.ETH_DOWN)
        self.assertIs(kind.asset, Asset.ETH)
        self.assertEqual(kind.display_name, "ETH Down")
        self.assertIs(kind.opposite, TokenKind.ETH_UP)


class TestSnapshotLookups(unittest.TestCase):
    def test_trigger_price_fallbacks(self):
        self.assertEqual(TokenPrice("t", bid=0.1, ask=0.2).trigger_price, 0.2)
        self.assertEqual(TokenPrice("t", bid=0.1).trigger_price, 0.1)
        self.assertEqual(TokenPrice("t").trigger_price, 0.0)

    def test_price_for_and_missing_asset(self):
        up = TokenPrice("u", bid=0.4, ask=0.5)
        snapshot = MarketSnapshot(
            period=900,
            time_remaining=800,
            markets={Asset.BTC: MarketData(Asset.BTC, "0xabc", up=up)}
        )
        self.assertIs(snapshot.price_for("u"), up)
        self.assertIsNone(snapshot.price_for("nope"))

        eth = snapshot.market(Asset.ETH)
        self.assertIsNone(eth.up)
        self.assertIsNone(eth.down)


if __name__ == "__main__":
    unittest.main()
