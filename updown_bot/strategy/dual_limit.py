"""
Dual Limit-Start Strategy
==========================

At each 15-minute period start, rest a limit buy on both the Up and Down
token of every enabled market at a fixed price (e.g. $0.45).

If only one side fills and the other side becomes expensive, the filled
side is closed with a limit sell (hedge / stop-loss).
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional

from updown_bot.data.models import (
    Asset,
    BuyOpportunity,
    MarketSnapshot,
    Outcome,
    TokenKind,
)
from updown_bot.utils.clock import seconds_elapsed

LIMIT_PRICE = 0.45
DEFAULT_SELL_TRIGGER_BID = 0.8
DEFAULT_SELL_AT_PRICE = 0.85

# Balance above this counts as a fill
FILLED_BALANCE_THRESHOLD = 0.001
# Below this the CLOB rejects the sell as too small
MIN_LIMIT_SELL_SHARES = 0.01

TICK_SIZE = "0.01"


def round_half_up(value: float, places: int) -> float:
    """Round like Math.round(x * 10**places) / 10**places."""
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def round_price(price: float) -> float:
    return round_half_up(price, 2)


def round_size(size: float) -> float:
    return round_half_up(size, 2)


def round_units(units: float) -> float:
    """Filled-unit precision used for fill checks and hedge sizing."""
    return round_half_up(units, 6)


def stop_loss_threshold(sell_trigger_bid: float) -> float:
    """
    Unfilled-side price at which the hedge fires.

    The configured value is inverted: a trigger of 0.8 fires once the
    unfilled side trades at or above 0.2.
    """
    return 1 - sell_trigger_bid


def enabled_assets(
    enable_eth: bool = False,
    enable_solana: bool = False,
    enable_xrp: bool = False
) -> Dict[Asset, bool]:
    return {
        Asset.BTC: True,
        Asset.ETH: enable_eth,
        Asset.SOL: enable_solana,
        Asset.XRP: enable_xrp,
    }


def build_opportunities(
    snapshot: MarketSnapshot,
    limit_price: float,
    enabled: Dict[Asset, bool]
) -> List[BuyOpportunity]:
    """
    One limit-buy opportunity per enabled token present in the snapshot.

    Order: BTC Up, BTC Down, ETH Up, ETH Down, SOL ..., XRP ...
    """
    opportunities = []
    elapsed = seconds_elapsed(snapshot.time_remaining)

    for asset in Asset:
        if not enabled.get(asset, False):
            continue

        data = snapshot.market(asset)
        for outcome, price in ((Outcome.UP, data.up), (Outcome.DOWN, data.down)):
            if price is None:
                continue
            opportunities.append(BuyOpportunity(
                condition_id=data.condition_id,
                token_id=price.token_id,
                token_kind=TokenKind.of(asset, outcome),
                bid_price=limit_price,
                period=snapshot.period,
                time_remaining=snapshot.time_remaining,
                time_elapsed=elapsed
            ))

    return opportunities


@dataclass(frozen=True)
class HedgePair:
    """Both tokens of one market, as seen in the current snapshot."""
    asset: Asset
    condition_id: str
    up_token_id: str
    down_token_id: str

    @property
    def up_kind(self) -> TokenKind:
        return TokenKind.of(self.asset, Outcome.UP)

    @property
    def down_kind(self) -> TokenKind:
        return TokenKind.of(self.asset, Outcome.DOWN)


def hedge_pairs(
    snapshot: MarketSnapshot,
    enabled: Dict[Asset, bool]
) -> List[HedgePair]:
    """Enabled markets with both tokens resolved, in emission order."""
    pairs = []
    for asset in Asset:
        if not enabled.get(asset, False):
            continue
        data = snapshot.market(asset)
        if data.up is None or data.down is None:
            continue
        pairs.append(HedgePair(
            asset=asset,
            condition_id=data.condition_id,
            up_token_id=data.up.token_id,
            down_token_id=data.down.token_id
        ))
    return pairs


@dataclass(frozen=True)
class HedgeDecision:
    filled_token_id: str
    filled_kind: TokenKind
    unfilled_token_id: str
    unfilled_kind: TokenKind
    filled_units: float
    trigger_price: float
    threshold: float
    unfilled_ask: Optional[float] = None
    unfilled_bid: Optional[float] = None

    @property
    def is_dust(self) -> bool:
        return self.filled_units < MIN_LIMIT_SELL_SHARES


def evaluate_hedge(
    pair: HedgePair,
    up_balance: float,
    down_balance: float,
    snapshot: MarketSnapshot,
    sell_trigger_bid: float
) -> Optional[HedgeDecision]:
    """
    Decide whether the stop-loss fires for one market.

    Fires iff exactly one side has a balance above the fill threshold and
    the other side's price (ask, else bid, else 0) is at or above
    1 - sell_trigger_bid. Returns None when it does not fire.
    """
    up_filled = up_balance > FILLED_BALANCE_THRESHOLD
    down_filled = down_balance > FILLED_BALANCE_THRESHOLD
    if up_filled == down_filled:
        return None

    if up_filled:
        filled_id, filled_kind, units = pair.up_token_id, pair.up_kind, up_balance
        unfilled_id, unfilled_kind = pair.down_token_id, pair.down_kind
    else:
        filled_id, filled_kind, units = pair.down_token_id, pair.down_kind, down_balance
        unfilled_id, unfilled_kind = pair.up_token_id, pair.up_kind

    price = snapshot.price_for(unfilled_id)
    ask = price.ask if price is not None else None
    bid = price.bid if price is not None else None
    trigger_price = price.trigger_price if price is not None else 0.0

    threshold = stop_loss_threshold(sell_trigger_bid)
    if trigger_price < threshold:
        return None

    return HedgeDecision(
        filled_token_id=filled_id,
        filled_kind=filled_kind,
        unfilled_token_id=unfilled_id,
        unfilled_kind=unfilled_kind,
        filled_units=round_units(units),
        trigger_price=trigger_price,
        threshold=threshold,
        unfilled_ask=ask,
        unfilled_bid=bid
    )
