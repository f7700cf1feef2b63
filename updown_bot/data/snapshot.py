"""
Snapshot Provider
==================

Builds one immutable MarketSnapshot per poll cycle from CLOB order books.
"""

import asyncio
import math
from typing import Dict, Iterable, Optional

import structlog

from updown_bot.data.models import (
    Asset,
    Market,
    MarketData,
    MarketSnapshot,
    TokenPrice,
)
from updown_bot.errors import BotError
from updown_bot.utils.clock import Clock, current_period, seconds_remaining

logger = structlog.get_logger()


def _prices(levels: Iterable) -> list:
    parsed = []
    for level in levels or []:
        raw = level.get("price") if isinstance(level, dict) else None
        try:
            price = float(raw)
        except (TypeError, ValueError):
            continue
        if math.isfinite(price):
            parsed.append(price)
    return parsed


def best_prices(book: dict) -> tuple:
    """
    (best_bid, best_ask) from an order book.

    Best bid is the highest bid, best ask the lowest ask, regardless of
    how the API sorts levels. A side with no levels is None.
    """
    bids = _prices(book.get("bids"))
    asks = _prices(book.get("asks"))
    return (
        max(bids) if bids else None,
        min(asks) if asks else None,
    )


async def fetch_token_price(api, token_id: str) -> TokenPrice:
    """Top of book for one token. A failed fetch yields an empty price."""
    try:
        book = await api.get_order_book(token_id)
    except BotError as e:
        logger.warning("order_book_fetch_error", token_id=token_id[:16] + "...", error=str(e))
        return TokenPrice(token_id=token_id)

    bid, ask = best_prices(book)
    return TokenPrice(token_id=token_id, bid=bid, ask=ask)


async def _maybe_price(api, token_id: Optional[str]) -> Optional[TokenPrice]:
    if not token_id:
        return None
    return await fetch_token_price(api, token_id)


async def fetch_market_data(api, asset: Asset, market: Market) -> MarketData:
    """Fetch Up and Down books for one market concurrently."""
    up_id, down_id = market.token_ids()
    up, down = await asyncio.gather(
        _maybe_price(api, up_id),
        _maybe_price(api, down_id)
    )
    return MarketData(
        asset=asset,
        condition_id=market.condition_id,
        up=up,
        down=down
    )


class SnapshotProvider:
    """
    Assembles MarketSnapshots for the currently resolved markets.

    Period and time remaining always come from the clock at assembly time.
    """

    def __init__(self, api, clock: Clock):
        self.api = api
        self.clock = clock
        self.snapshots_built = 0

    async def fetch(self, markets: Dict[Asset, Market]) -> MarketSnapshot:
        assets = [asset for asset in Asset if asset in markets]
        results = await asyncio.gather(*(
            fetch_market_data(self.api, asset, markets[asset])
            for asset in assets
        ))

        now = int(self.clock())
        period = current_period(now)
        self.snapshots_built += 1

        return MarketSnapshot(
            period=period,
            time_remaining=seconds_remaining(period, now),
            markets=dict(zip(assets, results))
        )


def _fmt_side(value: Optional[float]) -> str:
    return f"${value:.2f}" if value is not None else "N/A"


def _fmt_token(tp: Optional[TokenPrice]) -> str:
    if tp is None:
        return "N/A"
    return f"{_fmt_side(tp.bid)}/{_fmt_side(tp.ask)}"


def format_prices(snapshot: MarketSnapshot) -> str:
    """
    One-line price summary.

    Example:
        BTC: U$0.45/$0.46 D$0.53/$0.55 | ETH: UN/A DN/A | ... | 12m 3s
    """
    parts = []
    for asset in Asset:
        data = snapshot.market(asset)
        parts.append(f"{asset.value}: U{_fmt_token(data.up)} D{_fmt_token(data.down)}")

    minutes, seconds = divmod(snapshot.time_remaining, 60)
    parts.append(f"{minutes}m {seconds}s")
    return " | ".join(parts)
