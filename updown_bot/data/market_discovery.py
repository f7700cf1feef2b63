"""
Market Discovery
=================

Resolves the active 15-minute up/down market for each tracked asset.

Slug pattern: {prefix}-updown-15m-{period_start}, e.g. btc-updown-15m-1737499500
"""

from typing import Dict, Optional, Set

import structlog

from updown_bot.data.models import Asset, Market, disabled_market
from updown_bot.errors import BotError, DiscoveryError
from updown_bot.utils.clock import PERIOD_DURATION, current_period, now_seconds

logger = structlog.get_logger()

# How many earlier periods to try when the current slug has no live market
PREVIOUS_PERIOD_LOOKBACK = 3

# ETH is resolved before BTC so BTC never claims an ETH condition ID
DISCOVERY_ORDER = (Asset.ETH, Asset.BTC, Asset.SOL, Asset.XRP)


def build_slug(prefix: str, period: int) -> str:
    return f"{prefix}-updown-15m-{period}"


def candidate_slugs(asset: Asset, now: int):
    """Yield slugs to try for an asset, in priority order."""
    rounded = current_period(now)
    for prefix in asset.slug_prefixes:
        yield build_slug(prefix, rounded)
        if asset.include_previous_periods:
            for offset in range(1, PREVIOUS_PERIOD_LOOKBACK + 1):
                yield build_slug(prefix, rounded - offset * PERIOD_DURATION)


async def discover_market(
    api,
    asset: Asset,
    now: int,
    seen_ids: Set[str]
) -> Market:
    """
    Find the first active, open, unclaimed market for an asset.

    Args:
        api: Market data client exposing get_market_by_slug()
        asset: Asset to resolve
        now: Unix time used to derive the period
        seen_ids: Condition IDs already claimed in this discovery pass

    Raises:
        DiscoveryError: nothing matched across all prefixes and periods
    """
    tried = []
    for slug in candidate_slugs(asset, now):
        tried.append(slug)
        try:
            market = await api.get_market_by_slug(slug)
        except (BotError, ValueError) as e:
            logger.debug("slug_lookup_failed", asset=asset.value, slug=slug, error=str(e))
            continue

        if market.condition_id in seen_ids:
            logger.debug("market_already_claimed", slug=slug, condition_id=market.condition_id)
            continue

        if market.active and not market.closed:
            logger.info(
                "market_found",
                asset=asset.display_name,
                slug=market.slug,
                condition_id=market.condition_id
            )
            return market

    raise DiscoveryError(
        f"Could not find active {asset.display_name} 15-minute up/down market "
        f"(tried: {', '.join(asset.slug_prefixes)}; {len(tried)} slugs)"
    )


async def discover_markets(
    api,
    enabled: Dict[Asset, bool],
    now: Optional[int] = None
) -> Dict[Asset, Market]:
    """
    Resolve markets for all tracked assets.

    Disabled assets get a placeholder without any network call. An asset
    whose discovery fails degrades to the same placeholder, BTC included.
    """
    if now is None:
        now = now_seconds()

    seen_ids: Set[str] = set()
    markets: Dict[Asset, Market] = {}

    for asset in DISCOVERY_ORDER:
        if not enabled.get(asset, False):
            markets[asset] = disabled_market(asset)
            continue

        try:
            market = await discover_market(api, asset, now, seen_ids)
        except DiscoveryError as e:
            logger.warning(
                "market_discovery_fallback",
                asset=asset.display_name,
                error=str(e)
            )
            market = disabled_market(asset)

        seen_ids.add(market.condition_id)
        markets[asset] = market

    return markets
