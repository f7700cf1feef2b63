"""
Trader
=======

Owns the in-memory trade state and executes the dual-limit order flow:

    NoPosition -> LimitBuyPending -> Filled / Unfilled-Cancelled / Sold

Pending trades are keyed by (period, token_id, kind) where kind is
"limit" (resting limit buy) or "hedge" (hedge market buy). Entries are
never deleted; old periods simply stop matching active-position checks.
"""

import asyncio
from typing import Dict, List, Optional, Tuple

import structlog

from updown_bot.data.models import BuyOpportunity, MarketSnapshot, PendingTrade, TokenKind
from updown_bot.errors import (
    BotError,
    CancellationError,
    HedgeSellError,
    PlacementError,
)
from updown_bot.execution.gateway import LimitOrderRequest, OrderGateway, OrderResult
from updown_bot.strategy.dual_limit import (
    MIN_LIMIT_SELL_SHARES,
    TICK_SIZE,
    HedgePair,
    evaluate_hedge,
    round_price,
    round_size,
)

logger = structlog.get_logger()

LIMIT_SELL_MAX_RETRIES = 5
LIMIT_SELL_RETRY_DELAY_SECONDS = 3.0

TradeKey = Tuple[int, str, str]


def _short(token_id: str) -> str:
    return token_id[:16] + "..."


class Trader:
    """
    Places and tracks the per-period limit buys and hedge sells.

    All state mutation happens on the caller's task between awaits, so no
    locking is needed as long as one control loop drives the Trader.
    """

    def __init__(
        self,
        gateway: OrderGateway,
        sell_max_retries: int = LIMIT_SELL_MAX_RETRIES,
        sell_retry_delay: float = LIMIT_SELL_RETRY_DELAY_SECONDS
    ):
        """
        Args:
            gateway: SimulatedGateway or LiveGateway
            sell_max_retries: Attempts per hedge limit sell
            sell_retry_delay: Seconds between hedge sell attempts
        """
        self.gateway = gateway
        self.sell_max_retries = sell_max_retries
        self.sell_retry_delay = sell_retry_delay

        self._pending: Dict[TradeKey, PendingTrade] = {}

        # Stats
        self.buys_confirmed = 0
        self.buys_not_confirmed = 0
        self.batch_fallbacks = 0
        self.cancels = 0
        self.hedges_triggered = 0
        self.hedge_sells_placed = 0

    @property
    def pending_trades(self) -> Dict[TradeKey, PendingTrade]:
        return self._pending

    def _record(
        self,
        opp: BuyOpportunity,
        kind: str,
        order_id: Optional[str] = None
    ) -> PendingTrade:
        trade = PendingTrade(
            token_id=opp.token_id,
            condition_id=opp.condition_id,
            token_kind=opp.token_kind,
            period=opp.period,
            order_id=order_id or None
        )
        self._pending[(opp.period, opp.token_id, kind)] = trade
        return trade

    def has_active_position(self, period: int, token_kind: TokenKind) -> bool:
        """True if an unsold trade exists for this period and token kind."""
        return any(
            trade.period == period and trade.token_kind is token_kind and not trade.sold
            for trade in self._pending.values()
        )

    def get_pending_limit_trade(self, period: int, token_id: str) -> Optional[PendingTrade]:
        return self._pending.get((period, token_id, "limit"))

    def has_pending_limit_orders_for_period(
        self,
        period: int,
        up_token_id: str,
        down_token_id: str
    ) -> bool:
        return (
            self.get_pending_limit_trade(period, up_token_id) is not None
            or self.get_pending_limit_trade(period, down_token_id) is not None
        )

    def mark_trade_sold(self, period: int, token_id: str) -> None:
        for trade in self._pending.values():
            if trade.period == period and trade.token_id == token_id:
                trade.sold = True

    # ------------------------------------------------------------------
    # Buys
    # ------------------------------------------------------------------

    def _limit_request(self, opp: BuyOpportunity, limit_price: float, shares: float) -> LimitOrderRequest:
        return LimitOrderRequest(
            token_id=opp.token_id,
            side="BUY",
            price=round_price(limit_price),
            size=round_size(shares),
            tick_size=TICK_SIZE,
            neg_risk=False
        )

    async def execute_limit_buy(
        self,
        opp: BuyOpportunity,
        limit_price: float,
        shares: float
    ) -> PendingTrade:
        """Place a single resting limit buy and record it."""
        req = self._limit_request(opp, limit_price, shares)
        logger.info(
            "placing_limit_buy",
            token=opp.token_kind.display_name,
            token_id=opp.token_id,
            price=req.price,
            size=req.size,
            investment=f"${req.size * opp.bid_price:.2f}"
        )

        result = await self.gateway.place_limit_order(
            req.token_id, req.side, req.price, req.size, req.tick_size, req.neg_risk
        )
        trade = self._record(opp, "limit", result.order_id)
        self._log_confirmation(opp, result)
        return trade

    async def _place_individually(self, requests: List[LimitOrderRequest], opps: List[BuyOpportunity]) -> List[OrderResult]:
        results = []
        for req, opp in zip(requests, opps):
            try:
                results.append(await self.gateway.place_limit_order(
                    req.token_id, req.side, req.price, req.size, req.tick_size, req.neg_risk
                ))
            except BotError as e:
                logger.error("limit_buy_retry_failed", token=opp.token_kind.display_name, error=str(e))
                results.append(OrderResult.failed(str(e)))
        return results

    async def execute_limit_buy_batch(
        self,
        opportunities: List[BuyOpportunity],
        limit_price: float,
        shares_per_order: float
    ) -> List[PendingTrade]:
        """
        Place all limit buys for a period in one batched request.

        Opportunities that already have an active position are skipped.
        If the batch fails as a whole (raises, or every order ID comes back
        empty) each order is retried on its own.
        """
        to_place = [
            opp for opp in opportunities
            if not self.has_active_position(opp.period, opp.token_kind)
        ]
        if not to_place:
            return []

        requests = [self._limit_request(opp, limit_price, shares_per_order) for opp in to_place]
        logger.info(
            "placing_limit_buy_batch",
            count=len(to_place),
            orders=[f"{opp.token_kind.display_name}: ${req.price} x {req.size}" for opp, req in zip(to_place, requests)]
        )

        try:
            results = await self.gateway.place_limit_orders_batch(requests)
        except PlacementError as e:
            logger.warning("batch_order_failed", error=str(e))
            results = []

        if not results or all(not r.order_id for r in results):
            self.batch_fallbacks += 1
            logger.warning("batch_no_order_ids", action="retrying each order individually")
            results = await self._place_individually(requests, to_place)
        else:
            logger.info("batch_sent", count=len(results))

        trades = []
        confirmed = 0
        for i, opp in enumerate(to_place):
            result = results[i] if i < len(results) else OrderResult.failed()
            trades.append(self._record(opp, "limit", result.order_id))
            if self._log_confirmation(opp, result):
                confirmed += 1

        if confirmed < len(to_place):
            logger.warning(
                "batch_result",
                confirmed=confirmed,
                not_confirmed=len(to_place) - confirmed
            )
        return trades

    def _log_confirmation(self, opp: BuyOpportunity, result: OrderResult) -> bool:
        name = opp.token_kind.display_name
        if result.confirmed:
            self.buys_confirmed += 1
            logger.info("limit_buy_confirmed", token=name, order_id=result.order_id, status=result.status)
            return True

        self.buys_not_confirmed += 1
        logger.warning(
            "limit_buy_not_confirmed",
            token=name,
            status=result.status or "unknown",
            order_id=result.order_id or None,
            error=result.error_msg or None
        )
        return False

    async def execute_market_buy(self, opp: BuyOpportunity, amount_usd: float) -> PendingTrade:
        """FAK market buy for a hedge, sized in USD."""
        result = await self.gateway.place_market_order(opp.token_id, "BUY", amount_usd, "FAK")
        logger.info(
            "hedge_market_buy_placed",
            token=opp.token_kind.display_name,
            amount=f"${amount_usd:.2f}",
            order_id=result.order_id
        )
        return self._record(opp, "hedge", result.order_id)

    # ------------------------------------------------------------------
    # Fills, cancels, sells
    # ------------------------------------------------------------------

    async def get_balance(self, token_id: str) -> float:
        return await self.gateway.get_balance(token_id)

    async def get_open_orders_for_token(self, token_id: str) -> List[dict]:
        try:
            return await self.gateway.get_open_orders(token_id)
        except BotError as e:
            logger.warning("get_open_orders_error", token_id=_short(token_id), error=str(e))
            return []

    async def cancel_pending_limit_buy(self, period: int, token_id: str) -> bool:
        """
        Cancel the resting limit buy for (period, token).

        Uses the stored order ID, otherwise the first open BUY order on the
        token. Returns False if there was nothing to cancel.

        Raises:
            CancellationError: the cancel request failed
        """
        trade = self.get_pending_limit_trade(period, token_id)
        if trade is not None and trade.order_id:
            order_id = trade.order_id
            await self.gateway.cancel_order(order_id)
            trade.order_id = None
            self.cancels += 1
            logger.info("limit_buy_cancelled", order_id=order_id, token_id=_short(token_id))
            return True

        try:
            open_orders = await self.gateway.get_open_orders(token_id)
        except BotError as e:
            raise CancellationError(f"open order lookup failed: {e}") from e

        for order in open_orders:
            if (order.get("side") or "").upper() == "BUY" and order.get("asset_id") == token_id:
                await self.gateway.cancel_order(order["id"])
                self.cancels += 1
                logger.info("limit_buy_cancelled", order_id=order["id"], token_id=_short(token_id))
                return True

        logger.warning("no_open_limit_order", token_id=_short(token_id))
        return False

    async def execute_limit_sell(
        self,
        token_id: str,
        token_kind: TokenKind,
        price: float,
        size: float,
        period: Optional[int] = None
    ) -> OrderResult:
        """
        Limit sell of a filled position.

        Raises:
            HedgeSellError: no order ID came back
            PlacementError: the request failed
        """
        result = await self.gateway.place_limit_order(
            token_id, "SELL", round_price(price), size, TICK_SIZE, False
        )
        if not result.order_id.strip():
            raise HedgeSellError(
                f"Limit sell failed: no order ID returned ({result.error_msg or result.status})"
            )

        logger.info(
            "limit_sell_placed",
            token=token_kind.display_name,
            size=size,
            price=f"${price:.2f}",
            order_id=result.order_id
        )
        if period is not None:
            self.mark_trade_sold(period, token_id)
        return result

    async def execute_sell(
        self,
        token_id: str,
        size: float,
        token_kind: TokenKind,
        period: int
    ) -> OrderResult:
        """FAK stop-loss sell of `size` shares."""
        result = await self.gateway.place_market_order(token_id, "SELL", size, "FAK")
        logger.info("stop_loss_sell_placed", token=token_kind.display_name, size=size, order_id=result.order_id)
        self.mark_trade_sold(period, token_id)
        return result

    async def check_and_hedge(
        self,
        pair: HedgePair,
        snapshot: MarketSnapshot,
        sell_trigger_bid: float,
        sell_at_price: float
    ) -> bool:
        """
        Run the stop-loss rule for one market.

        Returns True only when the hedge sell was placed, i.e. when the
        (period, market) pair should not be checked again.
        """
        up_balance = await self.get_balance(pair.up_token_id)
        down_balance = await self.get_balance(pair.down_token_id)

        decision = evaluate_hedge(pair, up_balance, down_balance, snapshot, sell_trigger_bid)
        if decision is None:
            return False

        if decision.is_dust:
            logger.info(
                "limit_sell_skipped_dust",
                asset=pair.asset.value,
                filled=f"{decision.filled_units:.6f}",
                minimum=MIN_LIMIT_SELL_SHARES
            )
            return False

        self.hedges_triggered += 1
        logger.info(
            "hedge_triggered",
            asset=pair.asset.value,
            unfilled_price=f"${decision.trigger_price:.2f}",
            threshold=f"${decision.threshold:.2f}",
            ask=decision.unfilled_ask,
            bid=decision.unfilled_bid,
            sell=decision.filled_kind.display_name,
            size=f"{decision.filled_units:.6f}",
            price=f"${sell_at_price:.2f}"
        )

        try:
            await self.cancel_pending_limit_buy(snapshot.period, decision.unfilled_token_id)
        except CancellationError as e:
            logger.warning("cancel_unfilled_failed", asset=pair.asset.value, error=str(e))

        for attempt in range(1, self.sell_max_retries + 1):
            try:
                await self.execute_limit_sell(
                    decision.filled_token_id,
                    decision.filled_kind,
                    sell_at_price,
                    decision.filled_units,
                    period=snapshot.period
                )
            except PlacementError as e:
                logger.warning(
                    "limit_sell_retry",
                    attempt=f"{attempt}/{self.sell_max_retries}",
                    error=str(e)
                )
                if attempt < self.sell_max_retries:
                    await asyncio.sleep(self.sell_retry_delay)
                continue

            self.hedge_sells_placed += 1
            return True

        logger.warning(
            "limit_sell_deferred",
            asset=pair.asset.value,
            attempts=self.sell_max_retries,
            action="will retry next poll"
        )
        return False

    def get_stats(self) -> dict:
        trades = list(self._pending.values())
        return {
            "pending_trades": len(trades),
            "open_positions": sum(1 for t in trades if not t.sold),
            "buys_confirmed": self.buys_confirmed,
            "buys_not_confirmed": self.buys_not_confirmed,
            "batch_fallbacks": self.batch_fallbacks,
            "cancels": self.cancels,
            "hedges_triggered": self.hedges_triggered,
            "hedge_sells_placed": self.hedge_sells_placed,
        }
