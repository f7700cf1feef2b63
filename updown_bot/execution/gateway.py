"""
Order Gateway
==============

Order placement, cancellation and balance queries against the Polymarket
CLOB, behind one interface with two implementations:

- SimulatedGateway: paper trading, orders are only recorded in memory
- LiveGateway: signed orders through py-clob-client

The implementation is chosen once at startup and injected into the Trader.
"""

import asyncio
import itertools
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

import structlog

from py_clob_client.client import ClobClient
from py_clob_client.clob_types import (
    ApiCreds,
    AssetType,
    BalanceAllowanceParams,
    MarketOrderArgs,
    OpenOrderParams,
    OrderArgs,
    OrderType,
    PartialCreateOrderOptions,
    PostOrdersArgs,
)
from py_clob_client.order_builder.constants import BUY, SELL

from updown_bot.errors import (
    AuthenticationError,
    CancellationError,
    PlacementError,
    TransportError,
)

logger = structlog.get_logger()

POLYGON_CHAIN_ID = 137
GATEWAY_TIMEOUT_SECONDS = 15.0

# Statuses the CLOB reports for an accepted order
CONFIRMED_STATUSES = ("live", "matched")

# Conditional token balances are reported in 1e-6 units
BALANCE_DECIMALS = 10 ** 6


@dataclass
class OrderResult:
    """One order acknowledgement, as returned by the CLOB."""
    order_id: str = ""
    status: str = ""
    success: Optional[bool] = None
    error_msg: str = ""

    @property
    def confirmed(self) -> bool:
        return (
            self.status in CONFIRMED_STATUSES
            and bool(self.order_id)
            and self.success is not False
        )

    @classmethod
    def failed(cls, error_msg: str = "") -> "OrderResult":
        return cls(order_id="", status="failed", success=False, error_msg=error_msg)

    @classmethod
    def from_response(cls, response) -> "OrderResult":
        if not isinstance(response, dict):
            return cls.failed(str(response))
        return cls(
            order_id=str(response.get("orderID") or response.get("orderId") or ""),
            status=str(response.get("status") or ""),
            success=response.get("success"),
            error_msg=str(response.get("errorMsg") or "")
        )


@dataclass(frozen=True)
class LimitOrderRequest:
    token_id: str
    side: str
    price: float
    size: float
    tick_size: str = "0.01"
    neg_risk: bool = False


class OrderGateway(ABC):
    """Order-execution capability consumed by the Trader."""

    is_live = False

    def __init__(self):
        # Stats
        self.orders_placed = 0
        self.orders_failed = 0
        self.orders_canceled = 0

    @abstractmethod
    async def place_limit_order(
        self,
        token_id: str,
        side: str,
        price: float,
        size: float,
        tick_size: str = "0.01",
        neg_risk: bool = False
    ) -> OrderResult:
        """Place one GTC limit order. Raises PlacementError."""

    @abstractmethod
    async def place_limit_orders_batch(
        self,
        requests: List[LimitOrderRequest]
    ) -> List[OrderResult]:
        """Place several limit orders in one request, results aligned with input."""

    @abstractmethod
    async def place_market_order(
        self,
        token_id: str,
        side: str,
        amount: float,
        order_type: str = "FAK"
    ) -> OrderResult:
        """BUY: amount in USD. SELL: amount in shares."""

    @abstractmethod
    async def cancel_order(self, order_id: str) -> None:
        """Raises CancellationError."""

    @abstractmethod
    async def get_balance(self, token_id: str) -> float:
        """Conditional token balance in shares; 0.0 when unavailable."""

    @abstractmethod
    async def get_open_orders(self, asset_id: Optional[str] = None) -> List[dict]:
        """Open orders, optionally filtered by token."""

    def get_stats(self) -> dict:
        return {
            "live": self.is_live,
            "orders_placed": self.orders_placed,
            "orders_failed": self.orders_failed,
            "orders_canceled": self.orders_canceled,
        }


class SimulatedGateway(OrderGateway):
    """
    Paper-trading gateway.

    Orders get synthetic IDs and rest in an in-memory book; nothing is
    sent to the exchange. Balances are whatever `balances` holds (0 by
    default, so nothing ever fills).
    """

    def __init__(self):
        super().__init__()
        self._ids = itertools.count(1)
        self.active_orders: Dict[str, dict] = {}
        self.balances: Dict[str, float] = {}

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}_{next(self._ids)}"

    def _record(self, order_id: str, **fields):
        self.active_orders[order_id] = {
            "id": order_id,
            "timestamp": datetime.now().isoformat(),
            **fields
        }
        self.orders_placed += 1

    async def place_limit_order(
        self,
        token_id: str,
        side: str,
        price: float,
        size: float,
        tick_size: str = "0.01",
        neg_risk: bool = False
    ) -> OrderResult:
        order_id = self._next_id("DRY")
        self._record(
            order_id,
            asset_id=token_id,
            side=side,
            price=str(price),
            original_size=str(size)
        )
        logger.info(
            "dry_run_limit_order",
            order_id=order_id,
            token_id=token_id[:16] + "...",
            side=side,
            price=price,
            size=size
        )
        return OrderResult(order_id=order_id, status="live", success=True)

    async def place_limit_orders_batch(
        self,
        requests: List[LimitOrderRequest]
    ) -> List[OrderResult]:
        results = []
        for req in requests:
            results.append(await self.place_limit_order(
                req.token_id, req.side, req.price, req.size, req.tick_size, req.neg_risk
            ))
        return results

    async def place_market_order(
        self,
        token_id: str,
        side: str,
        amount: float,
        order_type: str = "FAK"
    ) -> OrderResult:
        order_id = self._next_id("DRY_MKT")
        self.orders_placed += 1
        logger.info(
            "dry_run_market_order",
            order_id=order_id,
            token_id=token_id[:16] + "...",
            side=side,
            amount=amount,
            order_type=order_type
        )
        return OrderResult(order_id=order_id, status="matched", success=True)

    async def cancel_order(self, order_id: str) -> None:
        if self.active_orders.pop(order_id, None) is None:
            raise CancellationError(f"Unknown order {order_id}")
        self.orders_canceled += 1
        logger.info("dry_run_order_canceled", order_id=order_id)

    async def get_balance(self, token_id: str) -> float:
        return self.balances.get(token_id, 0.0)

    async def get_open_orders(self, asset_id: Optional[str] = None) -> List[dict]:
        return [
            order for order in self.active_orders.values()
            if asset_id is None or order["asset_id"] == asset_id
        ]


class LiveGateway(OrderGateway):
    """
    Live gateway over py-clob-client.

    ClobClient is synchronous, so every call runs in a worker thread and
    is bounded by `timeout` seconds.
    """

    is_live = True

    def __init__(self, clob_client: ClobClient, timeout: float = GATEWAY_TIMEOUT_SECONDS):
        super().__init__()
        self.client = clob_client
        self.timeout = timeout

    @classmethod
    async def connect(
        cls,
        host: str,
        private_key: str,
        funder: Optional[str] = None,
        signature_type: Optional[int] = None,
        api_key: Optional[str] = None,
        api_secret: Optional[str] = None,
        api_passphrase: Optional[str] = None,
        timeout: float = GATEWAY_TIMEOUT_SECONDS
    ) -> "LiveGateway":
        """
        Build an authenticated client and check the CLOB is reachable.

        Raises:
            AuthenticationError: bad key, credential derivation failed,
                or the CLOB did not answer
        """
        if not private_key:
            raise AuthenticationError("private_key is required for live trading")

        key = private_key if private_key.startswith("0x") else "0x" + private_key

        def _init() -> ClobClient:
            client = ClobClient(
                host=host,
                key=key,
                chain_id=POLYGON_CHAIN_ID,
                signature_type=signature_type if signature_type is not None else 0,
                funder=funder or None
            )
            if api_key and api_secret and api_passphrase:
                client.set_api_creds(ApiCreds(
                    api_key=api_key,
                    api_secret=api_secret,
                    api_passphrase=api_passphrase
                ))
            else:
                client.set_api_creds(client.create_or_derive_api_creds())
            client.get_ok()
            return client

        try:
            client = await asyncio.wait_for(asyncio.to_thread(_init), timeout)
        except asyncio.TimeoutError as e:
            raise AuthenticationError("CLOB authentication timed out") from e
        except Exception as e:
            raise AuthenticationError(str(e)) from e

        logger.info("polymarket_client_initialized", host=host, signature_type=signature_type)
        return cls(client, timeout=timeout)

    async def _call(self, fn, *args):
        try:
            return await asyncio.wait_for(asyncio.to_thread(fn, *args), self.timeout)
        except asyncio.TimeoutError as e:
            name = getattr(fn, "__name__", "clob_call")
            raise TransportError(f"{name} timed out after {self.timeout}s") from e

    @staticmethod
    def _side(side: str) -> str:
        return BUY if side.upper() == "BUY" else SELL

    def _sign_limit(self, req: LimitOrderRequest):
        return self.client.create_order(
            OrderArgs(
                token_id=req.token_id,
                price=req.price,
                size=req.size,
                side=self._side(req.side)
            ),
            PartialCreateOrderOptions(tick_size=req.tick_size, neg_risk=req.neg_risk)
        )

    async def place_limit_order(
        self,
        token_id: str,
        side: str,
        price: float,
        size: float,
        tick_size: str = "0.01",
        neg_risk: bool = False
    ) -> OrderResult:
        req = LimitOrderRequest(token_id, side, price, size, tick_size, neg_risk)

        def _post():
            return self.client.post_order(self._sign_limit(req), OrderType.GTC)

        try:
            response = await self._call(_post)
        except TransportError as e:
            self.orders_failed += 1
            raise PlacementError(str(e)) from e
        except Exception as e:
            self.orders_failed += 1
            logger.error("limit_order_exception", token_id=token_id[:16] + "...", error=str(e))
            raise PlacementError(str(e)) from e

        result = OrderResult.from_response(response)
        if result.order_id:
            self.orders_placed += 1
            logger.info(
                "limit_order_placed",
                order_id=result.order_id,
                status=result.status,
                side=side,
                price=price,
                size=size
            )
        else:
            self.orders_failed += 1
            logger.error("limit_order_failed", response=response)
        return result

    async def place_limit_orders_batch(
        self,
        requests: List[LimitOrderRequest]
    ) -> List[OrderResult]:
        if not requests:
            return []

        def _post_batch():
            args = [
                PostOrdersArgs(order=self._sign_limit(req), orderType=OrderType.GTC)
                for req in requests
            ]
            return self.client.post_orders(args)

        try:
            response = await self._call(_post_batch)
        except TransportError as e:
            self.orders_failed += len(requests)
            raise PlacementError(str(e)) from e
        except Exception as e:
            self.orders_failed += len(requests)
            logger.error("batch_order_exception", count=len(requests), error=str(e))
            raise PlacementError(str(e)) from e

        if isinstance(response, dict):
            response = [response]
        raw = list(response) if isinstance(response, list) else []

        results = [OrderResult.from_response(r) for r in raw[:len(requests)]]
        results += [OrderResult.failed("missing from batch response")] * (len(requests) - len(results))

        placed = sum(1 for r in results if r.order_id)
        self.orders_placed += placed
        self.orders_failed += len(results) - placed
        return results

    async def place_market_order(
        self,
        token_id: str,
        side: str,
        amount: float,
        order_type: str = "FAK"
    ) -> OrderResult:
        clob_type = OrderType.FOK if order_type.upper() == "FOK" else OrderType.FAK

        def _post():
            signed = self.client.create_market_order(MarketOrderArgs(
                token_id=token_id,
                amount=amount,
                side=self._side(side),
                order_type=clob_type
            ))
            return self.client.post_order(signed, clob_type)

        try:
            response = await self._call(_post)
        except Exception as e:
            self.orders_failed += 1
            logger.error("market_order_exception", token_id=token_id[:16] + "...", error=str(e))
            raise PlacementError(str(e)) from e

        result = OrderResult.from_response(response)
        if result.order_id:
            self.orders_placed += 1
        else:
            self.orders_failed += 1
        return result

    async def cancel_order(self, order_id: str) -> None:
        try:
            response = await self._call(self.client.cancel, order_id)
        except Exception as e:
            raise CancellationError(f"{order_id}: {e}") from e

        not_canceled = response.get("not_canceled") if isinstance(response, dict) else None
        if not_canceled and order_id in not_canceled:
            raise CancellationError(f"{order_id}: {not_canceled[order_id]}")

        self.orders_canceled += 1
        logger.info("order_canceled", order_id=order_id)

    async def get_balance(self, token_id: str) -> float:
        params = BalanceAllowanceParams(
            asset_type=AssetType.CONDITIONAL,
            token_id=token_id
        )
        try:
            response = await self._call(self.client.get_balance_allowance, params)
            return int(response.get("balance", 0)) / BALANCE_DECIMALS
        except Exception as e:
            logger.warning("get_balance_error", token_id=token_id[:16] + "...", error=str(e))
            return 0.0

    async def get_open_orders(self, asset_id: Optional[str] = None) -> List[dict]:
        params = OpenOrderParams(asset_id=asset_id) if asset_id else OpenOrderParams()
        try:
            orders = await self._call(self.client.get_orders, params)
        except TransportError:
            raise
        except Exception as e:
            raise TransportError(f"get_orders: {e}") from e
        return orders if orders else []
