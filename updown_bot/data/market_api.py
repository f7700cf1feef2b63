"""
Market Data Client
===================

REST access to the Polymarket Gamma API (event/market lookup by slug)
and the CLOB API (market tokens, order books).
"""

import asyncio
import json
import socket
from typing import Any, Dict, List, Optional

import aiohttp
import structlog

from updown_bot.data.models import Market, Token
from updown_bot.errors import MarketNotFoundError, TransportError

logger = structlog.get_logger()

GAMMA_TIMEOUT_SECONDS = 15
CLOB_TIMEOUT_SECONDS = 10


def _parse_list(value: Any) -> List[Any]:
    """Gamma returns some arrays as JSON-encoded strings."""
    if isinstance(value, list):
        return value
    if isinstance(value, str) and value:
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            return []
        return parsed if isinstance(parsed, list) else []
    return []


def _parse_tokens(raw: Dict[str, Any]) -> List[Token]:
    tokens = []
    for t in raw.get("tokens") or []:
        if not isinstance(t, dict):
            continue
        tokens.append(Token(
            token_id=str(t.get("token_id") or t.get("tokenId") or ""),
            outcome=str(t.get("outcome") or ""),
            price=float(t["price"]) if t.get("price") not in (None, "") else None,
        ))
    if tokens:
        return tokens

    # Gamma shape: parallel "outcomes" / "clobTokenIds" arrays
    outcomes = _parse_list(raw.get("outcomes"))
    token_ids = _parse_list(raw.get("clobTokenIds"))
    return [
        Token(token_id=str(token_id), outcome=str(outcome))
        for outcome, token_id in zip(outcomes, token_ids)
    ]


class MarketDataClient:
    """
    Async client for market lookups and order books.

    One aiohttp session is kept for the lifetime of the client; call
    `close()` (or use it as an async context manager) when done.
    """

    def __init__(
        self,
        gamma_api_url: str = "https://gamma-api.polymarket.com",
        clob_api_url: str = "https://clob.polymarket.com",
        session: Optional[aiohttp.ClientSession] = None
    ):
        self.gamma_url = gamma_api_url.rstrip("/")
        self.clob_url = clob_api_url.rstrip("/")
        self._session = session

        # Stats
        self.requests_made = 0
        self.request_errors = 0

    async def __aenter__(self) -> "MarketDataClient":
        return self

    async def __aexit__(self, *exc_info):
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                connector=aiohttp.TCPConnector(family=socket.AF_INET),
                headers={"Content-Type": "application/json"}
            )
        return self._session

    async def close(self):
        if self._session is not None and not self._session.closed:
            await self._session.close()

    async def _get_json(
        self,
        url: str,
        timeout: float,
        params: Optional[dict] = None
    ) -> Any:
        """
        GET a JSON document.

        Raises:
            MarketNotFoundError: HTTP 404
            TransportError: any other failure, including a non-JSON body
        """
        self.requests_made += 1
        try:
            async with self._get_session().get(
                url,
                params=params,
                timeout=aiohttp.ClientTimeout(total=timeout)
            ) as resp:
                if resp.status == 404:
                    raise MarketNotFoundError(url)
                if resp.status != 200:
                    self.request_errors += 1
                    raise TransportError(f"HTTP {resp.status} from {url}")
                return await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            self.request_errors += 1
            raise TransportError(f"{url}: {e!r}") from e

    async def get_market_by_slug(self, slug: str) -> Market:
        """
        Resolve a market from its event slug.

        Returns the first market of the event. Tokens come from the Gamma
        payload when present, otherwise from the CLOB market endpoint.

        Raises:
            MarketNotFoundError: no event or no markets for the slug
            TransportError: request failed or timed out
        """
        data = await self._get_json(
            f"{self.gamma_url}/events/slug/{slug}",
            timeout=GAMMA_TIMEOUT_SECONDS
        )
        markets = data.get("markets") if isinstance(data, dict) else None
        if not markets:
            raise MarketNotFoundError(f"No markets for slug {slug}")

        raw = markets[0]
        condition_id = str(raw.get("conditionId") or raw.get("condition_id") or "")
        tokens = _parse_tokens(raw)
        if not tokens and condition_id:
            tokens = await self.get_market_tokens(condition_id)

        return Market(
            condition_id=condition_id,
            slug=str(raw.get("slug") or slug),
            question=str(raw.get("question") or ""),
            active=bool(raw.get("active")),
            closed=bool(raw.get("closed")),
            tokens=tuple(tokens),
            end_date=str(raw.get("endDate") or raw.get("endDateIso") or "")
        )

    async def get_market_tokens(self, condition_id: str) -> List[Token]:
        """CLOB market tokens (token_id + outcome) for a condition ID."""
        data = await self._get_json(
            f"{self.clob_url}/markets/{condition_id}",
            timeout=CLOB_TIMEOUT_SECONDS
        )
        return _parse_tokens(data if isinstance(data, dict) else {})

    async def get_order_book(self, token_id: str) -> dict:
        """
        Order book for a token: {"bids": [...], "asks": [...]}.

        Levels are {"price": str, "size": str}. A book-level error payload
        is returned as an empty book.
        """
        data = await self._get_json(
            f"{self.clob_url}/book",
            timeout=CLOB_TIMEOUT_SECONDS,
            params={"token_id": token_id}
        )
        if not isinstance(data, dict) or data.get("error"):
            return {"bids": [], "asks": []}

        bids = data.get("bids")
        asks = data.get("asks")
        return {
            "bids": bids if isinstance(bids, list) else [],
            "asks": asks if isinstance(asks, list) else [],
        }

    def get_stats(self) -> dict:
        return {
            "requests_made": self.requests_made,
            "request_errors": self.request_errors
        }
