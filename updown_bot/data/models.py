"""
Domain Models
==============

Markets, tokens, per-cycle snapshots and trade records for the
15-minute up/down markets.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

from updown_bot.errors import UnresolvedTokenError


class Asset(Enum):
    """Tracked assets, in opportunity emission order."""
    BTC = "BTC"
    ETH = "ETH"
    SOL = "SOL"
    XRP = "XRP"

    @property
    def slug_prefixes(self) -> Tuple[str, ...]:
        return _SLUG_PREFIXES[self]

    @property
    def include_previous_periods(self) -> bool:
        return self in (Asset.BTC, Asset.ETH)

    @property
    def display_name(self) -> str:
        return "Solana" if self is Asset.SOL else self.value

    @property
    def placeholder_id(self) -> str:
        return f"dummy_{self.slug_prefixes[0]}_fallback"


_SLUG_PREFIXES = {
    Asset.BTC: ("btc",),
    Asset.ETH: ("eth",),
    Asset.SOL: ("solana", "sol"),
    Asset.XRP: ("xrp",),
}


class Outcome(Enum):
    UP = "Up"
    DOWN = "Down"


def normalize_outcome(label: Optional[str]) -> Outcome:
    """
    Map an outcome label to Up or Down.

    "Up"/"1" -> UP, "Down"/"0" -> DOWN (case-insensitive substring match
    on up/down). Raises UnresolvedTokenError when the label matches
    neither or both.
    """
    text = (label or "").strip().lower()
    is_up = "up" in text or text == "1"
    is_down = "down" in text or text == "0"

    if is_up and not is_down:
        return Outcome.UP
    if is_down and not is_up:
        return Outcome.DOWN

    raise UnresolvedTokenError(f"Cannot resolve outcome label {label!r}")


class TokenKind(Enum):
    """One side of one asset's market."""
    BTC_UP = (Asset.BTC, Outcome.UP)
    BTC_DOWN = (Asset.BTC, Outcome.DOWN)
    ETH_UP = (Asset.ETH, Outcome.UP)
    ETH_DOWN = (Asset.ETH, Outcome.DOWN)
    SOL_UP = (Asset.SOL, Outcome.UP)
    SOL_DOWN = (Asset.SOL, Outcome.DOWN)
    XRP_UP = (Asset.XRP, Outcome.UP)
    XRP_DOWN = (Asset.XRP, Outcome.DOWN)

    @classmethod
    def of(cls, asset: Asset, outcome: Outcome) -> "TokenKind":
        return cls((asset, outcome))

    @property
    def asset(self) -> Asset:
        return self.value[0]

    @property
    def outcome(self) -> Outcome:
        return self.value[1]

    @property
    def display_name(self) -> str:
        """e.g. "BTC Up", "SOL Down"."""
        return f"{self.asset.value} {self.outcome.value}"

    @property
    def opposite(self) -> "TokenKind":
        other = Outcome.DOWN if self.outcome is Outcome.UP else Outcome.UP
        return TokenKind.of(self.asset, other)


@dataclass(frozen=True)
class Token:
    token_id: str
    outcome: str
    price: Optional[float] = None


@dataclass(frozen=True)
class Market:
    """A Gamma/CLOB market as resolved for one period."""
    condition_id: str
    slug: str
    question: str
    active: bool
    closed: bool
    tokens: Tuple[Token, ...] = ()
    end_date: str = ""

    def token_ids(self) -> Tuple[Optional[str], Optional[str]]:
        """
        (up_token_id, down_token_id).

        A side is None unless exactly one token resolves to it; tokens with
        unresolvable labels are ignored.
        """
        found: Dict[Outcome, List[str]] = {Outcome.UP: [], Outcome.DOWN: []}
        for token in self.tokens:
            try:
                found[normalize_outcome(token.outcome)].append(token.token_id)
            except UnresolvedTokenError:
                continue

        up = found[Outcome.UP]
        down = found[Outcome.DOWN]
        return (
            up[0] if len(up) == 1 and up[0] else None,
            down[0] if len(down) == 1 and down[0] else None,
        )

    @property
    def is_tradable(self) -> bool:
        up, down = self.token_ids()
        return self.active and not self.closed and up is not None and down is not None


def disabled_market(asset: Asset) -> Market:
    """Placeholder used when an asset is disabled or discovery fails."""
    return Market(
        condition_id=asset.placeholder_id,
        slug=f"{asset.slug_prefixes[0]}-updown-15m-fallback",
        question=f"{asset.display_name} Trading Disabled",
        active=False,
        closed=True,
    )


@dataclass(frozen=True)
class TokenPrice:
    """Top of book for one token. None means that side of the book is empty."""
    token_id: str
    bid: Optional[float] = None
    ask: Optional[float] = None

    @property
    def trigger_price(self) -> float:
        """Ask, falling back to bid, falling back to 0."""
        if self.ask is not None:
            return self.ask
        if self.bid is not None:
            return self.bid
        return 0.0


@dataclass(frozen=True)
class MarketData:
    asset: Asset
    condition_id: str
    up: Optional[TokenPrice] = None
    down: Optional[TokenPrice] = None

    def price_for(self, token_id: str) -> Optional[TokenPrice]:
        for tp in (self.up, self.down):
            if tp is not None and tp.token_id == token_id:
                return tp
        return None


@dataclass(frozen=True)
class MarketSnapshot:
    period: int
    time_remaining: int
    markets: Dict[Asset, MarketData] = field(default_factory=dict)

    def market(self, asset: Asset) -> MarketData:
        data = self.markets.get(asset)
        if data is None:
            return MarketData(asset=asset, condition_id=asset.placeholder_id)
        return data

    def price_for(self, token_id: str) -> Optional[TokenPrice]:
        for data in self.markets.values():
            tp = data.price_for(token_id)
            if tp is not None:
                return tp
        return None


@dataclass(frozen=True)
class BuyOpportunity:
    condition_id: str
    token_id: str
    token_kind: TokenKind
    bid_price: float
    period: int
    time_remaining: int
    time_elapsed: int
    use_market_order: bool = False


@dataclass
class PendingTrade:
    """In-process record of an attempted position. Never deleted."""
    token_id: str
    condition_id: str
    token_kind: TokenKind
    period: int
    sold: bool = False
    order_id: Optional[str] = None
    units: Optional[float] = None
