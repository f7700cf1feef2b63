"""
Error Taxonomy
===============

Exceptions raised at the market-data and order-gateway boundaries.

Only AuthenticationError in live mode is allowed to stop the process;
everything else is contained to the cycle or action that raised it.
"""


class BotError(Exception):
    """Base exception for the up/down bot."""
    pass


class TransportError(BotError):
    """An external call failed or timed out."""
    pass


class MarketNotFoundError(BotError):
    """No market exists for a slug."""
    pass


class DiscoveryError(BotError):
    """No active market was found for an asset in the current period."""
    pass


class UnresolvedTokenError(BotError):
    """A token outcome label does not map to exactly one of Up/Down."""
    pass


class AuthenticationError(BotError):
    """Credentials are missing/invalid or the CLOB is unreachable at startup."""
    pass


class PlacementError(BotError):
    """An order placement attempt failed."""
    pass


class HedgeSellError(PlacementError):
    """The hedge limit sell did not return an order ID."""
    pass


class CancellationError(BotError):
    """An order cancellation failed."""
    pass
