"""
Polymarket Dual Limit-Start Bot
===============================

Trades Polymarket's 15-minute up/down markets (BTC, ETH, SOL, XRP):
resting limit buys on both sides at period start, with a single
stop-loss limit sell when only one side fills.

IMPORTANT: Run in simulation mode (the default) until validated!
"""

__version__ = "1.0.0"
