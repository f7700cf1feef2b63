"""
Bot Configuration
==================

Configuration is read from a JSON file (default: config.json) with two
sections, "polymarket" and "trading". A missing file is created with the
defaults below.

Secrets left null in the JSON can come from the environment or .env,
using "__" for nesting, e.g. POLYMARKET__PRIVATE_KEY=0x...
"""

import json
from pathlib import Path
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class PolymarketConfig(BaseModel):
    """Exchange endpoints and credentials."""

    gamma_api_url: str = Field(
        default="https://gamma-api.polymarket.com",
        description="Gamma API for market discovery"
    )
    clob_api_url: str = Field(
        default="https://clob.polymarket.com",
        description="Polymarket CLOB API host"
    )
    api_key: Optional[str] = None
    api_secret: Optional[str] = None
    api_passphrase: Optional[str] = None
    private_key: Optional[str] = Field(
        default=None,
        description="Ethereum private key for signing"
    )
    proxy_wallet_address: Optional[str] = Field(
        default=None,
        description="Polymarket wallet address that holds funds"
    )
    signature_type: Optional[int] = Field(
        default=None,
        description="0 = EOA, 1 = email/magic proxy, 2 = browser proxy"
    )


class TradingConfig(BaseModel):
    """Dual limit-start strategy parameters."""

    check_interval_ms: int = Field(
        default=1000,
        description="Poll interval in milliseconds"
    )
    enable_eth_trading: bool = False
    enable_solana_trading: bool = False
    enable_xrp_trading: bool = False

    dual_limit_price: Optional[float] = Field(
        default=0.45,
        description="Limit price for Up/Down orders"
    )
    dual_limit_shares: Optional[float] = Field(
        default=1,
        description="Shares per limit order (both Up and Down)"
    )

    # ==========================================
    # HEDGE / STOP-LOSS
    # ==========================================
    dual_limit_SL_enabled: Optional[bool] = Field(
        default=True,
        description="Cancel the unfilled buy and sell the filled side when triggered"
    )
    dual_limit_SL_sell_trigger_bid: Optional[float] = Field(
        default=0.8,
        description="Trigger when the unfilled side's ask/bid >= 1 - this value"
    )
    dual_limit_SL_sell_at_price: Optional[float] = Field(
        default=0.85,
        description="Limit sell price for the filled token"
    )

    @property
    def limit_price(self) -> float:
        return self.dual_limit_price if self.dual_limit_price is not None else 0.45

    @property
    def limit_shares(self) -> float:
        return self.dual_limit_shares if self.dual_limit_shares is not None else 1

    @property
    def stop_loss_enabled(self) -> bool:
        return self.dual_limit_SL_enabled is not False

    @property
    def sell_trigger_bid(self) -> float:
        value = self.dual_limit_SL_sell_trigger_bid
        return value if value is not None else 0.8

    @property
    def sell_at_price(self) -> float:
        value = self.dual_limit_SL_sell_at_price
        return value if value is not None else 0.85

    @property
    def poll_interval_seconds(self) -> float:
        return max(0, self.check_interval_ms) / 1000


class BotConfig(BaseSettings):
    """Main configuration: JSON file values, then environment, then defaults."""

    polymarket: PolymarketConfig = Field(default_factory=PolymarketConfig)
    trading: TradingConfig = Field(default_factory=TradingConfig)

    # ==========================================
    # LOGGING
    # ==========================================
    log_level: str = Field(
        default="INFO",
        description="Logging level"
    )
    log_json: bool = Field(
        default=False,
        description="JSON log lines instead of console output"
    )
    log_file: Optional[str] = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore"
    )


def _drop_nulls(data: Any) -> Any:
    """Remove null entries so environment values can fill them."""
    if isinstance(data, dict):
        return {k: _drop_nulls(v) for k, v in data.items() if v is not None}
    return data


def default_config_dict() -> Dict[str, Any]:
    return {
        "polymarket": PolymarketConfig().model_dump(),
        "trading": TradingConfig().model_dump(),
    }


def load_config(path: Union[str, Path] = "config.json") -> BotConfig:
    """
    Load configuration from a JSON file.

    If the file does not exist it is written with the documented defaults
    and those defaults are returned.
    """
    config_path = Path(path)
    if not config_path.exists():
        config_path.write_text(json.dumps(default_config_dict(), indent=2))
        return BotConfig()

    data = json.loads(config_path.read_text(encoding="utf-8"))
    return BotConfig(**_drop_nulls(data))
