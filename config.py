"""Runtime settings read from the environment (and a ``.env`` file if present).

Secrets are required unless the simulated exchange is selected. Anything that
fails validation raises ``ConfigInvalid`` and the process must not start.
"""

import os
from decimal import Decimal
from typing import Literal, Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ValidationError, model_validator

from errors import ConfigInvalid

# env var -> Settings field
ENV_FIELDS = {
    "BINANCE_API_KEY": "api_key",
    "BINANCE_API_SECRET": "api_secret",
    "TRADER_EXCHANGE": "exchange",
    "TRADER_SYMBOL": "symbol",
    "TRADER_BUY_QUANTITY": "buy_quantity",
    "TRADER_RSI_PERIOD": "rsi_period",
    "TRADER_OVERSOLD": "oversold",
    "TRADER_OVERBOUGHT": "overbought",
    "TRADER_POLL_INTERVAL": "poll_interval",
    "TRADER_TIMEFRAME": "timeframe",
    "TRADER_HISTORY_LIMIT": "history_limit",
    "TRADER_MODE": "mode",
    "TRADER_TESTNET": "testnet",
    "LOG_LEVEL": "log_level",
    "LOG_FILE": "log_file",
}


class Settings(BaseModel):
    api_key: Optional[str] = None
    api_secret: Optional[str] = None
    exchange: Literal["binance", "simulated"] = "binance"
    symbol: str = "BTC/USDT"
    buy_quantity: Decimal = Decimal("0.00130")  # ~500 USDT
    rsi_period: int = 14
    oversold: float = 30.0
    overbought: float = 69.0
    poll_interval: float = 300.0  # seconds
    timeframe: str = "5m"
    history_limit: int = 100
    mode: Literal["polling", "streaming"] = "polling"
    testnet: bool = False
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @model_validator(mode="after")
    def _check(self) -> "Settings":
        if self.exchange == "binance" and not (self.api_key and self.api_secret):
            raise ValueError("BINANCE_API_KEY and BINANCE_API_SECRET must be set")
        if "/" not in self.symbol:
            raise ValueError(f"symbol must look like BASE/QUOTE, got {self.symbol}")
        if self.rsi_period < 2:
            raise ValueError("rsi_period must be >= 2")
        if self.history_limit < self.rsi_period + 1:
            raise ValueError("history_limit must be at least rsi_period + 1")
        if self.buy_quantity <= 0:
            raise ValueError("buy_quantity must be > 0")
        if self.poll_interval <= 0:
            raise ValueError("poll_interval must be > 0")
        for name in ("oversold", "overbought"):
            value = getattr(self, name)
            if not 0.0 <= value <= 100.0:
                raise ValueError(f"{name} must be within [0, 100], got {value}")
        if self.oversold >= self.overbought:
            raise ValueError(
                f"oversold ({self.oversold}) must be below overbought ({self.overbought})"
            )
        return self

    @property
    def base_asset(self) -> str:
        return self.symbol.split("/")[0]


def load_settings(env: Optional[Mapping[str, str]] = None, dotenv: bool = True) -> Settings:
    """Build ``Settings`` from ``env`` (defaults to ``os.environ``)."""
    if env is None:
        if dotenv:
            load_dotenv()
        env = os.environ
    values = {}
    for key, field in ENV_FIELDS.items():
        raw = env.get(key)
        if raw is not None and raw.strip() != "":
            values[field] = raw.strip()
    try:
        return Settings(**values)
    except ValidationError as exc:
        raise ConfigInvalid(str(exc)) from exc
