# errors.py
"""Error kinds raised by the trader.

``ConfigInvalid`` is fatal at startup. Everything else is recovered by the
executor: the current tick is abandoned with a log line and the loop moves on.
"""


class TraderError(Exception):
    """Base class for every error the trader raises on purpose."""


class InsufficientData(TraderError):
    """The price window does not hold ``period + 1`` closes yet."""


class InsufficientBalance(TraderError):
    """A sell sized down to zero after lot-step truncation."""


class UpstreamUnavailable(TraderError):
    """An exchange fetch or order submission failed."""


class AssetNotFound(UpstreamUnavailable):
    def __init__(self, asset: str):
        super().__init__(f"asset {asset} not found in account balances")
        self.asset = asset


class FilterNotFound(UpstreamUnavailable):
    def __init__(self, symbol: str, detail: str = "LOT_SIZE filter not found"):
        super().__init__(f"{detail} for {symbol}")
        self.symbol = symbol


class ConfigInvalid(TraderError):
    """Missing secrets or nonsensical settings at startup."""
