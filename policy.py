"""Signal classification and order sizing.

Thresholds are asymmetric by default (30 / 69). ``rsi <= oversold`` is checked
first, so a misconfigured pair with ``oversold >= overbought`` still resolves
to BUY; ``config.Settings`` rejects such a pair at startup anyway.
"""

from decimal import ROUND_FLOOR, Decimal
from typing import Union

from errors import InsufficientBalance
from models import Signal

DEFAULT_OVERSOLD = 30.0
DEFAULT_OVERBOUGHT = 69.0

Number = Union[Decimal, float, int, str]


def classify(
    rsi: float,
    oversold: float = DEFAULT_OVERSOLD,
    overbought: float = DEFAULT_OVERBOUGHT,
) -> Signal:
    if rsi <= oversold:
        return Signal.BUY
    if rsi >= overbought:
        return Signal.SELL
    return Signal.HOLD


class SignalPolicy:
    def __init__(
        self,
        oversold: float = DEFAULT_OVERSOLD,
        overbought: float = DEFAULT_OVERBOUGHT,
    ):
        self.oversold = oversold
        self.overbought = overbought

    def classify(self, rsi: float) -> Signal:
        return classify(rsi, self.oversold, self.overbought)


def _to_decimal(value: Number) -> Decimal:
    # str() first so 0.1023 stays 0.1023 instead of its binary expansion
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_to_step(quantity: Number, step: Number) -> Decimal:
    """Truncate ``quantity`` down to a whole multiple of ``step``."""
    qty = _to_decimal(quantity)
    step_d = _to_decimal(step)
    if step_d <= 0:
        raise ValueError(f"lot step must be > 0, got {step}")
    steps = (qty / step_d).to_integral_value(rounding=ROUND_FLOOR)
    return steps * step_d


class OrderSizer:
    """Fixed size for buys, the whole free balance (lot-aligned) for sells."""

    def __init__(self, buy_quantity: Number):
        self.buy_quantity = _to_decimal(buy_quantity)

    def size_buy(self) -> Decimal:
        return self.buy_quantity

    def size_sell(self, available_balance: Number, lot_step: Number) -> Decimal:
        quantity = round_to_step(available_balance, lot_step)
        if quantity <= 0:
            raise InsufficientBalance(
                f"balance {available_balance} rounds to {quantity} at step {lot_step}"
            )
        return quantity
