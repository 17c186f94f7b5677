"""RSI indicator with Wilder smoothing, usable in batch or one close at a time.

The averages are seeded with the simple mean of the first ``period`` gains and
losses, then every later delta updates them via Wilder's smoothing:

    avg_gain = (prev_avg_gain*(period-1) + gain) / period
    avg_loss = (prev_avg_loss*(period-1) + loss) / period

``calculate_rsi`` folds a fresh :class:`RSIState` over the whole sequence, so a
batch call and the same closes pushed one by one produce bit-identical values.
"""

from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from errors import InsufficientData


@dataclass
class RSIState:
    period: int
    avg_gain: float = 0.0
    avg_loss: float = 0.0
    last_price: Optional[float] = None
    deltas_seen: int = 0
    # running sums for the seeding mean, only used until `period` deltas are in
    _gain_sum: float = 0.0
    _loss_sum: float = 0.0

    def __post_init__(self) -> None:
        if self.period <= 0:
            raise ValueError("period must be > 0")

    @property
    def ready(self) -> bool:
        return self.deltas_seen >= self.period

    def push(self, price: float) -> None:
        price = float(price)
        if self.last_price is None:
            self.last_price = price
            return

        delta = price - self.last_price
        self.last_price = price
        gain = max(delta, 0.0)
        loss = max(-delta, 0.0)
        self.deltas_seen += 1

        if self.deltas_seen < self.period:
            self._gain_sum += gain
            self._loss_sum += loss
        elif self.deltas_seen == self.period:
            self._gain_sum += gain
            self._loss_sum += loss
            self.avg_gain = self._gain_sum / self.period
            self.avg_loss = self._loss_sum / self.period
        else:
            self.avg_gain = (self.avg_gain * (self.period - 1) + gain) / self.period
            self.avg_loss = (self.avg_loss * (self.period - 1) + loss) / self.period

    def rsi(self) -> float:
        if not self.ready:
            raise InsufficientData(
                f"RSI({self.period}) needs {self.period + 1} closes, "
                f"have {self.deltas_seen + (1 if self.last_price is not None else 0)}"
            )
        # No losses means extreme overbought. A flat market lands here too.
        if self.avg_loss == 0.0:
            return 100.0
        rs = self.avg_gain / self.avg_loss
        return 100.0 - 100.0 / (1.0 + rs)


def calculate_rsi(prices: Sequence[float], period: int = 14) -> float:
    """Compute the Relative Strength Index over ``prices`` (oldest first).

    Raises ``InsufficientData`` when fewer than ``period + 1`` prices are given.
    """
    if period <= 0:
        raise ValueError("period must be > 0")
    if len(prices) < period + 1:
        raise InsufficientData(
            f"RSI({period}) needs {period + 1} closes, have {len(prices)}"
        )

    state = RSIState(period)
    for p in prices:
        state.push(p)
    return state.rsi()


class RSIEngine:
    """Carries the smoothed averages between closes for one symbol."""

    def __init__(self, period: int = 14):
        if period < 2:
            raise ValueError("period must be >= 2")
        self.period = period
        self.state = RSIState(period)

    def seed(self, history: Iterable[float]) -> None:
        """Reset and replay a full history (startup and every polling refresh)."""
        self.state = RSIState(self.period)
        for p in history:
            self.state.push(p)

    def update(self, price: float) -> None:
        self.state.push(price)

    def value(self) -> float:
        return self.state.rsi()

    def evaluate(self, window: Sequence[float]) -> float:
        # Stateless: does not touch the running averages.
        return calculate_rsi(window, self.period)

    @property
    def ready(self) -> bool:
        return self.state.ready
