# models.py
import math
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Iterable, List, Literal, Optional

from pydantic import BaseModel

from errors import InsufficientData


class Signal(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"


class TickState(str, Enum):
    IDLE = "IDLE"
    EVALUATING = "EVALUATING"
    SKIPPED = "SKIPPED"
    ORDER_SUBMITTED = "ORDER_SUBMITTED"
    ORDER_FAILED = "ORDER_FAILED"


# One close delivered by a live feed. Only final closes enter the window.
@dataclass
class ClosedCandle:
    symbol: str
    ts: float        # candle open, epoch seconds
    price: float
    is_final: bool


# The rolling window of closes, oldest to newest
class PriceWindow:
    def __init__(self, period: int = 14):
        if period < 1:
            raise ValueError("period must be >= 1")
        self.period = period
        self.prices: deque[float] = deque(maxlen=period + 1)

    @property
    def capacity(self) -> int:
        return self.period + 1

    @property
    def is_warm(self) -> bool:
        return len(self.prices) >= self.capacity

    def push(self, price: float) -> None:
        self.prices.append(_checked_price(price))

    def seed(self, values: Iterable[float]) -> None:
        checked = [_checked_price(v) for v in values]
        self.prices = deque(checked[-self.capacity:], maxlen=self.capacity)

    def snapshot(self) -> List[float]:
        return list(self.prices)

    def require_warm(self) -> List[float]:
        if not self.is_warm:
            raise InsufficientData(
                f"window holds {len(self.prices)} of {self.capacity} closes"
            )
        return self.snapshot()

    def __len__(self) -> int:
        return len(self.prices)


def _checked_price(price: float) -> float:
    value = float(price)
    if not math.isfinite(value) or value <= 0.0:
        raise ValueError(f"close price must be positive and finite, got {price!r}")
    return value


class OrderReceipt(BaseModel):
    order_id: str
    symbol: str
    side: Literal["buy", "sell"]
    quantity: Decimal
    status: Optional[str] = None
    average_price: Optional[float] = None


@dataclass
class TickOutcome:
    state: TickState
    signal: Optional[Signal] = None
    rsi: Optional[float] = None
    quantity: Optional[Decimal] = None
    reason: Optional[str] = None
    receipt: Optional[OrderReceipt] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


# The response model for the GET /signal endpoint
class SignalResponse(BaseModel):
    symbol: str
    rsi: Optional[float] = None  # [0, 100], None until the window is warm
    decision: Literal["BUY", "SELL", "HOLD"]
    state: Literal["IDLE", "EVALUATING", "SKIPPED", "ORDER_SUBMITTED", "ORDER_FAILED"]
    window_size: int
    last_order_id: Optional[str] = None
    reason: Optional[str] = None
    timestamp: Optional[datetime] = None
