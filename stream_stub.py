# stream_stub.py
# Offline exchange for dry runs and tests (simulated candles and fills).
# Usage example:
#   import asyncio
#   from stream_stub import SimulatedExchange
#   async def main():
#       ex = SimulatedExchange(interval_ms=50)
#       async for candle in ex.subscribe_closes("BTC/USDT", "5m"):
#           print(candle)
#   asyncio.run(main())

import asyncio
import itertools
import random
import time
from decimal import Decimal
from typing import AsyncIterator, Dict, List, Optional

from errors import AssetNotFound, UpstreamUnavailable
from models import ClosedCandle, OrderReceipt
from policy import round_to_step


class SimulatedExchange:
    """Random-walk market with an in-memory account.

    Each candle is built from ``updates_per_candle`` noisy ticks; the last one
    is emitted with ``is_final=True``. Market orders fill at the last price.
    """

    def __init__(self,
                 base_price: float = 100.0,
                 jitter: float = 0.08,
                 interval_ms: int = 50,
                 updates_per_candle: int = 4,
                 lot_step: Decimal = Decimal("0.0001"),
                 balances: Optional[Dict[str, Decimal]] = None,
                 seed: Optional[int] = None):
        self.price = float(base_price)
        self.jitter = jitter
        self.interval_ms = interval_ms
        self.updates_per_candle = max(1, updates_per_candle)
        self.lot_step = lot_step
        self.balances: Dict[str, Decimal] = dict(balances or {"BTC": Decimal("0"), "USDT": Decimal("10000")})
        self.orders: List[OrderReceipt] = []
        self._rng = random.Random(seed)
        self._ids = itertools.count(1)

    def _step(self) -> float:
        drift = self._rng.uniform(-0.02, 0.02)
        shock = self._rng.gauss(0.0, self.jitter)
        self.price = max(0.01, self.price * (1.0 + drift*1e-3) + shock)
        return round(self.price, 6)

    async def fetch_recent_closes(self, symbol: str, count: int, closed_only: bool = False) -> List[float]:
        return [self._step() for _ in range(count)]

    async def subscribe_closes(self, symbol: str, timeframe: str) -> AsyncIterator[ClosedCandle]:
        while True:
            opened = time.time()
            for i in range(self.updates_per_candle):
                await asyncio.sleep(max(0.0, self.interval_ms / 1000.0))
                final = i == self.updates_per_candle - 1
                yield ClosedCandle(symbol=symbol, ts=opened, price=self._step(), is_final=final)

    async def get_available_balance(self, asset: str) -> Decimal:
        if asset not in self.balances:
            raise AssetNotFound(asset)
        return self.balances[asset]

    async def get_lot_step_size(self, symbol: str) -> Decimal:
        return self.lot_step

    async def submit_market_order(self, symbol: str, side: str, quantity: Decimal) -> OrderReceipt:
        base, _, quote = symbol.partition("/")
        if round_to_step(quantity, self.lot_step) != quantity:
            raise UpstreamUnavailable(f"quantity {quantity} violates lot step {self.lot_step}")
        price = Decimal(str(round(self.price, 6)))
        cost = quantity * price
        held = self.balances.get(base, Decimal("0"))
        cash = self.balances.get(quote, Decimal("0"))
        if side == "buy":
            if cash < cost:
                raise UpstreamUnavailable(f"insufficient {quote} for {quantity} {base}")
            self.balances[quote] = cash - cost
            self.balances[base] = held + quantity
        else:
            if held < quantity:
                raise UpstreamUnavailable(f"insufficient {base} to sell {quantity}")
            self.balances[base] = held - quantity
            self.balances[quote] = cash + cost
        receipt = OrderReceipt(
            order_id=f"sim-{next(self._ids)}",
            symbol=symbol,
            side=side,
            quantity=quantity,
            status="closed",
            average_price=float(price),
        )
        self.orders.append(receipt)
        return receipt

    async def close(self) -> None:
        return None


if __name__ == "__main__":
    async def _demo():
        async for c in SimulatedExchange(interval_ms=50).subscribe_closes("BTC/USDT", "5m"):
            print(c)
    asyncio.run(_demo())
