import asyncio
from decimal import Decimal
from typing import Callable, Dict, List, Optional

import pytest

from errors import AssetNotFound, UpstreamUnavailable
from models import ClosedCandle, OrderReceipt


class FakeExchange:
	"""In-memory ExchangeClient that records every call."""

	def __init__(self, closes=None, balances=None, lot_step=Decimal("0.0001"), candles=None):
		self.closes: List[float] = list(closes or [])
		self.balances: Dict[str, Decimal] = dict(balances or {"BTC": Decimal("0")})
		self.lot_step = lot_step
		self.candles: List[ClosedCandle] = list(candles or [])
		self.calls: List[tuple] = []
		self.orders: List[tuple] = []
		self.fetch_error: Optional[Exception] = None
		self.balance_failures = 0
		self.submit_error: Optional[Exception] = None
		self.on_submit: Optional[Callable[[], None]] = None
		self.closed = False
		self.closed_only_flags: List[bool] = []
		# raised, one per subscription, before any candle is delivered
		self.stream_errors: List[Exception] = []

	async def fetch_recent_closes(self, symbol, count, closed_only=False):
		self.calls.append(("fetch_recent_closes", symbol, count))
		self.closed_only_flags.append(closed_only)
		if self.fetch_error is not None:
			raise self.fetch_error
		return self.closes[-count:]

	async def subscribe_closes(self, symbol, timeframe):
		self.calls.append(("subscribe_closes", symbol, timeframe))
		if self.stream_errors:
			raise self.stream_errors.pop(0)
		for candle in self.candles:
			await asyncio.sleep(0)
			yield candle
		# keep the stream open like a live feed
		await asyncio.Event().wait()

	async def get_available_balance(self, asset):
		self.calls.append(("get_available_balance", asset))
		if self.balance_failures > 0:
			self.balance_failures -= 1
			raise UpstreamUnavailable("balance endpoint timed out")
		if asset not in self.balances:
			raise AssetNotFound(asset)
		return self.balances[asset]

	async def get_lot_step_size(self, symbol):
		self.calls.append(("get_lot_step_size", symbol))
		return self.lot_step

	async def submit_market_order(self, symbol, side, quantity):
		self.calls.append(("submit_market_order", symbol, side, quantity))
		if self.on_submit is not None:
			self.on_submit()
		if self.submit_error is not None:
			raise self.submit_error
		self.orders.append((symbol, side, quantity))
		return OrderReceipt(
			order_id=f"fake-{len(self.orders)}",
			symbol=symbol,
			side=side,
			quantity=quantity,
			status="closed",
		)

	async def close(self):
		self.closed = True

	def submitted(self):
		return [c for c in self.calls if c[0] == "submit_market_order"]


@pytest.fixture
def fake_exchange_factory():
	return FakeExchange
