"""
Exchange collaborator: the abstract contract the executor talks to, and the
Binance spot implementation on top of ccxt.

Everything that leaves this module is typed: closes are floats, balances and
lot steps are ``Decimal``, orders come back as ``OrderReceipt``. Any ccxt
failure surfaces as ``UpstreamUnavailable`` so the executor can skip the tick.
"""

from __future__ import annotations

import logging
import time
from decimal import Decimal
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Protocol, Sequence, Tuple

import ccxt.async_support as ccxt
import ccxt.pro as ccxtpro
from pydantic import BaseModel, Field, ValidationError, field_validator

from errors import AssetNotFound, FilterNotFound, UpstreamUnavailable
from models import ClosedCandle, OrderReceipt

logger = logging.getLogger(__name__)


class ExchangeClient(Protocol):
    async def fetch_recent_closes(self, symbol: str, count: int, closed_only: bool = False) -> List[float]: ...

    def subscribe_closes(self, symbol: str, timeframe: str) -> AsyncIterator[ClosedCandle]: ...

    async def get_available_balance(self, asset: str) -> Decimal: ...

    async def get_lot_step_size(self, symbol: str) -> Decimal: ...

    async def submit_market_order(self, symbol: str, side: str, quantity: Decimal) -> OrderReceipt: ...

    async def close(self) -> None: ...


class LotSizeFilter(BaseModel):
    """Binance ``LOT_SIZE`` entry from the raw exchange-info filters."""

    filterType: str
    stepSize: Decimal = Field(gt=0)
    minQty: Optional[Decimal] = None
    maxQty: Optional[Decimal] = None

    @field_validator("filterType")
    @classmethod
    def _must_be_lot_size(cls, v: str) -> str:
        if v != "LOT_SIZE":
            raise ValueError(f"expected LOT_SIZE, got {v}")
        return v


def decode_lot_step(symbol: str, market: Optional[Dict[str, Any]]) -> Decimal:
    """Pull the lot step out of a ccxt market dict, or raise ``FilterNotFound``."""
    if not market:
        raise FilterNotFound(symbol, "market not found")
    filters = (market.get("info") or {}).get("filters")
    if not isinstance(filters, list):
        raise FilterNotFound(symbol, "exchange filters missing")
    for raw in filters:
        if isinstance(raw, dict) and raw.get("filterType") == "LOT_SIZE":
            try:
                return LotSizeFilter.model_validate(raw).stepSize
            except ValidationError as exc:
                raise FilterNotFound(symbol, f"malformed LOT_SIZE filter ({exc.error_count()} errors)") from exc
    raise FilterNotFound(symbol)


def decode_balance(asset: str, balance: Dict[str, Any]) -> Decimal:
    free = balance.get("free") or {}
    if asset not in free:
        raise AssetNotFound(asset)
    value = free[asset]
    if value is None:
        return Decimal("0")
    try:
        return Decimal(str(value))
    except ArithmeticError as exc:
        raise UpstreamUnavailable(f"unreadable free balance for {asset}: {value!r}") from exc


def decode_receipt(symbol: str, side: str, quantity: Decimal, order: Dict[str, Any]) -> OrderReceipt:
    order_id = order.get("id")
    if order_id is None:
        raise UpstreamUnavailable(f"order response for {symbol} carries no id")
    amount = order.get("amount")
    try:
        return OrderReceipt(
            order_id=str(order_id),
            symbol=order.get("symbol") or symbol,
            side=side,
            quantity=Decimal(str(amount)) if amount is not None else quantity,
            status=order.get("status"),
            average_price=order.get("average"),
        )
    except (ArithmeticError, ValidationError) as exc:
        raise UpstreamUnavailable(f"unreadable order response for {symbol}: {order!r}") from exc


def decode_ohlcv(symbol: str, candles: Sequence[Any]) -> List[Tuple[int, float]]:
    """``[timestamp, open, high, low, close, volume]`` rows -> ``(open_ms, close)``."""
    try:
        return [(int(c[0]), float(c[4])) for c in candles]
    except (TypeError, ValueError, IndexError) as exc:
        raise UpstreamUnavailable(f"malformed candle for {symbol}: {exc}") from exc


class CcxtExchange:
    """Binance spot through ccxt (REST) and ccxt.pro (websocket candles)."""

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        timeframe: str = "5m",
        testnet: bool = False,
        client: Any = None,
        stream_client: Any = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.timeframe = timeframe
        self._clock = clock
        self._credentials = {"apiKey": api_key, "secret": api_secret, "enableRateLimit": True}
        self._testnet = testnet
        self._client = client if client is not None else self._build(ccxt.binance)
        self._stream = stream_client

    def _build(self, factory: Any) -> Any:
        exchange = factory(dict(self._credentials))
        if self._testnet:
            exchange.set_sandbox_mode(True)
        return exchange

    async def fetch_recent_closes(self, symbol: str, count: int, closed_only: bool = False) -> List[float]:
        """Latest ``count`` closes. With ``closed_only`` the still-open candle is left out."""
        limit = count + 1 if closed_only else count
        try:
            candles = await self._client.fetch_ohlcv(symbol, timeframe=self.timeframe, limit=limit)
        except ccxt.BaseError as exc:
            raise UpstreamUnavailable(f"fetch_ohlcv {symbol} failed: {exc}") from exc
        rows = decode_ohlcv(symbol, candles)
        if closed_only:
            period_ms = ccxt.Exchange.parse_timeframe(self.timeframe) * 1000
            if rows and rows[-1][0] + period_ms > self._clock() * 1000:
                rows = rows[:-1]
            rows = rows[-count:]
        return [close for _, close in rows]

    async def subscribe_closes(self, symbol: str, timeframe: str) -> AsyncIterator[ClosedCandle]:
        """Yield every candle update; the previous candle is final once a newer one opens."""
        if self._stream is None:
            self._stream = self._build(ccxtpro.binance)
        logger.info("Subscribing to %s %s candles", symbol, timeframe)
        current_ts: Optional[int] = None
        current_close: Optional[float] = None
        while True:
            try:
                candles = await self._stream.watch_ohlcv(symbol, timeframe)
            except ccxt.BaseError as exc:
                raise UpstreamUnavailable(f"watch_ohlcv {symbol} failed: {exc}") from exc
            for ts, close in decode_ohlcv(symbol, candles):
                if current_ts is not None and ts < current_ts:
                    continue
                if current_ts is not None and ts > current_ts and current_close is not None:
                    yield ClosedCandle(symbol=symbol, ts=current_ts / 1000.0, price=current_close, is_final=True)
                current_ts, current_close = ts, close
                yield ClosedCandle(symbol=symbol, ts=ts / 1000.0, price=close, is_final=False)

    async def get_available_balance(self, asset: str) -> Decimal:
        try:
            balance = await self._client.fetch_balance()
        except ccxt.BaseError as exc:
            raise UpstreamUnavailable(f"fetch_balance failed: {exc}") from exc
        return decode_balance(asset, balance)

    async def get_lot_step_size(self, symbol: str) -> Decimal:
        try:
            # reload so the filters are fresh before every sell
            markets = await self._client.load_markets(True)
        except ccxt.BaseError as exc:
            raise UpstreamUnavailable(f"load_markets failed: {exc}") from exc
        return decode_lot_step(symbol, markets.get(symbol))

    async def submit_market_order(self, symbol: str, side: str, quantity: Decimal) -> OrderReceipt:
        try:
            order = await self._client.create_market_order(symbol, side, float(quantity))
        except ccxt.BaseError as exc:
            raise UpstreamUnavailable(f"create_market_order {side} {quantity} {symbol} failed: {exc}") from exc
        return decode_receipt(symbol, side, quantity, order)

    async def close(self) -> None:
        await self._client.close()
        if self._stream is not None:
            await self._stream.close()
