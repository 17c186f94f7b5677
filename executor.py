"""Tick state machine: evaluate the window, decide, size, submit once.

Each tick goes Idle -> Evaluating -> {Skipped, OrderSubmitted, OrderFailed}
-> Idle. Errors other than bad configuration never escape ``run_tick``: the
tick is abandoned with one log line and the caller moves on to the next one.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, Tuple

from config import Settings
from errors import InsufficientBalance, InsufficientData, UpstreamUnavailable
from exchange import ExchangeClient
from indicators import RSIEngine
from models import PriceWindow, Signal, TickOutcome, TickState
from policy import OrderSizer, SignalPolicy

logger = logging.getLogger(__name__)


@dataclass
class TraderContext:
    """Everything one tick reads or mutates. Owned by a single loop."""

    symbol: str
    base_asset: str
    exchange: ExchangeClient
    window: PriceWindow
    engine: RSIEngine
    policy: SignalPolicy
    sizer: OrderSizer
    history_limit: int = 100
    state: TickState = TickState.IDLE
    last_outcome: Optional[TickOutcome] = None
    last_rsi: Optional[float] = None
    last_signal: Signal = Signal.HOLD
    ticks: int = field(default=0)

    @classmethod
    def from_settings(cls, settings: Settings, exchange: ExchangeClient) -> "TraderContext":
        return cls(
            symbol=settings.symbol,
            base_asset=settings.base_asset,
            exchange=exchange,
            window=PriceWindow(settings.rsi_period),
            engine=RSIEngine(settings.rsi_period),
            policy=SignalPolicy(settings.oversold, settings.overbought),
            sizer=OrderSizer(settings.buy_quantity),
            history_limit=settings.history_limit,
        )


class TradeExecutor:
    def __init__(self, context: TraderContext):
        self.ctx = context

    async def refresh_from_history(self, closed_only: bool = False) -> None:
        closes = await self.ctx.exchange.fetch_recent_closes(
            self.ctx.symbol, self.ctx.history_limit, closed_only=closed_only
        )
        try:
            self.ctx.window.seed(closes)
        except ValueError as exc:
            raise UpstreamUnavailable(f"malformed closes for {self.ctx.symbol}: {exc}") from exc
        self.ctx.engine.seed(closes)

    def on_closed_price(self, price: float) -> None:
        self.ctx.window.push(price)
        self.ctx.engine.update(price)

    def evaluate(self) -> Tuple[float, Signal]:
        self.ctx.window.require_warm()
        rsi = self.ctx.engine.value()
        signal = self.ctx.policy.classify(rsi)
        self.ctx.last_rsi = rsi
        self.ctx.last_signal = signal
        return rsi, signal

    async def size(self, signal: Signal) -> Decimal:
        if signal is Signal.BUY:
            return self.ctx.sizer.size_buy()
        balance = await self.ctx.exchange.get_available_balance(self.ctx.base_asset)
        step = await self.ctx.exchange.get_lot_step_size(self.ctx.symbol)
        return self.ctx.sizer.size_sell(balance, step)

    async def execute(self, signal: Signal, rsi: Optional[float] = None) -> TickOutcome:
        """Size and submit exactly one market order for a BUY/SELL signal."""
        side = "buy" if signal is Signal.BUY else "sell"
        try:
            quantity = await self.size(signal)
        except InsufficientBalance as exc:
            logger.warning("Insufficient balance to %s %s: %s", side, self.ctx.symbol, exc)
            return TickOutcome(TickState.SKIPPED, signal, rsi, reason=str(exc))
        except UpstreamUnavailable as exc:
            logger.error("Could not size %s order for %s: %s", side, self.ctx.symbol, exc)
            return TickOutcome(TickState.SKIPPED, signal, rsi, reason=str(exc))

        try:
            receipt = await self.ctx.exchange.submit_market_order(self.ctx.symbol, side, quantity)
        except UpstreamUnavailable as exc:
            logger.error("Order %s %s %s failed: %s", side, quantity, self.ctx.symbol, exc)
            return TickOutcome(TickState.ORDER_FAILED, signal, rsi, quantity, reason=str(exc))

        logger.info("Order executed: %s %s %s", side, self.ctx.symbol, quantity)
        logger.info("Order details: %s", receipt.model_dump())
        return TickOutcome(TickState.ORDER_SUBMITTED, signal, rsi, quantity, receipt=receipt)

    async def run_tick(self, refresh: bool = True) -> TickOutcome:
        self.ctx.state = TickState.EVALUATING
        self.ctx.ticks += 1
        try:
            outcome = await self._tick(refresh)
        finally:
            self.ctx.state = TickState.IDLE
        self.ctx.last_outcome = outcome
        return outcome

    async def _tick(self, refresh: bool) -> TickOutcome:
        try:
            if refresh:
                await self.refresh_from_history()
            rsi, signal = self.evaluate()
        except InsufficientData as exc:
            logger.info("Skipping tick, window not warm: %s", exc)
            return TickOutcome(TickState.SKIPPED, reason=str(exc))
        except UpstreamUnavailable as exc:
            logger.error("Could not fetch closes for %s: %s", self.ctx.symbol, exc)
            return TickOutcome(TickState.SKIPPED, reason=str(exc))

        logger.info("Current RSI: %.2f (%s)", rsi, signal.value)
        if signal is Signal.HOLD:
            return TickOutcome(TickState.SKIPPED, signal, rsi, reason="hold")

        if signal is Signal.BUY:
            logger.info("RSI %.2f <= %.2f, buying", rsi, self.ctx.policy.oversold)
        else:
            logger.info("RSI %.2f >= %.2f, selling", rsi, self.ctx.policy.overbought)
        return await self.execute(signal, rsi)
